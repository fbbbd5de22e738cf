"""
Round Engine: drives a topic through its feedback rounds.

State machine per round: active -> completed (terminal, never reopened).
The topic keeps a pointer to the most recently created round:
- open_initial_round creates round 1 and activates the topic
- advance_round creates round N+1 once no round is active
- close_round summarizes, then completes the round in one update

The topic row is locked (SELECT ... FOR UPDATE) for every transition so two
administrators cannot open the same round concurrently.
"""

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import Conflict, NotFound, Unauthorized
from ..models import (
    Feedback,
    Panel,
    Round,
    RoundStatus,
    Topic,
    TopicStatus,
    utcnow,
)
from .ai_extractor import RoundSummarizer
from .consensus import ConsensusMetrics, calculate_consensus
from .events import RoundCompleted

logger = logging.getLogger(__name__)


class Summarizer(Protocol):
    async def summarize(self, feedback_items: Sequence[Feedback]) -> str: ...


@dataclass
class RoundCloseResult:
    """A completed round, its consensus metrics and the event to dispatch."""
    round: Round
    metrics: ConsensusMetrics
    event: RoundCompleted


class RoundEngine:
    """Round lifecycle transitions and round queries for a topic."""

    def __init__(self, session: AsyncSession, summarizer: Summarizer | None = None):
        self._session = session
        self._summarizer = summarizer or RoundSummarizer()

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def open_initial_round(self, topic_id: str, user_id: str | None = None) -> Round:
        """Create round 1 and activate the topic."""
        topic = await self._lock_topic(topic_id)
        if user_id is not None:
            await self._require_manager(topic, user_id)

        existing = await self._session.execute(
            select(Round.id).where(Round.topic_id == topic_id).limit(1)
        )
        if existing.first() is not None:
            raise Conflict(f"Topic {topic_id} already has rounds")

        round_ = await self._create_round(topic, 1)
        topic.status = TopicStatus.ACTIVE
        await self._session.flush()

        logger.info(f"Opened round 1 for topic {topic_id}")
        return round_

    async def advance_round(self, topic_id: str, user_id: str | None = None) -> Round:
        """Open the next round. Only allowed when no round is active."""
        topic = await self._lock_topic(topic_id)
        if user_id is not None:
            await self._require_manager(topic, user_id)

        if topic.status == TopicStatus.COMPLETED:
            raise Conflict(f"Topic {topic_id} is completed")
        if await self.get_current_round(topic_id) is not None:
            raise Conflict("Close the active round before advancing")

        new_number = topic.round_number + 1
        if await self._session.get(Round, Round.make_id(topic_id, new_number)) is not None:
            raise Conflict(f"Round {new_number} already exists for topic {topic_id}")

        try:
            round_ = await self._create_round(topic, new_number)
            if topic.status == TopicStatus.DRAFT:
                topic.status = TopicStatus.ACTIVE
            await self._session.flush()
        except IntegrityError as e:
            raise Conflict(f"Round {new_number} already exists for topic {topic_id}") from e

        logger.info(f"Advanced topic {topic_id} to round {new_number}")
        return round_

    async def close_round(
        self,
        topic_id: str,
        round_number: int,
        user_id: str | None = None,
    ) -> RoundCloseResult:
        """Summarize and complete a round.

        The summary is generated before anything is written. If summarizing
        fails the error propagates and the round stays active.
        """
        topic = await self._lock_topic(topic_id)
        if user_id is not None:
            await self._require_manager(topic, user_id)

        round_ = await self.get_round(topic_id, round_number)
        if round_ is None:
            raise NotFound(f"Round {round_number} not found for topic {topic_id}")
        if round_.status == RoundStatus.COMPLETED:
            raise Conflict(f"Round {round_number} is already completed")

        feedback_items = await self._round_feedback(topic_id, round_number)
        summary = await self._summarizer.summarize(feedback_items)

        round_.status = RoundStatus.COMPLETED
        round_.end_date = utcnow()
        round_.summary = summary
        await self._session.flush()

        panel = await self._session.get(Panel, topic.panel_id)
        metrics = calculate_consensus(feedback_items, panel.member_count if panel else 0)

        logger.info(
            f"Closed round {round_number} of topic {topic_id} "
            f"({metrics.total_feedback} feedback, consensus {metrics.consensus_level}%)"
        )
        return RoundCloseResult(
            round=round_,
            metrics=metrics,
            event=RoundCompleted(round_id=round_.id, metrics=metrics),
        )

    async def complete_topic(self, topic_id: str, user_id: str | None = None) -> Topic:
        """Mark the topic finished. Every round must be closed first."""
        topic = await self._lock_topic(topic_id)
        if user_id is not None:
            await self._require_manager(topic, user_id)

        if topic.status == TopicStatus.COMPLETED:
            return topic
        if await self.get_current_round(topic_id) is not None:
            raise Conflict("Close the active round before completing the topic")

        topic.status = TopicStatus.COMPLETED
        topic.completed_at = utcnow()
        await self._session.flush()

        logger.info(f"Completed topic {topic_id} after {topic.round_number} rounds")
        return topic

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_rounds_for_topic(self, topic_id: str) -> Sequence[Round]:
        result = await self._session.execute(
            select(Round)
            .where(Round.topic_id == topic_id)
            .order_by(Round.round_number.asc())
        )
        return result.scalars().all()

    async def get_current_round(self, topic_id: str) -> Round | None:
        """The active round of the topic, if any."""
        result = await self._session.execute(
            select(Round)
            .where(Round.topic_id == topic_id, Round.status == RoundStatus.ACTIVE)
            .order_by(Round.round_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_round(self, topic_id: str, round_number: int) -> Round | None:
        return await self._session.get(Round, Round.make_id(topic_id, round_number))

    async def calculate_round_consensus(self, topic_id: str, round_number: int) -> ConsensusMetrics:
        topic = await self._session.get(Topic, topic_id)
        if topic is None:
            raise NotFound(f"Topic {topic_id} not found")

        feedback_items = await self._round_feedback(topic_id, round_number)
        panel = await self._session.get(Panel, topic.panel_id)
        return calculate_consensus(feedback_items, panel.member_count if panel else 0)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _lock_topic(self, topic_id: str) -> Topic:
        result = await self._session.execute(
            select(Topic).where(Topic.id == topic_id).with_for_update()
        )
        topic = result.scalar_one_or_none()
        if topic is None:
            raise NotFound(f"Topic {topic_id} not found")
        return topic

    async def _require_manager(self, topic: Topic, user_id: str) -> None:
        if topic.created_by == user_id:
            return
        panel = await self._session.get(Panel, topic.panel_id)
        if panel is None or not panel.is_admin(user_id):
            raise Unauthorized("Only panel admins or the topic creator can manage rounds")

    async def _create_round(self, topic: Topic, round_number: int) -> Round:
        round_ = Round(
            id=Round.make_id(topic.id, round_number),
            topic_id=topic.id,
            round_number=round_number,
            status=RoundStatus.ACTIVE,
            start_date=utcnow(),
        )
        self._session.add(round_)
        topic.round_number = round_number
        topic.current_round_id = round_.id
        return round_

    async def _round_feedback(self, topic_id: str, round_number: int) -> Sequence[Feedback]:
        result = await self._session.execute(
            select(Feedback).where(
                Feedback.topic_id == topic_id,
                Feedback.round_number == round_number,
            )
        )
        return result.scalars().all()
