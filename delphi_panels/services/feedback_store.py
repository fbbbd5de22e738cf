"""
Feedback Store: expert contributions and ratings within a round.

- Feedback is always attributed to the authenticated caller
- Round id, round number and panel id come from the topic's active round
- Agreement ratings are upserted per expert (-2..+2)
- Legacy up/down votes keep each user in at most one set
"""

import logging
from dataclasses import dataclass
from typing import Any, Literal, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import Conflict, InvalidArgument, NotFound, Unauthorized
from ..models import (
    AGREEMENT_LEVELS,
    Feedback,
    FeedbackType,
    Panel,
    Round,
    RoundStatus,
    Topic,
)
from .events import FeedbackCreated

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Distinguishes "do not filter on parent" from "only top-level feedback"
UNSET: Any = _Unset()

VoteDirection = Literal["up", "down"]


# =============================================================================
# INPUTS
# =============================================================================


@dataclass
class SubmitFeedbackInput:
    """Input for submitting feedback. The author is always the caller."""
    type: FeedbackType
    content: str
    parent_id: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class FeedbackQuery:
    """Filters for listing feedback."""
    topic_id: str | None = None
    round_number: int | None = None
    expert_id: str | None = None
    type: FeedbackType | None = None
    parent_id: Any = UNSET
    limit: int | None = None


@dataclass
class SubmitFeedbackResult:
    feedback: Feedback
    event: FeedbackCreated


# =============================================================================
# FEEDBACK STORE
# =============================================================================


class FeedbackStore:
    """Feedback persistence plus rating and vote updates."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def submit_feedback(
        self,
        topic_id: str,
        input: SubmitFeedbackInput,
        author_id: str,
    ) -> SubmitFeedbackResult:
        topic = await self._session.get(Topic, topic_id)
        if topic is None:
            raise NotFound(f"Topic {topic_id} not found")

        panel = await self._session.get(Panel, topic.panel_id)
        if panel is None or not panel.is_member(author_id):
            raise Unauthorized("Only panel members can submit feedback")

        active_round = await self._active_round(topic_id)
        if active_round is None:
            raise Conflict(f"Topic {topic_id} has no active round")

        content = (input.content or "").strip()
        if not content:
            raise InvalidArgument("Feedback content cannot be empty")

        try:
            feedback_type = FeedbackType(input.type)
        except ValueError as e:
            raise InvalidArgument(f"Invalid feedback type: {input.type}") from e

        if input.parent_id is not None:
            parent = await self._session.get(Feedback, input.parent_id)
            if parent is None:
                raise NotFound(f"Parent feedback {input.parent_id} not found")
            if parent.topic_id != topic_id:
                raise InvalidArgument("Parent feedback belongs to a different topic")

        feedback = Feedback(
            topic_id=topic_id,
            panel_id=topic.panel_id,
            expert_id=author_id,
            round_id=active_round.id,
            round_number=active_round.round_number,
            type=feedback_type,
            content=content,
            parent_id=input.parent_id,
            agreements={},
            upvotes=[],
            downvotes=[],
            meta=dict(input.metadata or {}),
        )
        self._session.add(feedback)
        await self._session.flush()

        logger.info(f"Feedback {feedback.id} submitted to round {active_round.round_number} of topic {topic_id}")
        return SubmitFeedbackResult(feedback=feedback, event=FeedbackCreated(feedback_id=feedback.id))

    async def get_feedback(self, feedback_id: str) -> Feedback:
        feedback = await self._session.get(Feedback, feedback_id)
        if feedback is None:
            raise NotFound(f"Feedback {feedback_id} not found")
        return feedback

    async def set_agreement(self, feedback_id: str, expert_id: str, level: int) -> Feedback:
        """Record (or overwrite) an expert's agreement with a feedback item."""
        if isinstance(level, bool) or level not in AGREEMENT_LEVELS:
            raise InvalidArgument("Agreement level must be an integer between -2 and 2")

        feedback = await self._lock_feedback(feedback_id)
        feedback.agreements = {**(feedback.agreements or {}), expert_id: int(level)}
        await self._session.flush()
        return feedback

    async def toggle_vote(
        self,
        feedback_id: str,
        user_id: str,
        direction: VoteDirection,
    ) -> Feedback:
        """Vote up or down. Voting the same direction twice removes the vote."""
        if direction not in ("up", "down"):
            raise InvalidArgument("Vote direction must be 'up' or 'down'")

        feedback = await self._lock_feedback(feedback_id)
        upvotes = [u for u in feedback.upvotes or [] if u != user_id]
        downvotes = [u for u in feedback.downvotes or [] if u != user_id]

        target = feedback.upvotes if direction == "up" else feedback.downvotes
        already_voted = user_id in (target or [])
        if not already_voted:
            (upvotes if direction == "up" else downvotes).append(user_id)

        feedback.upvotes = upvotes
        feedback.downvotes = downvotes
        await self._session.flush()
        return feedback

    async def remove_vote(self, feedback_id: str, user_id: str) -> Feedback:
        feedback = await self._lock_feedback(feedback_id)
        feedback.upvotes = [u for u in feedback.upvotes or [] if u != user_id]
        feedback.downvotes = [u for u in feedback.downvotes or [] if u != user_id]
        await self._session.flush()
        return feedback

    async def list_feedback(self, query: FeedbackQuery) -> Sequence[Feedback]:
        """Feedback matching every given filter, newest first."""
        max_limit = get_settings().feedback_query_limit
        limit = min(query.limit or max_limit, max_limit)

        stmt = select(Feedback)
        if query.topic_id is not None:
            stmt = stmt.where(Feedback.topic_id == query.topic_id)
        if query.round_number is not None:
            stmt = stmt.where(Feedback.round_number == query.round_number)
        if query.expert_id is not None:
            stmt = stmt.where(Feedback.expert_id == query.expert_id)
        if query.type is not None:
            stmt = stmt.where(Feedback.type == FeedbackType(query.type))
        if query.parent_id is not UNSET:
            if query.parent_id is None:
                stmt = stmt.where(Feedback.parent_id.is_(None))
            else:
                stmt = stmt.where(Feedback.parent_id == query.parent_id)

        stmt = stmt.order_by(Feedback.created_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _active_round(self, topic_id: str) -> Round | None:
        result = await self._session.execute(
            select(Round)
            .where(Round.topic_id == topic_id, Round.status == RoundStatus.ACTIVE)
            .order_by(Round.round_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _lock_feedback(self, feedback_id: str) -> Feedback:
        result = await self._session.execute(
            select(Feedback)
            .where(Feedback.id == feedback_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        feedback = result.scalar_one_or_none()
        if feedback is None:
            raise NotFound(f"Feedback {feedback_id} not found")
        return feedback
