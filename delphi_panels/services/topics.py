"""Topic Service: discussion topics owned by a panel."""

import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import InvalidArgument, NotFound, Unauthorized
from ..models import Panel, PanelStatus, Round, Topic, TopicStatus
from .events import TopicCreated

logger = logging.getLogger(__name__)


@dataclass
class CreateTopicInput:
    """Input for creating a topic."""
    panel_id: str
    title: str
    description: str = ""
    question: str = ""
    total_rounds: int | None = None
    raw_input: str | None = None
    ai_extracted: bool = False
    ai_confidence: float | None = None


@dataclass
class UpdateTopicInput:
    title: str | None = None
    description: str | None = None
    question: str | None = None
    total_rounds: int | None = None


@dataclass
class CreateTopicResult:
    topic: Topic
    event: TopicCreated


class TopicService:
    """Topic CRUD. Round transitions live in RoundEngine."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create_topic(self, input: CreateTopicInput, user_id: str) -> CreateTopicResult:
        panel = await self._session.get(Panel, input.panel_id)
        if panel is None:
            raise NotFound(f"Panel {input.panel_id} not found")
        if not panel.is_admin(user_id):
            raise Unauthorized("Only panel admins can create topics")
        if panel.status == PanelStatus.ARCHIVED:
            raise InvalidArgument("Cannot add topics to an archived panel")

        title = (input.title or "").strip()
        if not title:
            raise InvalidArgument("Topic title cannot be empty")

        total_rounds = input.total_rounds or get_settings().default_total_rounds
        if total_rounds < 1:
            raise InvalidArgument("total_rounds must be at least 1")

        topic = Topic(
            title=title,
            description=input.description or "",
            question=input.question or "",
            panel_id=panel.id,
            created_by=user_id,
            status=TopicStatus.DRAFT,
            round_number=0,
            current_round_id=None,
            total_rounds=total_rounds,
            raw_input=input.raw_input,
            ai_extracted=input.ai_extracted,
            ai_confidence=input.ai_confidence,
        )
        self._session.add(topic)
        await self._session.flush()

        logger.info(f"Topic {topic.id} created in panel {panel.id}")
        return CreateTopicResult(topic=topic, event=TopicCreated(topic_id=topic.id))

    async def get_topic(self, topic_id: str) -> Topic:
        topic = await self._session.get(Topic, topic_id)
        if topic is None:
            raise NotFound(f"Topic {topic_id} not found")
        return topic

    async def list_topics(
        self,
        panel_id: str | None = None,
        created_by: str | None = None,
        status: TopicStatus | None = None,
        limit: int = 50,
    ) -> Sequence[Topic]:
        stmt = select(Topic)
        if panel_id is not None:
            stmt = stmt.where(Topic.panel_id == panel_id)
        if created_by is not None:
            stmt = stmt.where(Topic.created_by == created_by)
        if status is not None:
            stmt = stmt.where(Topic.status == status)

        result = await self._session.execute(stmt.order_by(Topic.created_at.desc()).limit(limit))
        return result.scalars().all()

    async def update_topic(self, topic_id: str, input: UpdateTopicInput, user_id: str) -> Topic:
        topic = await self.get_topic(topic_id)
        await self._require_manager(topic, user_id)

        if input.title is not None:
            title = input.title.strip()
            if not title:
                raise InvalidArgument("Topic title cannot be empty")
            topic.title = title
        if input.description is not None:
            topic.description = input.description
        if input.question is not None:
            topic.question = input.question
        if input.total_rounds is not None:
            if input.total_rounds < max(1, topic.round_number):
                raise InvalidArgument("total_rounds cannot be below the rounds already opened")
            topic.total_rounds = input.total_rounds

        await self._session.flush()
        return topic

    async def delete_topic(self, topic_id: str, user_id: str) -> None:
        """Delete the topic and its rounds. Feedback rows are left in place."""
        topic = await self.get_topic(topic_id)
        await self._require_manager(topic, user_id)

        await self._session.execute(delete(Round).where(Round.topic_id == topic_id))
        await self._session.delete(topic)
        await self._session.flush()
        logger.info(f"Topic {topic_id} deleted by {user_id}")

    async def _require_manager(self, topic: Topic, user_id: str) -> None:
        if topic.created_by == user_id:
            return
        panel = await self._session.get(Panel, topic.panel_id)
        if panel is None or not panel.is_admin(user_id):
            raise Unauthorized("Only panel admins or the topic creator can change this topic")
