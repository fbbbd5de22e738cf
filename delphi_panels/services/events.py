"""
Domain events raised by topic, feedback and round changes.

Services return events instead of notifying directly. Routes commit the
domain transaction first and then call ``dispatch_event``, which runs the
matching notification trigger in its own session. A failing trigger is logged
and never reaches the caller: the domain change has already been committed.
"""

import logging
from dataclasses import dataclass

from ..core.database import get_session_context
from .consensus import ConsensusMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TopicCreated:
    topic_id: str


@dataclass(frozen=True)
class FeedbackCreated:
    feedback_id: str


@dataclass(frozen=True)
class RoundCompleted:
    round_id: str
    metrics: ConsensusMetrics | None = None


@dataclass(frozen=True)
class InvitationCreated:
    invitation_id: str


DomainEvent = TopicCreated | FeedbackCreated | RoundCompleted | InvitationCreated


async def handle_event(dispatcher, event: DomainEvent) -> None:
    """Route an event to the dispatcher trigger that handles it."""
    if isinstance(event, TopicCreated):
        await dispatcher.on_topic_created(event.topic_id)
    elif isinstance(event, FeedbackCreated):
        await dispatcher.on_feedback_created(event.feedback_id)
    elif isinstance(event, RoundCompleted):
        await dispatcher.on_round_closed(event.round_id)
        if event.metrics is not None:
            await dispatcher.on_consensus_reached(event.round_id, event.metrics)
    elif isinstance(event, InvitationCreated):
        await dispatcher.on_invitation_created(event.invitation_id)
    else:
        raise TypeError(f"Unknown domain event: {event!r}")


async def dispatch_event(event: DomainEvent) -> None:
    """Run the notification trigger for ``event`` in a fresh transaction."""
    from .notification_dispatcher import NotificationDispatcher

    try:
        async with get_session_context() as session:
            await handle_event(NotificationDispatcher(session), event)
    except Exception as e:
        logger.error(f"Notification trigger failed for {event!r}: {e}", exc_info=True)
