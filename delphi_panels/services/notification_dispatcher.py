"""
Notification Dispatcher: fans domain events out to users.

For every recipient:
1. Load preferences (defaults when none are stored)
2. Skip silently if the user turned this notification type off
3. Always create the in-app Notification record
4. Deliver email according to ``email_frequency``:
   - immediate: send now, best-effort
   - daily / weekly: queue for the digest job

Email failures are logged and swallowed here. They must never fail the
action that triggered the notification.
"""

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..models import (
    EmailDigestQueue,
    EmailFrequency,
    Feedback,
    Notification,
    NotificationType,
    Panel,
    PanelInvitation,
    Round,
    Topic,
    User,
)
from .consensus import ConsensusMetrics
from .email_service import (
    EmailDeliveryError,
    EmailService,
    build_notification_email,
)
from .notifications import NotificationService, PreferencesView

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Creates notifications and routes their email delivery."""

    def __init__(
        self,
        session: AsyncSession,
        email_service: EmailService | None = None,
    ):
        self._session = session
        self._store = NotificationService(session)
        self._email = email_service or EmailService()

    # =========================================================================
    # CORE FAN-OUT
    # =========================================================================

    async def notify(
        self,
        notification_type: NotificationType,
        recipients: Iterable[str],
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> list[Notification]:
        """Notify each recipient once, honoring their preferences."""
        created: list[Notification] = []

        for user_id in dict.fromkeys(recipients):
            prefs = await self._store.get_preferences(user_id)
            if not prefs.allows(notification_type):
                logger.debug(f"{user_id} disabled {notification_type.value} notifications")
                continue

            notification = await self._store.create(
                user_id=user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                data=data,
            )
            created.append(notification)

            if prefs.email:
                await self._deliver_email(prefs, notification)

        return created

    async def _deliver_email(self, prefs: PreferencesView, notification: Notification) -> None:
        user = await self._session.get(User, prefs.user_id)
        if user is None or not user.email:
            logger.debug(f"No email address on file for {prefs.user_id}, skipping email")
            return

        if prefs.email_frequency == EmailFrequency.IMMEDIATE:
            await self._send_immediate(user, notification)
        else:
            await self._enqueue_digest(user, prefs.email_frequency, notification)

    async def _send_immediate(self, user: User, notification: Notification) -> None:
        if not self._email.is_configured:
            logger.debug("Email delivery not configured, skipping immediate email")
            return

        message = build_notification_email(
            to=user.email,
            recipient_name=user.name,
            notification_type=notification.type,
            title=notification.title,
            message=notification.message,
            data=notification.data,
            config=self._email.config,
        )
        try:
            await self._email.send(message)
        except EmailDeliveryError as e:
            logger.error(f"Failed to email {notification.type.value} notification to {user.id}: {e}")

    async def _enqueue_digest(
        self,
        user: User,
        frequency: EmailFrequency,
        notification: Notification,
    ) -> None:
        entry = EmailDigestQueue(
            user_id=user.id,
            email=user.email,
            frequency=frequency,
            notification_id=notification.id,
            type=notification.type,
            title=notification.title,
            message=notification.message,
            data=dict(notification.data or {}),
        )
        try:
            # Savepoint: a failed enqueue must not lose the in-app record
            async with self._session.begin_nested():
                self._session.add(entry)
        except SQLAlchemyError as e:
            logger.error(f"Failed to queue digest entry for {user.id}: {e}")

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    async def on_topic_created(self, topic_id: str) -> list[Notification]:
        """Tell every panel expert about a new topic."""
        topic = await self._session.get(Topic, topic_id)
        if topic is None:
            logger.warning(f"Topic {topic_id} vanished before notifications were sent")
            return []
        panel = await self._session.get(Panel, topic.panel_id)
        if panel is None:
            return []

        return await self.notify(
            NotificationType.TOPIC_ASSIGNED,
            recipients=panel.expert_ids or [],
            title="New topic assigned",
            message=f'A new topic "{topic.title}" was added to {panel.name}.',
            data={"topicId": topic.id, "panelId": panel.id},
        )

    async def on_feedback_created(self, feedback_id: str) -> list[Notification]:
        """Tell the topic creator about new feedback from someone else."""
        feedback = await self._session.get(Feedback, feedback_id)
        if feedback is None:
            return []
        topic = await self._session.get(Topic, feedback.topic_id)
        if topic is None or topic.created_by == feedback.expert_id:
            return []

        return await self.notify(
            NotificationType.NEW_FEEDBACK,
            recipients=[topic.created_by],
            title="New feedback received",
            message=f'New {feedback.type.value} feedback on "{topic.title}" (round {feedback.round_number}).',
            data={
                "topicId": topic.id,
                "feedbackId": feedback.id,
                "roundNumber": feedback.round_number,
            },
        )

    async def on_round_closed(self, round_id: str) -> list[Notification]:
        """Tell every panel expert that a round finished."""
        round_, topic, panel = await self._load_round_context(round_id)
        if panel is None:
            return []

        return await self.notify(
            NotificationType.ROUND_CLOSED,
            recipients=panel.expert_ids or [],
            title=f"Round {round_.round_number} closed",
            message=f'Round {round_.round_number} of "{topic.title}" has been closed.',
            data={
                "topicId": topic.id,
                "roundId": round_.id,
                "roundNumber": round_.round_number,
            },
        )

    async def on_consensus_reached(
        self,
        round_id: str,
        metrics: ConsensusMetrics,
    ) -> list[Notification]:
        """Tell the whole panel when a closed round crossed the consensus threshold."""
        threshold = get_settings().consensus_threshold
        if metrics.total_feedback == 0 or metrics.consensus_level < threshold:
            return []

        round_, topic, panel = await self._load_round_context(round_id)
        if panel is None:
            return []

        return await self.notify(
            NotificationType.CONSENSUS_REACHED,
            recipients=[*(panel.expert_ids or []), *(panel.admin_ids or [])],
            title="Consensus reached",
            message=(
                f'The panel reached {metrics.consensus_level}% consensus on "{topic.title}" '
                f"in round {round_.round_number}."
            ),
            data={
                "topicId": topic.id,
                "roundNumber": round_.round_number,
                "consensusLevel": metrics.consensus_level,
            },
        )

    async def on_invitation_created(self, invitation_id: str) -> list[Notification]:
        """Tell an already registered user that they were invited to a panel."""
        invitation = await self._session.get(PanelInvitation, invitation_id)
        if invitation is None:
            return []

        result = await self._session.execute(
            select(User.id).where(func.lower(User.email) == invitation.email)
        )
        recipients = list(result.scalars().all())
        if not recipients:
            # Not signed up yet; the invitation email is the only channel
            return []

        inviter = invitation.invited_by_name or "A panel administrator"
        return await self.notify(
            NotificationType.INVITATION,
            recipients=recipients,
            title="Panel invitation",
            message=f"{inviter} invited you to join {invitation.panel_name} as an expert.",
            data={"panelId": invitation.panel_id, "invitationId": invitation.id},
        )

    async def _load_round_context(
        self,
        round_id: str,
    ) -> tuple[Round | None, Topic | None, Panel | None]:
        result = await self._session.execute(
            select(Round, Topic, Panel)
            .join(Topic, Round.topic_id == Topic.id)
            .join(Panel, Topic.panel_id == Panel.id)
            .where(Round.id == round_id)
        )
        row = result.first()
        if row is None:
            logger.warning(f"Round {round_id} not found for notification")
            return None, None, None
        return row[0], row[1], row[2]
