"""Notification store: in-app notification records and delivery preferences."""

import logging
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Any, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import InvalidArgument, NotFound
from ..models import (
    EmailFrequency,
    Notification,
    NotificationPreferences,
    NotificationType,
    utcnow,
)

logger = logging.getLogger(__name__)


# Preference column that gates each notification type
TYPE_PREFERENCE_FIELDS = {
    NotificationType.TOPIC_ASSIGNED: "topic_assigned",
    NotificationType.NEW_FEEDBACK: "new_feedback",
    NotificationType.ROUND_CLOSED: "round_closed",
    NotificationType.CONSENSUS_REACHED: "consensus_reached",
    NotificationType.INVITATION: "invitation",
}


@dataclass
class PreferencesView:
    """Effective preferences for a user, defaults applied."""
    user_id: str
    email: bool = True
    email_frequency: EmailFrequency = EmailFrequency.IMMEDIATE
    topic_assigned: bool = True
    new_feedback: bool = True
    round_closed: bool = True
    consensus_reached: bool = True
    invitation: bool = True
    sound: bool = True
    browser_notifications: bool = False

    @classmethod
    def from_row(cls, row: NotificationPreferences) -> "PreferencesView":
        return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})

    def allows(self, notification_type: NotificationType) -> bool:
        return bool(getattr(self, TYPE_PREFERENCE_FIELDS[notification_type]))


PREFERENCE_FIELDS = frozenset(f.name for f in fields(PreferencesView)) - {"user_id"}


class NotificationService:
    """CRUD for notifications and notification preferences."""

    def __init__(self, session: AsyncSession):
        self._session = session

    # =========================================================================
    # PREFERENCES
    # =========================================================================

    async def get_preferences(self, user_id: str) -> PreferencesView:
        """Stored preferences, or the defaults when the user never saved any."""
        row = await self._session.get(NotificationPreferences, user_id)
        if row is None:
            return PreferencesView(user_id=user_id)
        return PreferencesView.from_row(row)

    async def update_preferences(self, user_id: str, changes: dict[str, Any]) -> PreferencesView:
        """Merge ``changes`` into the user's stored preferences."""
        unknown = set(changes) - PREFERENCE_FIELDS
        if unknown:
            raise InvalidArgument(f"Unknown preference fields: {', '.join(sorted(unknown))}")

        row = await self._session.get(NotificationPreferences, user_id)
        if row is None:
            row = NotificationPreferences(user_id=user_id)
            self._session.add(row)

        for name, value in changes.items():
            if name == "email_frequency":
                value = EmailFrequency(value)
            setattr(row, name, value)

        await self._session.flush()
        return PreferencesView.from_row(row)

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    async def create(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            data=dict(data or {}),
            read=False,
        )
        self._session.add(notification)
        await self._session.flush()
        return notification

    async def list_for_user(
        self,
        user_id: str,
        limit: int = 20,
        unread_only: bool = False,
    ) -> Sequence[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.read.is_(False))
        query = query.order_by(Notification.created_at.desc()).limit(limit)

        result = await self._session.execute(query)
        return result.scalars().all()

    async def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        notification = await self._session.get(Notification, notification_id)
        # Other users' notifications are reported as missing
        if notification is None or notification.user_id != user_id:
            raise NotFound(f"Notification {notification_id} not found")

        notification.read = True
        await self._session.flush()
        return notification

    async def mark_all_as_read(self, user_id: str) -> int:
        result = await self._session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def unread_count(self, user_id: str) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
        )
        return result.scalar_one()

    async def delete_old(self, user_id: str, days_old: int = 30) -> int:
        """Delete a user's notifications older than ``days_old`` days."""
        cutoff = utcnow() - timedelta(days=days_old)
        result = await self._session.execute(
            delete(Notification)
            .where(Notification.user_id == user_id, Notification.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Deleted {deleted} notifications older than {days_old} days for {user_id}")
        return deleted
