"""SQLAlchemy ORM Models for Delphi Panels."""

from .base import Base, IdMixin, TimestampMixin, as_utc, utcnow
from .models import (
    AGREEMENT_LEVELS,
    # Enums
    EmailFrequency,
    ExpertStatus,
    FeedbackType,
    InvitationStatus,
    NotificationType,
    PanelStatus,
    RoundStatus,
    TopicStatus,
    # Users & panels
    Expert,
    Panel,
    PanelInvitation,
    User,
    # Topics
    Feedback,
    Round,
    Topic,
    # Notifications
    EmailDigestQueue,
    Notification,
    NotificationPreferences,
)

__all__ = [
    "Base",
    "IdMixin",
    "TimestampMixin",
    "as_utc",
    "utcnow",
    "AGREEMENT_LEVELS",
    "EmailFrequency",
    "ExpertStatus",
    "FeedbackType",
    "InvitationStatus",
    "NotificationType",
    "PanelStatus",
    "RoundStatus",
    "TopicStatus",
    "Expert",
    "Panel",
    "PanelInvitation",
    "User",
    "Feedback",
    "Round",
    "Topic",
    "EmailDigestQueue",
    "Notification",
    "NotificationPreferences",
]
