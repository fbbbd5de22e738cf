"""SQLAlchemy ORM Models for Delphi Panels.

Table names are the collection names other collaborators (frontend, cron,
exports) rely on, so they are kept exactly as published.
"""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, IdMixin, JSONType, TimestampMixin, utcnow


# =============================================================================
# ENUMS
# =============================================================================


class PanelStatus(str, PyEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class ExpertStatus(str, PyEnum):
    INVITED = "invited"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class InvitationStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class TopicStatus(str, PyEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"


class RoundStatus(str, PyEnum):
    ACTIVE = "active"
    COMPLETED = "completed"


class FeedbackType(str, PyEnum):
    IDEA = "idea"
    SOLUTION = "solution"
    CONCERN = "concern"
    VOTE = "vote"
    REFINEMENT = "refinement"


class NotificationType(str, PyEnum):
    TOPIC_ASSIGNED = "topic_assigned"
    NEW_FEEDBACK = "new_feedback"
    ROUND_CLOSED = "round_closed"
    CONSENSUS_REACHED = "consensus_reached"
    INVITATION = "invitation"


class EmailFrequency(str, PyEnum):
    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"


AGREEMENT_LEVELS = (-2, -1, 0, 1, 2)


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# Shared by notifications and the digest queue so PostgreSQL gets one type each
NOTIFICATION_TYPE_ENUM = _enum(NotificationType, "notification_type")
EMAIL_FREQUENCY_ENUM = _enum(EmailFrequency, "email_frequency")


# =============================================================================
# USERS
# =============================================================================


class User(Base):
    """Authenticated account. The id is the identity provider uid."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    auth_provider: Mapped[str] = mapped_column(String(50), default="firebase", nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def name(self) -> str:
        return self.display_name or self.email or f"User {self.id[-8:]}"


# =============================================================================
# PANELS & EXPERTS
# =============================================================================


class Panel(Base, IdMixin, TimestampMixin):
    """A named group of experts plus administrators."""

    __tablename__ = "panels"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    creator_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    admin_ids: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    expert_ids: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    status: Mapped[PanelStatus] = mapped_column(
        _enum(PanelStatus, "panel_status"),
        default=PanelStatus.ACTIVE,
        nullable=False,
    )

    @property
    def member_count(self) -> int:
        return len(set(self.admin_ids or []) | set(self.expert_ids or []))

    def is_admin(self, user_id: str) -> bool:
        return user_id in (self.admin_ids or [])

    def is_member(self, user_id: str) -> bool:
        return user_id in (self.admin_ids or []) or user_id in (self.expert_ids or [])


class Expert(Base, IdMixin, TimestampMixin):
    """An invitee to a panel, linked to a user once accepted."""

    __tablename__ = "experts"
    __table_args__ = (
        UniqueConstraint("panel_id", "email", name="uq_experts_panel_email"),
    )

    panel_id: Mapped[str] = mapped_column(
        ForeignKey("panels.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    organization: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expertise: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ExpertStatus] = mapped_column(
        _enum(ExpertStatus, "expert_status"),
        default=ExpertStatus.INVITED,
        nullable=False,
    )
    invited_by: Mapped[str] = mapped_column(String(128), nullable=False)
    invited_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)


class PanelInvitation(Base, IdMixin, TimestampMixin):
    """Token-bearing, time-boxed invitation to join a panel as an expert."""

    __tablename__ = "panelInvitations"
    __table_args__ = (
        Index("ix_panel_invitations_panel_status", "panel_id", "status"),
    )

    panel_id: Mapped[str] = mapped_column(
        ForeignKey("panels.id", ondelete="CASCADE"), nullable=False
    )
    panel_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[InvitationStatus] = mapped_column(
        _enum(InvitationStatus, "invitation_status"),
        default=InvitationStatus.PENDING,
        nullable=False,
    )
    invited_by: Mapped[str] = mapped_column(String(128), nullable=False)
    invited_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expert_id: Mapped[str | None] = mapped_column(String(128), nullable=True)


# =============================================================================
# TOPICS, ROUNDS & FEEDBACK
# =============================================================================


class Topic(Base, IdMixin, TimestampMixin):
    """A discussion item driven through one or more rounds."""

    __tablename__ = "topics"
    __table_args__ = (
        Index("ix_topics_panel_status", "panel_id", "status"),
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    question: Mapped[str] = mapped_column(Text, default="", nullable=False)
    panel_id: Mapped[str] = mapped_column(
        ForeignKey("panels.id", ondelete="CASCADE"), nullable=False
    )
    created_by: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[TopicStatus] = mapped_column(
        _enum(TopicStatus, "topic_status"),
        default=TopicStatus.DRAFT,
        nullable=False,
    )
    round_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Points at the most recently created round; kept consistent by RoundEngine
    current_round_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    total_rounds: Mapped[int] = mapped_column(Integer, default=2, nullable=False)

    # AI extraction
    raw_input: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_extracted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ai_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)


class Round(Base):
    """One feedback cycle of a topic. Immutable once completed except summary."""

    __tablename__ = "rounds"
    __table_args__ = (
        UniqueConstraint("topic_id", "round_number", name="uq_rounds_topic_round"),
    )

    # Deterministic: f"{topic_id}_round_{round_number}"
    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    topic_id: Mapped[str] = mapped_column(
        ForeignKey("topics.id", ondelete="CASCADE"), nullable=False, index=True
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[RoundStatus] = mapped_column(
        _enum(RoundStatus, "round_status"),
        default=RoundStatus.ACTIVE,
        nullable=False,
    )
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(nullable=True)

    @staticmethod
    def make_id(topic_id: str, round_number: int) -> str:
        return f"{topic_id}_round_{round_number}"


class Feedback(Base, IdMixin, TimestampMixin):
    """A single expert contribution within a round."""

    __tablename__ = "feedback"
    __table_args__ = (
        Index("ix_feedback_topic_round", "topic_id", "round_number"),
    )

    # Plain reference: feedback outlives a deleted topic
    topic_id: Mapped[str] = mapped_column(String(128), nullable=False)
    panel_id: Mapped[str] = mapped_column(String(128), nullable=False)
    # Anonymous to peers; never serialized to other experts
    expert_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    round_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[FeedbackType] = mapped_column(
        _enum(FeedbackType, "feedback_type"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    parent_id: Mapped[str | None] = mapped_column(
        ForeignKey("feedback.id", ondelete="SET NULL"), nullable=True, index=True
    )
    # expert id -> level in [-2, 2]
    agreements: Mapped[dict[str, int]] = mapped_column(JSONType, default=dict, nullable=False)
    # Legacy vote sets, kept disjoint per user
    upvotes: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    downvotes: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class Notification(Base, IdMixin):
    """Per-user in-app event record."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "read"),
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        NOTIFICATION_TYPE_ENUM,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class NotificationPreferences(Base):
    """Per-user delivery settings, keyed by user id."""

    __tablename__ = "notificationPreferences"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    email_frequency: Mapped[EmailFrequency] = mapped_column(
        EMAIL_FREQUENCY_ENUM,
        default=EmailFrequency.IMMEDIATE,
        nullable=False,
    )
    topic_assigned: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    new_feedback: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    round_closed: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    consensus_reached: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    invitation: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sound: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    browser_notifications: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


class EmailDigestQueue(Base, IdMixin):
    """A notification waiting to be batched into a daily or weekly digest."""

    __tablename__ = "emailDigestQueue"
    __table_args__ = (
        Index("ix_email_digest_queue_frequency_user", "frequency", "user_id"),
    )

    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    frequency: Mapped[EmailFrequency] = mapped_column(
        EMAIL_FREQUENCY_ENUM,
        nullable=False,
    )
    notification_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    type: Mapped[NotificationType] = mapped_column(
        NOTIFICATION_TYPE_ENUM,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
