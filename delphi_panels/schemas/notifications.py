"""Notification schemas.

Client-created notifications are a tagged union on ``type``: every type that
is about a topic carries a ``topicId``, invitations carry a ``panelId``.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from ..models import EmailFrequency, NotificationType
from .base import DelphiBaseModel


# =============================================================================
# CREATE REQUEST (tagged union)
# =============================================================================


class TopicNotificationData(BaseModel):
    model_config = ConfigDict(extra="allow")

    topic_id: str = Field(alias="topicId", min_length=1)


class PanelNotificationData(BaseModel):
    model_config = ConfigDict(extra="allow")

    panel_id: str = Field(alias="panelId", min_length=1)


class _CreateNotificationBase(BaseModel):
    user_id: str = Field(alias="userId", min_length=1)
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)


class CreateTopicNotification(_CreateNotificationBase):
    type: Literal["topic_assigned", "new_feedback", "round_closed", "consensus_reached"]
    data: TopicNotificationData


class CreateInvitationNotification(_CreateNotificationBase):
    type: Literal["invitation"]
    data: PanelNotificationData


CreateNotificationRequest = Annotated[
    Union[CreateTopicNotification, CreateInvitationNotification],
    Field(discriminator="type"),
]

create_notification_adapter: TypeAdapter[CreateNotificationRequest] = TypeAdapter(
    CreateNotificationRequest
)


# =============================================================================
# RESPONSES
# =============================================================================


class NotificationResponse(DelphiBaseModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = {}
    read: bool
    created_at: datetime


class UnreadCountResponse(DelphiBaseModel):
    count: int


class PreferencesResponse(DelphiBaseModel):
    user_id: str
    email: bool
    email_frequency: EmailFrequency
    topic_assigned: bool
    new_feedback: bool
    round_closed: bool
    consensus_reached: bool
    invitation: bool
    sound: bool
    browser_notifications: bool


class UpdatePreferencesRequest(DelphiBaseModel):
    """Partial preferences update; omitted fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    email: bool | None = None
    email_frequency: EmailFrequency | None = None
    topic_assigned: bool | None = None
    new_feedback: bool | None = None
    round_closed: bool | None = None
    consensus_reached: bool | None = None
    invitation: bool | None = None
    sound: bool | None = None
    browser_notifications: bool | None = None
