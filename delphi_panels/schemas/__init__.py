"""Delphi Panels API Schemas.

Schemas are organized by domain:
- base: base model, error responses
- topics: topics, rounds, feedback, consensus
- notifications: notification union, preferences
- panels: panels, experts, invitations
"""

from .base import DelphiBaseModel, ErrorDetail, ErrorResponse
from .notifications import (
    CreateInvitationNotification,
    CreateNotificationRequest,
    CreateTopicNotification,
    NotificationResponse,
    PreferencesResponse,
    UnreadCountResponse,
    UpdatePreferencesRequest,
    create_notification_adapter,
)
from .panels import (
    BulkInvitationFailure,
    BulkInvitationResponse,
    ExpertResponse,
    InvitationPreviewResponse,
    InvitationResponse,
    PanelResponse,
)
from .topics import (
    ConsensusResponse,
    FeedbackResponse,
    RoundCloseResponse,
    RoundResponse,
    StabilityResponse,
    TopicResponse,
    TrendPointResponse,
)

__all__ = [
    # Base
    "DelphiBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    # Notifications
    "CreateInvitationNotification",
    "CreateNotificationRequest",
    "CreateTopicNotification",
    "NotificationResponse",
    "PreferencesResponse",
    "UnreadCountResponse",
    "UpdatePreferencesRequest",
    "create_notification_adapter",
    # Panels
    "BulkInvitationFailure",
    "BulkInvitationResponse",
    "ExpertResponse",
    "InvitationPreviewResponse",
    "InvitationResponse",
    "PanelResponse",
    # Topics
    "ConsensusResponse",
    "FeedbackResponse",
    "RoundCloseResponse",
    "RoundResponse",
    "StabilityResponse",
    "TopicResponse",
    "TrendPointResponse",
]
