"""Business logic services for Delphi Panels."""

from .ai_extractor import ExtractedTopic, RoundSummarizer, TopicExtractor
from .consensus import ConsensusMetrics, calculate_consensus
from .email_service import EmailConfig, EmailDeliveryError, EmailService
from .events import (
    DomainEvent,
    FeedbackCreated,
    InvitationCreated,
    RoundCompleted,
    TopicCreated,
    dispatch_event,
)
from .feedback_store import FeedbackQuery, FeedbackStore, SubmitFeedbackInput
from .invitations import InvitationService
from .notification_dispatcher import NotificationDispatcher
from .notifications import NotificationService
from .panels import PanelService
from .round_engine import RoundEngine
from .topics import TopicService
from .vote_continuity import VoteContinuityService

__all__ = [
    # Rounds & consensus
    "RoundEngine",
    "ConsensusMetrics",
    "calculate_consensus",
    # Topics, feedback & panels
    "TopicService",
    "FeedbackStore",
    "FeedbackQuery",
    "SubmitFeedbackInput",
    "VoteContinuityService",
    "PanelService",
    "InvitationService",
    # AI
    "TopicExtractor",
    "RoundSummarizer",
    "ExtractedTopic",
    # Notifications & email
    "NotificationService",
    "NotificationDispatcher",
    "EmailService",
    "EmailConfig",
    "EmailDeliveryError",
    # Events
    "DomainEvent",
    "TopicCreated",
    "FeedbackCreated",
    "RoundCompleted",
    "InvitationCreated",
    "dispatch_event",
]
