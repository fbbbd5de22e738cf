"""Schemas for topics, rounds, feedback and consensus metrics."""

from datetime import datetime

from pydantic import Field

from ..models import Feedback, FeedbackType, RoundStatus, TopicStatus
from .base import DelphiBaseModel


# =============================================================================
# TOPICS & ROUNDS
# =============================================================================


class TopicResponse(DelphiBaseModel):
    id: str
    title: str
    description: str
    question: str
    panel_id: str
    created_by: str
    status: TopicStatus
    round_number: int
    current_round_id: str | None = None
    total_rounds: int
    ai_extracted: bool = False
    ai_confidence: float | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class RoundResponse(DelphiBaseModel):
    id: str
    topic_id: str
    round_number: int
    status: RoundStatus
    summary: str | None = None
    start_date: datetime
    end_date: datetime | None = None


class ConsensusResponse(DelphiBaseModel):
    """Consensus metrics for one round."""

    consensus_level: int = Field(ge=0, le=100)
    participation_rate: int = Field(ge=0, le=100)
    agreement_score: float = Field(ge=0, le=1)
    standard_deviation: float
    total_participants: int
    total_feedback: int


class RoundCloseResponse(DelphiBaseModel):
    round: RoundResponse
    consensus: ConsensusResponse


# =============================================================================
# FEEDBACK
# =============================================================================


class FeedbackResponse(DelphiBaseModel):
    """Feedback as shown to panel members.

    Author and rater identities are withheld. The viewer only learns whether
    the item is their own and what they rated it.
    """

    id: str
    topic_id: str
    round_id: str | None = None
    round_number: int
    type: FeedbackType
    content: str
    parent_id: str | None = None
    is_mine: bool = False
    agreement_count: int = 0
    average_agreement: float | None = None
    my_agreement: int | None = None
    upvote_count: int = 0
    downvote_count: int = 0
    my_vote: str | None = None
    created_at: datetime

    @classmethod
    def for_viewer(cls, feedback: Feedback, viewer_id: str) -> "FeedbackResponse":
        agreements = feedback.agreements or {}
        upvotes = feedback.upvotes or []
        downvotes = feedback.downvotes or []

        my_vote = None
        if viewer_id in upvotes:
            my_vote = "up"
        elif viewer_id in downvotes:
            my_vote = "down"

        return cls(
            id=feedback.id,
            topic_id=feedback.topic_id,
            round_id=feedback.round_id,
            round_number=feedback.round_number,
            type=feedback.type,
            content=feedback.content,
            parent_id=feedback.parent_id,
            is_mine=feedback.expert_id == viewer_id,
            agreement_count=len(agreements),
            average_agreement=(
                round(sum(agreements.values()) / len(agreements), 2) if agreements else None
            ),
            my_agreement=agreements.get(viewer_id),
            upvote_count=len(upvotes),
            downvote_count=len(downvotes),
            my_vote=my_vote,
            created_at=feedback.created_at,
        )


class TrendPointResponse(DelphiBaseModel):
    round_number: int
    average_agreement: float
    participant_count: int
    consensus_level: int


class StabilityResponse(DelphiBaseModel):
    average_change: float
    stability_score: int
    total_changes: int
