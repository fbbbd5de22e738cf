"""
Feedback API Routes: submissions, agreement ratings, votes and continuity.

Feedback is anonymous to panel members. Responses never carry the author or
rater ids, only whether the caller wrote the item and how they rated it.
"""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, status
from pydantic import Field

from ..core import CurrentUserDep, InvalidArgument, SessionDep
from ..models import FeedbackType
from ..schemas import FeedbackResponse, StabilityResponse, TrendPointResponse
from ..schemas.base import DelphiBaseModel
from ..services.events import dispatch_event
from ..services.feedback_store import (
    UNSET,
    FeedbackQuery,
    FeedbackStore,
    SubmitFeedbackInput,
)
from ..services.vote_continuity import VoteContinuityService

router = APIRouter(tags=["feedback"])


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================


class SubmitFeedbackRequest(DelphiBaseModel):
    """New feedback for the topic's active round.

    The author is the authenticated caller. Any ``expertId`` in the body is
    ignored, as are round and panel fields.
    """
    type: FeedbackType
    content: str = Field(..., min_length=1)
    parent_id: str | None = None
    metadata: dict | None = None


class AgreementRequest(DelphiBaseModel):
    level: int = Field(..., ge=-2, le=2, description="Agreement from -2 (strongly disagree) to +2")


class VoteRequest(DelphiBaseModel):
    direction: Literal["up", "down"]


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_feedback_store(session: SessionDep) -> FeedbackStore:
    return FeedbackStore(session)


def get_continuity_service(session: SessionDep) -> VoteContinuityService:
    return VoteContinuityService(session)


FeedbackStoreDep = Annotated[FeedbackStore, Depends(get_feedback_store)]
ContinuityDep = Annotated[VoteContinuityService, Depends(get_continuity_service)]


# =============================================================================
# FEEDBACK
# =============================================================================


@router.post(
    "/topics/{topic_id}/feedback",
    response_model=FeedbackResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit feedback to the active round",
)
async def submit_feedback(
    topic_id: str,
    request: SubmitFeedbackRequest,
    current_user: CurrentUserDep,
    store: FeedbackStoreDep,
    session: SessionDep,
):
    result = await store.submit_feedback(
        topic_id,
        SubmitFeedbackInput(
            type=request.type,
            content=request.content,
            parent_id=request.parent_id,
            metadata=request.metadata,
        ),
        author_id=current_user.id,
    )
    await session.commit()
    await dispatch_event(result.event)
    return FeedbackResponse.for_viewer(result.feedback, current_user.id)


@router.get("/feedback", response_model=list[FeedbackResponse], summary="List feedback")
async def list_feedback(
    current_user: CurrentUserDep,
    store: FeedbackStoreDep,
    topic_id: Annotated[str | None, Query(alias="topicId")] = None,
    round_number: Annotated[int | None, Query(alias="roundNumber", ge=1)] = None,
    feedback_type: Annotated[FeedbackType | None, Query(alias="type")] = None,
    parent_id: Annotated[str | None, Query(alias="parentId")] = None,
    top_level: Annotated[bool, Query(alias="topLevel")] = False,
    mine: bool = False,
    limit: Annotated[int | None, Query(ge=1)] = None,
):
    """List feedback, newest first.

    ``topLevel=true`` returns only items without a parent. ``mine=true``
    restricts to the caller's own feedback.
    """
    if top_level and parent_id is not None:
        raise InvalidArgument("Use either parentId or topLevel, not both")

    parent_filter = None if top_level else (parent_id if parent_id is not None else UNSET)
    items = await store.list_feedback(
        FeedbackQuery(
            topic_id=topic_id,
            round_number=round_number,
            expert_id=current_user.id if mine else None,
            type=feedback_type,
            parent_id=parent_filter,
            limit=limit,
        )
    )
    return [FeedbackResponse.for_viewer(f, current_user.id) for f in items]


@router.put(
    "/feedback/{feedback_id}/agreement",
    response_model=FeedbackResponse,
    summary="Rate agreement with a feedback item",
)
async def set_agreement(
    feedback_id: str,
    request: AgreementRequest,
    current_user: CurrentUserDep,
    store: FeedbackStoreDep,
):
    feedback = await store.set_agreement(feedback_id, current_user.id, request.level)
    return FeedbackResponse.for_viewer(feedback, current_user.id)


@router.post(
    "/feedback/{feedback_id}/vote",
    response_model=FeedbackResponse,
    summary="Toggle an up or down vote",
)
async def toggle_vote(
    feedback_id: str,
    request: VoteRequest,
    current_user: CurrentUserDep,
    store: FeedbackStoreDep,
):
    feedback = await store.toggle_vote(feedback_id, current_user.id, request.direction)
    return FeedbackResponse.for_viewer(feedback, current_user.id)


@router.delete(
    "/feedback/{feedback_id}/vote",
    response_model=FeedbackResponse,
    summary="Remove the caller's vote",
)
async def remove_vote(feedback_id: str, current_user: CurrentUserDep, store: FeedbackStoreDep):
    feedback = await store.remove_vote(feedback_id, current_user.id)
    return FeedbackResponse.for_viewer(feedback, current_user.id)


# =============================================================================
# VOTE CONTINUITY
# =============================================================================


@router.get(
    "/topics/{topic_id}/continuity/previous",
    response_model=dict[str, int],
    summary="The caller's ratings from the previous round",
)
async def previous_round_agreements(
    topic_id: str,
    current_user: CurrentUserDep,
    continuity: ContinuityDep,
    round_number: Annotated[int, Query(alias="roundNumber", ge=1)],
):
    return await continuity.previous_round_agreements(topic_id, round_number, current_user.id)


@router.get(
    "/feedback/{feedback_id}/trend",
    response_model=list[TrendPointResponse],
    summary="Agreement trend along a refinement chain",
)
async def feedback_trend(
    feedback_id: str,
    current_user: CurrentUserDep,
    continuity: ContinuityDep,
    max_rounds: Annotated[int, Query(alias="maxRounds", ge=1, le=20)] = 5,
):
    points = await continuity.feedback_agreement_trend(feedback_id, max_rounds=max_rounds)
    return [TrendPointResponse.model_validate(p) for p in points]


@router.get(
    "/topics/{topic_id}/continuity/stability",
    response_model=StabilityResponse,
    summary="Stability of the caller's ratings across rounds",
)
async def expert_stability(
    topic_id: str,
    current_user: CurrentUserDep,
    continuity: ContinuityDep,
    round_number: Annotated[int, Query(alias="roundNumber", ge=1)],
):
    score = await continuity.expert_stability(topic_id, current_user.id, round_number)
    return StabilityResponse.model_validate(score)
