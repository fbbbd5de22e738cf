"""
Topic API Routes: topics and their round lifecycle.

Round transitions:
1. POST /topics/{id}/rounds/initial - open round 1
2. POST /topics/{id}/rounds/advance - open the next round
3. POST /topics/{id}/rounds/{n}/close - summarize and complete a round
4. POST /topics/{id}/complete - finish the topic
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import Field

from ..core import CurrentUserDep, SessionDep
from ..models import TopicStatus
from ..schemas import (
    ConsensusResponse,
    RoundCloseResponse,
    RoundResponse,
    TopicResponse,
)
from ..schemas.base import DelphiBaseModel
from ..services.ai_extractor import RoundSummarizer
from ..services.events import dispatch_event
from ..services.round_engine import RoundEngine
from ..services.topics import CreateTopicInput, TopicService, UpdateTopicInput

router = APIRouter(prefix="/topics", tags=["topics"])


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================


class CreateTopicRequest(DelphiBaseModel):
    """Request to create a topic in a panel."""
    panel_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    question: str = ""
    total_rounds: int | None = Field(default=None, ge=1, le=20)
    raw_input: str | None = None
    ai_extracted: bool = False
    ai_confidence: float | None = Field(default=None, ge=0, le=1)


class UpdateTopicRequest(DelphiBaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    question: str | None = None
    total_rounds: int | None = Field(default=None, ge=1, le=20)


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_round_summarizer() -> RoundSummarizer:
    return RoundSummarizer()


def get_topic_service(session: SessionDep) -> TopicService:
    return TopicService(session)


def get_round_engine(
    session: SessionDep,
    summarizer: Annotated[RoundSummarizer, Depends(get_round_summarizer)],
) -> RoundEngine:
    return RoundEngine(session, summarizer=summarizer)


TopicServiceDep = Annotated[TopicService, Depends(get_topic_service)]
RoundEngineDep = Annotated[RoundEngine, Depends(get_round_engine)]


# =============================================================================
# TOPICS
# =============================================================================


@router.post(
    "",
    response_model=TopicResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a topic",
)
async def create_topic(
    request: CreateTopicRequest,
    current_user: CurrentUserDep,
    service: TopicServiceDep,
    session: SessionDep,
):
    """Create a draft topic and notify the panel's experts."""
    result = await service.create_topic(
        CreateTopicInput(**request.model_dump()),
        user_id=current_user.id,
    )
    await session.commit()
    await dispatch_event(result.event)
    return result.topic


@router.get("", response_model=list[TopicResponse], summary="List topics")
async def list_topics(
    current_user: CurrentUserDep,
    service: TopicServiceDep,
    panel_id: Annotated[str | None, Query(alias="panelId")] = None,
    created_by: Annotated[str | None, Query(alias="createdBy")] = None,
    topic_status: Annotated[TopicStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
):
    return await service.list_topics(
        panel_id=panel_id,
        created_by=created_by,
        status=topic_status,
        limit=limit,
    )


@router.get("/{topic_id}", response_model=TopicResponse, summary="Get a topic")
async def get_topic(topic_id: str, current_user: CurrentUserDep, service: TopicServiceDep):
    return await service.get_topic(topic_id)


@router.patch("/{topic_id}", response_model=TopicResponse, summary="Update a topic")
async def update_topic(
    topic_id: str,
    request: UpdateTopicRequest,
    current_user: CurrentUserDep,
    service: TopicServiceDep,
):
    return await service.update_topic(
        topic_id,
        UpdateTopicInput(**request.model_dump(exclude_unset=True)),
        user_id=current_user.id,
    )


@router.delete(
    "/{topic_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a topic and its rounds",
)
async def delete_topic(topic_id: str, current_user: CurrentUserDep, service: TopicServiceDep):
    await service.delete_topic(topic_id, user_id=current_user.id)


# =============================================================================
# ROUNDS
# =============================================================================


@router.post(
    "/{topic_id}/rounds/initial",
    response_model=RoundResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open round 1",
)
async def open_initial_round(topic_id: str, current_user: CurrentUserDep, engine: RoundEngineDep):
    return await engine.open_initial_round(topic_id, user_id=current_user.id)


@router.post(
    "/{topic_id}/rounds/advance",
    response_model=RoundResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open the next round",
    description="Fails with 409 while a round is still active or the topic is completed.",
)
async def advance_round(topic_id: str, current_user: CurrentUserDep, engine: RoundEngineDep):
    return await engine.advance_round(topic_id, user_id=current_user.id)


@router.post(
    "/{topic_id}/rounds/{round_number}/close",
    response_model=RoundCloseResponse,
    summary="Close a round",
    description="""
    Close an active round.

    The AI summary is generated first. If that fails the round stays active
    and the call returns 503. Completed rounds cannot be closed again (409).
    """,
)
async def close_round(
    topic_id: str,
    round_number: int,
    current_user: CurrentUserDep,
    engine: RoundEngineDep,
    session: SessionDep,
):
    result = await engine.close_round(topic_id, round_number, user_id=current_user.id)
    await session.commit()
    await dispatch_event(result.event)
    return RoundCloseResponse(
        round=RoundResponse.model_validate(result.round),
        consensus=ConsensusResponse.model_validate(result.metrics),
    )


@router.get("/{topic_id}/rounds", response_model=list[RoundResponse], summary="List rounds")
async def list_rounds(topic_id: str, current_user: CurrentUserDep, engine: RoundEngineDep):
    return await engine.get_rounds_for_topic(topic_id)


@router.get(
    "/{topic_id}/rounds/current",
    response_model=RoundResponse | None,
    summary="Get the active round",
)
async def get_current_round(topic_id: str, current_user: CurrentUserDep, engine: RoundEngineDep):
    return await engine.get_current_round(topic_id)


@router.get(
    "/{topic_id}/rounds/{round_number}/consensus",
    response_model=ConsensusResponse,
    summary="Consensus metrics for a round",
)
async def get_round_consensus(
    topic_id: str,
    round_number: int,
    current_user: CurrentUserDep,
    engine: RoundEngineDep,
):
    metrics = await engine.calculate_round_consensus(topic_id, round_number)
    return ConsensusResponse.model_validate(metrics)


@router.post("/{topic_id}/complete", response_model=TopicResponse, summary="Complete a topic")
async def complete_topic(topic_id: str, current_user: CurrentUserDep, engine: RoundEngineDep):
    return await engine.complete_topic(topic_id, user_id=current_user.id)
