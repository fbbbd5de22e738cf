"""AI API Routes: topic extraction and round summaries."""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import Field, field_validator
from sqlalchemy import select

from ..core import CurrentUserDep, NotFound, ServiceUnavailable, SessionDep
from ..models import Feedback, Topic
from ..schemas.base import DelphiBaseModel
from ..services.ai_extractor import RoundSummarizer, TopicExtractor
from .topics import get_round_summarizer

router = APIRouter(prefix="/ai", tags=["ai"])


# =============================================================================
# REQUEST/RESPONSE SCHEMAS
# =============================================================================


class ExtractTopicRequest(DelphiBaseModel):
    raw_text: str = Field(..., description="Meeting notes, emails or other unstructured text")
    panel_context: str | None = None

    @field_validator("raw_text")
    @classmethod
    def raw_text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("rawText cannot be blank")
        return v


class ExtractedTopicResponse(DelphiBaseModel):
    title: str
    description: str
    question: str
    suggested_feedback_types: list[str]
    confidence: float


class RoundSummaryRequest(DelphiBaseModel):
    topic_id: str = Field(..., min_length=1)
    round_number: int = Field(..., ge=1)


class RoundSummaryResponse(DelphiBaseModel):
    summary: str


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_topic_extractor() -> TopicExtractor:
    return TopicExtractor()


TopicExtractorDep = Annotated[TopicExtractor, Depends(get_topic_extractor)]
RoundSummarizerDep = Annotated[RoundSummarizer, Depends(get_round_summarizer)]


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post(
    "/extract-topic",
    response_model=ExtractedTopicResponse,
    summary="Extract a topic from raw text",
    description="""
    Turn unstructured text into a topic draft (title, description, question,
    suggested feedback types). Falls back to keyword heuristics with a low
    confidence when the model response is unusable.
    """,
)
async def extract_topic(
    request: ExtractTopicRequest,
    current_user: CurrentUserDep,
    extractor: TopicExtractorDep,
):
    if not extractor.is_configured:
        raise ServiceUnavailable("AI topic extraction is not configured")

    extracted = await extractor.extract_topic(request.raw_text, request.panel_context)
    return ExtractedTopicResponse.model_validate(extracted)


@router.post(
    "/round-summary",
    response_model=RoundSummaryResponse,
    summary="Summarize a round's feedback",
)
async def round_summary(
    request: RoundSummaryRequest,
    current_user: CurrentUserDep,
    summarizer: RoundSummarizerDep,
    session: SessionDep,
):
    if not summarizer.is_configured:
        raise ServiceUnavailable("AI summaries are not configured")

    if await session.get(Topic, request.topic_id) is None:
        raise NotFound(f"Topic {request.topic_id} not found")

    result = await session.execute(
        select(Feedback).where(
            Feedback.topic_id == request.topic_id,
            Feedback.round_number == request.round_number,
        )
    )
    summary = await summarizer.summarize(result.scalars().all())
    return RoundSummaryResponse(summary=summary)
