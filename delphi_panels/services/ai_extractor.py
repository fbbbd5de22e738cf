"""AI services for topic extraction and round summaries.

Uses Google Gemini to:
- Turn unstructured text (meeting notes, emails) into a Delphi topic with
  title, description, question and suggested feedback types
- Summarize the key themes of a round's feedback

Extraction degrades to a deterministic heuristic when the model call fails.
Summaries do not: a failed summary call aborts the round close.
"""

import json
import logging
import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

import httpx

from ..core.config import get_settings
from ..core.errors import ServiceUnavailable
from ..models import Feedback, FeedbackType

logger = logging.getLogger(__name__)

NO_FEEDBACK_SUMMARY = "No feedback provided in this round."

DEFAULT_FEEDBACK_TYPES = [FeedbackType.IDEA.value, FeedbackType.SOLUTION.value, FeedbackType.CONCERN.value]
VALID_FEEDBACK_TYPES = {t.value for t in FeedbackType}

HEURISTIC_CONFIDENCE = 0.3


class AIServiceError(Exception):
    """The model call failed or returned something unusable."""
    pass


@dataclass
class ExtractedTopic:
    """Structured topic extracted from raw text."""

    title: str
    description: str
    question: str
    suggested_feedback_types: list[str] = field(default_factory=lambda: list(DEFAULT_FEEDBACK_TYPES))
    confidence: float = 0.7
    # True when produced by the keyword heuristic instead of the model
    heuristic: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# GEMINI CLIENT
# =============================================================================


class GeminiClient:
    """Minimal Gemini ``generateContent`` client over httpx."""

    GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.timeout_seconds = timeout_seconds or settings.ai_timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        json_output: bool = False,
        max_output_tokens: int = 1000,
    ) -> str:
        """Call Gemini and return the text of the first candidate."""
        if not self.is_configured:
            raise AIServiceError("Gemini API key not configured")

        generation_config: dict[str, Any] = {
            "temperature": 0.3,
            "topP": 0.8,
            "maxOutputTokens": max_output_tokens,
        }
        if json_output:
            generation_config["responseMimeType"] = "application/json"

        payload = {
            "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "generationConfig": generation_config,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self.GEMINI_API_URL.format(model=self.model),
                    params={"key": self.api_key},
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise AIServiceError(f"Gemini request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Gemini API error: {response.status_code} - {response.text[:200]}")
            raise AIServiceError(f"Gemini API error: {response.status_code}")

        try:
            data = response.json()
            candidates = data.get("candidates", [])
            if not candidates:
                raise AIServiceError("No response from Gemini")

            parts = candidates[0].get("content", {}).get("parts", [])
            if not parts:
                raise AIServiceError("Empty response from Gemini")

            text = parts[0].get("text", "")
        except (ValueError, AttributeError, KeyError, IndexError, TypeError) as e:
            raise AIServiceError(f"Malformed Gemini response: {e}") from e

        if not isinstance(text, str):
            raise AIServiceError("Gemini response text is not a string")
        return text


# =============================================================================
# TOPIC EXTRACTION
# =============================================================================


class TopicExtractor:
    """Extracts a Delphi topic from unstructured text."""

    SYSTEM_PROMPT = """You are an expert at extracting structured information from unstructured text to create topics for group discussion using the Delphi method.

The Delphi method is a structured communication technique for gathering expert opinions anonymously over multiple rounds to reach consensus.

Your task is to extract:
1. A clear, concise title (max 100 chars)
2. A detailed description providing context (max 500 chars)
3. A specific, actionable question that experts can provide feedback on
4. Suggested feedback types that would be most helpful (idea, solution, concern, vote, refinement)

Context about the panel (if provided): {panel_context}"""

    USER_PROMPT = """Extract a topic for Delphi method discussion from the following text:

{raw_text}

Respond in JSON format with this structure:
{{
  "title": "string",
  "description": "string",
  "question": "string",
  "suggestedFeedbackTypes": ["idea", "solution", "concern"],
  "confidence": 0.0-1.0
}}"""

    def __init__(self, client: GeminiClient | None = None):
        self._client = client or GeminiClient()

    @property
    def is_configured(self) -> bool:
        return self._client.is_configured

    async def extract_topic(self, raw_text: str, panel_context: str | None = None) -> ExtractedTopic:
        """Extract a topic, falling back to the heuristic on any model failure."""
        try:
            response_text = await self._client.generate(
                system_prompt=self.SYSTEM_PROMPT.format(panel_context=panel_context or "General purpose panel"),
                user_prompt=self.USER_PROMPT.format(raw_text=raw_text),
                json_output=True,
            )
            return self._parse_response(response_text)
        except AIServiceError as e:
            logger.warning(f"AI topic extraction failed, using heuristic extraction: {e}")
            return heuristic_extract(raw_text)

    def _parse_response(self, response_text: str) -> ExtractedTopic:
        cleaned = response_text.strip()
        if cleaned.startswith("```json"):
            cleaned = cleaned[7:]
        if cleaned.startswith("```"):
            cleaned = cleaned[3:]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]

        try:
            data = json.loads(cleaned.strip())
        except json.JSONDecodeError as e:
            raise AIServiceError(f"Failed to parse AI response: {e}") from e
        if not isinstance(data, dict):
            raise AIServiceError("AI response is not a JSON object")

        title = _string_field(data, "title") or "Untitled Topic"
        description = _string_field(data, "description")
        question = _string_field(data, "question") or "What are your thoughts on this topic?"

        suggested = data.get("suggestedFeedbackTypes") or []
        if not isinstance(suggested, list):
            raise AIServiceError("suggestedFeedbackTypes is not a list")
        types = [t for t in suggested if isinstance(t, str) and t in VALID_FEEDBACK_TYPES]

        try:
            confidence = float(data.get("confidence") or 0.7)
        except (TypeError, ValueError):
            confidence = 0.7

        return ExtractedTopic(
            title=title[:100],
            description=description[:500],
            question=question,
            suggested_feedback_types=types or list(DEFAULT_FEEDBACK_TYPES),
            confidence=max(0.0, min(1.0, confidence)),
        )


def _string_field(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise AIServiceError(f"AI response field {key!r} is not a string")
    return value


# Keyword templates for the heuristic question, checked in order
_QUESTION_TEMPLATES: list[tuple[tuple[str, ...], str]] = [
    (("problem", "issue", "challenge", "risk", "barrier"), "How should we address {subject}?"),
    (("should", "propose", "proposal", "consider", "option"), "Should we {subject}?"),
    (("improve", "improvement", "better", "optimize", "enhance"), "How can we improve {subject}?"),
    (("priority", "prioritize", "rank", "most important"), "What should be prioritized regarding {subject}?"),
]

_TYPE_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("idea", "brainstorm", "suggest", "new"), FeedbackType.IDEA.value),
    (("solution", "solve", "fix", "approach", "implement"), FeedbackType.SOLUTION.value),
    (("concern", "risk", "problem", "issue", "worry"), FeedbackType.CONCERN.value),
    (("vote", "choose", "decide", "select", "option"), FeedbackType.VOTE.value),
]

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+|\n+")


def _first_sentence(text: str) -> str:
    parts = [p.strip() for p in _SENTENCE_END.split(text.strip()) if p.strip()]
    return parts[0] if parts else ""


def heuristic_extract(raw_text: str) -> ExtractedTopic:
    """Deterministic extraction used when the model is unavailable."""
    text = " ".join(raw_text.split())
    sentence = _first_sentence(raw_text) or text
    title = sentence.rstrip(".!?")
    if len(title) > 100:
        title = title[:97].rstrip() + "..."
    title = title or "Untitled Topic"

    lowered = text.lower()
    subject = title[0].lower() + title[1:] if title else "this topic"
    if subject.endswith("..."):
        subject = subject[:-3]

    question = f"What are your thoughts on {subject}?"
    for keywords, template in _QUESTION_TEMPLATES:
        if any(k in lowered for k in keywords):
            question = template.format(subject=subject)
            break

    types = [t for keywords, t in _TYPE_KEYWORDS if any(k in lowered for k in keywords)]

    return ExtractedTopic(
        title=title,
        description=text[:500],
        question=question,
        suggested_feedback_types=types or list(DEFAULT_FEEDBACK_TYPES),
        confidence=HEURISTIC_CONFIDENCE,
        heuristic=True,
    )


# =============================================================================
# ROUND SUMMARIES
# =============================================================================


class RoundSummarizer:
    """Summarizes a round's feedback for the close-round transition."""

    SYSTEM_PROMPT = (
        "Summarize the key themes, agreements, and disagreements from this "
        "Delphi method round feedback. Be concise and neutral, and never name "
        "or identify individual experts."
    )

    def __init__(self, client: GeminiClient | None = None):
        self._client = client or GeminiClient()

    @property
    def is_configured(self) -> bool:
        return self._client.is_configured

    async def summarize(self, feedback_items: Sequence[Feedback]) -> str:
        """Summarize the round.

        Raises:
            ServiceUnavailable: the model call failed.
        """
        if not feedback_items:
            return NO_FEEDBACK_SUMMARY

        if not self.is_configured:
            return statistical_summary(feedback_items)

        feedback_text = "\n".join(f"{f.type.value}: {f.content}" for f in feedback_items)
        try:
            summary = await self._client.generate(
                system_prompt=self.SYSTEM_PROMPT,
                user_prompt=feedback_text,
                max_output_tokens=500,
            )
        except AIServiceError as e:
            logger.error(f"Round summary generation failed: {e}")
            raise ServiceUnavailable("Failed to generate round summary") from e

        summary = summary.strip()
        if not summary:
            raise ServiceUnavailable("AI returned an empty round summary")
        return summary


def statistical_summary(feedback_items: Sequence[Feedback]) -> str:
    """Deterministic summary: counts per type and the most agreed items."""
    counts = Counter(f.type.value for f in feedback_items)
    breakdown = ", ".join(f"{n} {t}" for t, n in sorted(counts.items()))
    lines = [f"{len(feedback_items)} feedback items ({breakdown})."]

    rated = [
        (sum(f.agreements.values()) / len(f.agreements), f)
        for f in feedback_items
        if f.agreements
    ]
    rated.sort(key=lambda pair: pair[0], reverse=True)
    for average, item in rated[:3]:
        snippet = item.content if len(item.content) <= 120 else item.content[:117] + "..."
        lines.append(f"- ({average:+.1f}) {snippet}")

    return "\n".join(lines)
