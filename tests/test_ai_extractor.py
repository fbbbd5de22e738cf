"""Tests for topic extraction and round summaries."""

import json

import httpx
import pytest

from delphi_panels.core.errors import ServiceUnavailable
from delphi_panels.models import Feedback, FeedbackType
from delphi_panels.services.ai_extractor import (
    HEURISTIC_CONFIDENCE,
    NO_FEEDBACK_SUMMARY,
    GeminiClient,
    RoundSummarizer,
    TopicExtractor,
    heuristic_extract,
    statistical_summary,
)


def gemini_reply(text: str, status_code: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["key"] == "test-key"
        return httpx.Response(
            status_code,
            json={"candidates": [{"content": {"parts": [{"text": text}]}}]},
        )

    return handler


def client_for(handler) -> GeminiClient:
    return GeminiClient(api_key="test-key", model="gemini-test", transport=httpx.MockTransport(handler))


def feedback(content: str, type: FeedbackType = FeedbackType.IDEA, agreements=None) -> Feedback:
    return Feedback(
        topic_id="t1",
        panel_id="p1",
        expert_id="e1",
        round_number=1,
        type=type,
        content=content,
        agreements=agreements or {},
    )


# =============================================================================
# TEST: TOPIC EXTRACTION
# =============================================================================


class TestTopicExtractor:
    """Tests for AI topic extraction and its fallback."""

    async def test_parses_model_json(self):
        reply = json.dumps({
            "title": "Remote work policy",
            "description": "Teams disagree on office days.",
            "question": "How many office days should we require?",
            "suggestedFeedbackTypes": ["idea", "concern", "bogus"],
            "confidence": 0.92,
        })
        extractor = TopicExtractor(client_for(gemini_reply(f"```json\n{reply}\n```")))

        topic = await extractor.extract_topic("notes from the all-hands")

        assert topic.title == "Remote work policy"
        assert topic.question == "How many office days should we require?"
        assert topic.suggested_feedback_types == ["idea", "concern"]
        assert topic.confidence == pytest.approx(0.92)
        assert topic.heuristic is False

    async def test_missing_fields_get_defaults(self):
        extractor = TopicExtractor(client_for(gemini_reply(json.dumps({"confidence": 7}))))

        topic = await extractor.extract_topic("something")

        assert topic.title == "Untitled Topic"
        assert topic.question == "What are your thoughts on this topic?"
        assert topic.suggested_feedback_types == ["idea", "solution", "concern"]
        assert topic.confidence == 1.0

    async def test_api_error_falls_back_to_heuristic(self):
        extractor = TopicExtractor(client_for(gemini_reply("", status_code=500)))

        topic = await extractor.extract_topic("We should adopt a four day week. It may improve retention.")

        assert topic.heuristic is True
        assert topic.confidence == HEURISTIC_CONFIDENCE
        assert topic.title == "We should adopt a four day week"

    async def test_unparseable_reply_falls_back_to_heuristic(self):
        extractor = TopicExtractor(client_for(gemini_reply("not json at all")))

        topic = await extractor.extract_topic("Budget priorities for next year")

        assert topic.heuristic is True

    async def test_non_json_body_falls_back_to_heuristic(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>proxy</html>")

        topic = await TopicExtractor(client_for(handler)).extract_topic("Hiring plan for next year")

        assert topic.heuristic is True
        assert topic.title == "Hiring plan for next year"

    @pytest.mark.parametrize(
        "body",
        [{"candidates": "nope"}, {"candidates": [{"content": {"parts": "nope"}}]}, ["not", "a", "dict"]],
    )
    async def test_malformed_envelope_falls_back_to_heuristic(self, body):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=body)

        topic = await TopicExtractor(client_for(handler)).extract_topic("Hiring plan")

        assert topic.heuristic is True

    @pytest.mark.parametrize(
        "reply",
        [{"title": 42}, {"description": ["a"]}, {"question": {"q": 1}}, {"suggestedFeedbackTypes": "idea"}],
    )
    async def test_wrongly_typed_fields_fall_back_to_heuristic(self, reply):
        extractor = TopicExtractor(client_for(gemini_reply(json.dumps(reply))))

        topic = await extractor.extract_topic("Hiring plan")

        assert topic.heuristic is True

    def test_unconfigured_client(self):
        assert TopicExtractor(GeminiClient(api_key="")).is_configured is False


class TestHeuristicExtract:
    """Tests for the keyword heuristic."""

    def test_problem_text_asks_how_to_address(self):
        topic = heuristic_extract("Onboarding has a serious drop-off problem. We need a fix soon.")

        assert topic.title == "Onboarding has a serious drop-off problem"
        assert topic.question == "How should we address onboarding has a serious drop-off problem?"
        assert topic.suggested_feedback_types == ["solution", "concern"]
        assert topic.description.startswith("Onboarding has")

    def test_plain_text_uses_generic_question(self):
        topic = heuristic_extract("Quarterly planning")

        assert topic.question == "What are your thoughts on quarterly planning?"
        assert topic.suggested_feedback_types == ["idea", "solution", "concern"]

    def test_long_titles_are_truncated(self):
        topic = heuristic_extract("word " * 60)

        assert len(topic.title) <= 100
        assert topic.title.endswith("...")


# =============================================================================
# TEST: ROUND SUMMARIES
# =============================================================================


class TestRoundSummarizer:
    """Tests for round summaries."""

    async def test_empty_round_has_fixed_summary(self):
        summarizer = RoundSummarizer(client_for(gemini_reply("unused")))

        assert await summarizer.summarize([]) == NO_FEEDBACK_SUMMARY

    async def test_model_summary_is_returned(self):
        summarizer = RoundSummarizer(client_for(gemini_reply("  Broad support for a dividend.  ")))

        summary = await summarizer.summarize([feedback("Return revenue as a dividend")])

        assert summary == "Broad support for a dividend."

    async def test_model_failure_is_unavailable(self):
        summarizer = RoundSummarizer(client_for(gemini_reply("", status_code=503)))

        with pytest.raises(ServiceUnavailable):
            await summarizer.summarize([feedback("Anything")])

    async def test_non_json_body_is_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>proxy</html>")

        with pytest.raises(ServiceUnavailable):
            await RoundSummarizer(client_for(handler)).summarize([feedback("Anything")])

    async def test_empty_model_summary_is_unavailable(self):
        summarizer = RoundSummarizer(client_for(gemini_reply("   ")))

        with pytest.raises(ServiceUnavailable):
            await summarizer.summarize([feedback("Anything")])

    async def test_unconfigured_uses_statistical_summary(self):
        summarizer = RoundSummarizer(GeminiClient(api_key=""))
        items = [
            feedback("Dividend", agreements={"a": 2, "b": 1}),
            feedback("Too regressive", type=FeedbackType.CONCERN, agreements={"a": -1}),
        ]

        summary = await summarizer.summarize(items)

        assert summary == statistical_summary(items)
        assert summary.splitlines() == [
            "2 feedback items (1 concern, 1 idea).",
            "- (+1.5) Dividend",
            "- (-1.0) Too regressive",
        ]
