"""Tests for classifiers, prompt assembly, templates and the primary stream."""

import asyncio
import tempfile
import time

import pytest
from conftest import FakeModelClient, msg

from parley.errors import GenerationFailure, GenerationTimeoutError, TransientUpstreamError
from parley.generation import (
    SENTIMENT_FALLBACK,
    TOPIC_FALLBACK,
    AdvisoryClassifier,
    GenerationOrchestrator,
    GenerationRequest,
    ResponseTemplate,
    TemplateMatcher,
    TemplateStore,
    build_prompt,
)
from parley.generation.classifiers import parse_sentiment, parse_topic
from parley.llm.client import CompletionUsage
from parley.models.suggestion import UseCase
from parley.moderation.sanitizer import SPOTLIGHT_START
from parley.style import EffectiveStyleContext


async def _collect(stream) -> list[str]:
    return [d async for d in stream]


# ── Classifier parsing ───────────────────────────────────────────────


def test_parse_sentiment_accepts_fenced_json():
    raw = '```json\n{"tone": "tense", "confidence": 0.6, "indicators": ["ugh"], "riskLevel": "medium"}\n```'
    result = parse_sentiment(raw)
    assert result.tone == "tense"
    assert result.risk_level == "medium"
    assert result.indicators == ("ugh",)


def test_parse_sentiment_rejects_bad_values():
    for raw in [
        '{"tone": "ecstatic", "confidence": 0.5, "indicators": [], "risk_level": "low"}',
        '{"tone": "neutral", "confidence": 1.5, "indicators": [], "risk_level": "low"}',
        '{"tone": "neutral", "confidence": 0.5, "indicators": "x", "risk_level": "low"}',
        "not json",
    ]:
        with pytest.raises(ValueError):
            parse_sentiment(raw)


def test_parse_topic():
    assert parse_topic('{"topic": "scheduling", "confidence": 0.7}').topic == "scheduling"
    with pytest.raises(ValueError):
        parse_topic('{"topic": "weather", "confidence": 0.7}')


# ── Classifier time boxes ────────────────────────────────────────────


async def test_classifier_success():
    classifier = AdvisoryClassifier(FakeModelClient())
    sentiment = await classifier.sentiment("U1: this is still broken", "still broken")
    topic = await classifier.topic("U1: this is still broken", "still broken")
    assert sentiment.tone == "frustrated"
    assert topic.topic == "technical"


async def test_classifier_timeout_falls_back_to_neutral():
    classifier = AdvisoryClassifier(FakeModelClient(complete_delay=5.0), timeout=0.05)
    started = time.monotonic()
    result = await classifier.sentiment("conversation", "target")
    assert result == SENTIMENT_FALLBACK
    assert result.tone == "neutral"
    assert result.indicators == ("analysis_failed",)
    assert time.monotonic() - started < 1.0


async def test_classifier_malformed_answer_falls_back():
    classifier = AdvisoryClassifier(FakeModelClient(responder=lambda prompt: "I think it's fine"))
    assert await classifier.topic("c", "t") == TOPIC_FALLBACK


async def test_classifier_retries_transient_errors_then_falls_back():
    client = FakeModelClient(complete_error=TransientUpstreamError("overloaded"))
    classifier = AdvisoryClassifier(client, timeout=2.0, retries=2)
    assert await classifier.sentiment("c", "t") == SENTIMENT_FALLBACK
    assert client.complete_calls == 3


async def test_classifier_does_not_retry_permanent_errors():
    client = FakeModelClient(complete_error=GenerationFailure("bad request"))
    classifier = AdvisoryClassifier(client, retries=2)
    assert await classifier.topic("c", "t") == TOPIC_FALLBACK
    assert client.complete_calls == 1


# ── Prompt assembly ──────────────────────────────────────────────────


def _request(**overrides) -> GenerationRequest:
    fields = dict(
        use_case=UseCase.suggestion,
        organization_id="T1",
        trigger_text="Is the release still on for today?",
        trigger_reason="someone mentioned you",
        messages=[msg("1.0", "We found a bug in checkout"), msg("2.0", "Is the release still on for today?")],
    )
    fields.update(overrides)
    return GenerationRequest(**fields)


def test_build_prompt_includes_security_rules_and_spotlights_data():
    prompt = build_prompt(_request(style=EffectiveStyleContext(tone="formal")))
    assert "CRITICAL SECURITY RULES" in prompt.system
    assert "<tone>formal</tone>" in prompt.system
    content = prompt.messages[0]["content"]
    assert content.count(SPOTLIGHT_START) == 2
    assert "User U1: We found a bug in checkout" in content
    assert "someone mentioned you" in content


def test_build_prompt_skips_fallback_classifications():
    prompt = build_prompt(_request())
    assert "<conversation_sentiment>" not in prompt.system
    assert "<conversation_topic>" not in prompt.system


def test_refinement_prompt_uses_draft_and_instruction():
    prompt = build_prompt(
        _request(use_case=UseCase.refinement, draft="Sure, will do.", instruction="make it warmer")
    )
    content = prompt.messages[0]["content"]
    assert "Current draft" in content
    assert "make it warmer" in content
    assert "refine" in prompt.system


async def test_prepare_adds_classifier_guidance():
    client = FakeModelClient()
    orchestrator = GenerationOrchestrator(client, classifier=AdvisoryClassifier(client))
    prompt = await orchestrator.prepare(_request())
    assert prompt.sentiment.tone == "frustrated"
    assert "<conversation_sentiment>" in prompt.system
    assert "Primary topic: technical" in prompt.system


async def test_prepare_for_refinement_skips_classifiers():
    client = FakeModelClient()
    orchestrator = GenerationOrchestrator(client, classifier=AdvisoryClassifier(client))
    await orchestrator.prepare(_request(use_case=UseCase.refinement, draft="d", instruction="i"))
    assert client.complete_calls == 0


async def test_slow_classifier_does_not_delay_primary_past_its_box():
    client = FakeModelClient(complete_delay=5.0)
    orchestrator = GenerationOrchestrator(client, classifier=AdvisoryClassifier(client, timeout=0.05))
    started = time.monotonic()
    prompt = await orchestrator.prepare(_request())
    deltas = await _collect(orchestrator.stream(prompt))
    assert time.monotonic() - started < 1.0
    assert "".join(deltas) == "Sure, I'll take a look today."
    assert prompt.sentiment == SENTIMENT_FALLBACK


# ── Primary stream ───────────────────────────────────────────────────


async def test_stream_yields_deltas_and_fills_usage():
    client = FakeModelClient(deltas=["a", "b", "c"])
    orchestrator = GenerationOrchestrator(client)
    usage = CompletionUsage()
    prompt = build_prompt(_request())
    assert await _collect(orchestrator.stream(prompt, usage)) == ["a", "b", "c"]
    assert usage.input_tokens == 120 and usage.output_tokens == 30
    assert client.stream_calls == 1


async def test_stream_timeout_raises_and_closes_upstream():
    client = FakeModelClient(deltas=["a", "b", "c"], delay=0.2)
    orchestrator = GenerationOrchestrator(client, primary_timeout=0.3)
    with pytest.raises(GenerationTimeoutError):
        await _collect(orchestrator.stream(build_prompt(_request())))
    assert client.closed


async def test_stream_wraps_unexpected_errors():
    client = FakeModelClient(deltas=["a"], stream_error=RuntimeError("socket closed"))
    orchestrator = GenerationOrchestrator(client)
    with pytest.raises(GenerationFailure):
        await _collect(orchestrator.stream(build_prompt(_request())))


async def test_no_timeout_by_default():
    client = FakeModelClient(deltas=["x"] * 3, delay=0.01)
    orchestrator = GenerationOrchestrator(client)
    assert len(await _collect(orchestrator.stream(build_prompt(_request())))) == 3


# ── Templates ────────────────────────────────────────────────────────


def _templates() -> list[ResponseTemplate]:
    return [
        ResponseTemplate("t1", "Release delay", "We're pushing the release while we verify a fix.", "release status"),
        ResponseTemplate("t2", "Refund request", "Refunds take five business days."),
        ResponseTemplate("t3", "Release checklist", "Draft release notes", status="draft"),
    ]


async def test_template_matcher_scores_approved_only():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = TemplateStore(tmpdir)
        store.save("T1", _templates())
        matches = await TemplateMatcher(store).match("T1", "Is the release still on for today?")
        assert [m.template.id for m in matches] == ["t1"]
        assert matches[0].score >= 1


async def test_template_prompt_section():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = TemplateStore(tmpdir)
        store.save("T1", _templates())
        matcher = TemplateMatcher(store)
        section = await matcher.prompt_section("T1", "release timing?")
        assert section.startswith("<response_templates>")
        assert "Release delay" in section
        assert await matcher.prompt_section("T1", "hi") == ""
        assert await matcher.prompt_section("T9", "release timing?") == ""


async def test_template_failure_is_empty_section():
    class Broken:
        async def list_templates(self, organization_id):
            raise OSError("disk gone")

    assert await TemplateMatcher(Broken()).prompt_section("T1", "release timing") == ""


def test_stream_is_lazy():
    client = FakeModelClient()
    orchestrator = GenerationOrchestrator(client)
    orchestrator.stream(build_prompt(_request()))
    assert client.stream_calls == 0


async def test_concurrent_classifiers_run_in_parallel():
    client = FakeModelClient(complete_delay=0.2)
    orchestrator = GenerationOrchestrator(client, classifier=AdvisoryClassifier(client, timeout=1.0))
    started = asyncio.get_running_loop().time()
    await orchestrator.prepare(_request())
    assert asyncio.get_running_loop().time() - started < 0.35
