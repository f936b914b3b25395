"""Advisory sentiment and topic classification.

Both classifiers are strictly time-boxed and always return a value: any
timeout, upstream failure or malformed answer yields the neutral fallback.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Callable, TypeVar

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from parley.errors import GenerationFailure, TransientUpstreamError
from parley.llm.client import ModelClient
from parley.llm.prompts import CLASSIFIER_SYSTEM_PROMPT, SENTIMENT_PROMPT, TOPIC_PROMPT
from parley.moderation.sanitizer import spotlight

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TONES = ("neutral", "positive", "tense", "frustrated", "angry")
RISK_LEVELS = ("low", "medium", "high", "critical")
TOPICS = ("scheduling", "complaint", "technical", "status_update", "request", "escalation", "general")


@dataclass(frozen=True)
class SentimentAnalysis:
    tone: str = "neutral"
    confidence: float = 0.0
    indicators: tuple[str, ...] = field(default=())
    risk_level: str = "low"


@dataclass(frozen=True)
class TopicClassification:
    topic: str = "general"
    confidence: float = 0.0
    reasoning: str = ""


SENTIMENT_FALLBACK = SentimentAnalysis(indicators=("analysis_failed",))
TOPIC_FALLBACK = TopicClassification(reasoning="classification_failed")


def _load_json(raw: str) -> dict:
    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.startswith("json"):
            text = text[4:]
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("classifier answer is not a JSON object")
    return data


def _confidence(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 1:
        raise ValueError(f"invalid confidence: {value!r}")
    return float(value)


def parse_sentiment(raw: str) -> SentimentAnalysis:
    data = _load_json(raw)
    tone = data.get("tone")
    risk = data.get("risk_level", data.get("riskLevel"))
    indicators = data.get("indicators")
    if tone not in TONES:
        raise ValueError(f"invalid tone: {tone!r}")
    if risk not in RISK_LEVELS:
        raise ValueError(f"invalid risk level: {risk!r}")
    if not isinstance(indicators, list):
        raise ValueError("indicators must be a list")
    return SentimentAnalysis(
        tone=tone,
        confidence=_confidence(data.get("confidence")),
        indicators=tuple(str(i) for i in indicators),
        risk_level=risk,
    )


def parse_topic(raw: str) -> TopicClassification:
    data = _load_json(raw)
    topic = data.get("topic")
    if topic not in TOPICS:
        raise ValueError(f"invalid topic: {topic!r}")
    return TopicClassification(
        topic=topic,
        confidence=_confidence(data.get("confidence")),
        reasoning=str(data.get("reasoning", "")),
    )


class AdvisoryClassifier:
    """Runs the sentiment and topic sub-calls against a (cheap) model."""

    def __init__(self, client: ModelClient, timeout: float = 3.0, retries: int = 2) -> None:
        self._client = client
        self._timeout = timeout
        self._retries = retries

    async def _ask(self, prompt: str, parse: Callable[[str], T]) -> T:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retries + 1),
            wait=wait_exponential(multiplier=0.1, max=1.0),
            retry=retry_if_exception_type(TransientUpstreamError),
            reraise=True,
        ):
            with attempt:
                response = await self._client.complete(
                    CLASSIFIER_SYSTEM_PROMPT,
                    [{"role": "user", "content": prompt}],
                    max_tokens=256,
                )
        return parse(response.content)

    async def _boxed(self, name: str, prompt: str, parse: Callable[[str], T], fallback: T) -> T:
        try:
            return await asyncio.wait_for(self._ask(prompt, parse), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("classifier timed out", classifier=name, timeout=self._timeout)
        except GenerationFailure as exc:
            logger.warning("classifier call failed", classifier=name, error=str(exc))
        except (ValueError, KeyError) as exc:
            logger.warning("classifier answer rejected", classifier=name, error=str(exc))
        return fallback

    async def sentiment(self, conversation: str, target: str) -> SentimentAnalysis:
        prompt = SENTIMENT_PROMPT.format(conversation=spotlight(conversation), target=spotlight(target))
        result = await self._boxed("sentiment", prompt, parse_sentiment, SENTIMENT_FALLBACK)
        logger.debug("sentiment", tone=result.tone, risk_level=result.risk_level)
        return result

    async def topic(self, conversation: str, target: str) -> TopicClassification:
        prompt = TOPIC_PROMPT.format(conversation=spotlight(conversation), target=spotlight(target))
        result = await self._boxed("topic", prompt, parse_topic, TOPIC_FALLBACK)
        logger.debug("topic", topic=result.topic, confidence=result.confidence)
        return result
