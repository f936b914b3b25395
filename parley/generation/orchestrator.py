"""Generation orchestration: prompt assembly plus the monitored primary stream."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from typing import AsyncIterator, Optional

import structlog

from parley.errors import GenerationFailure, GenerationTimeoutError
from parley.generation.classifiers import (
    SENTIMENT_FALLBACK,
    TOPIC_FALLBACK,
    AdvisoryClassifier,
    SentimentAnalysis,
    TopicClassification,
)
from parley.generation.knowledge import TemplateMatcher
from parley.llm.client import CompletionUsage, Message, ModelClient
from parley.llm.prompts import (
    AVOID_TOPICS_GUIDANCE,
    REFINEMENT_USER_PROMPT,
    SECURITY_RULES,
    SENTIMENT_GUIDANCE,
    SYSTEM_PROMPTS,
    TOPIC_GUIDANCE,
    USER_PROMPT,
)
from parley.models.conversation import ConversationMessage
from parley.models.suggestion import UseCase
from parley.moderation.sanitizer import spotlight
from parley.style.models import EffectiveStyleContext

logger = structlog.get_logger(__name__)

_SENTIMENT_ADVICE = {
    "low": "Respond in a normal professional manner.",
    "medium": "Acknowledge any frustration briefly and stay constructive.",
    "high": "Acknowledge the concern explicitly, avoid defensiveness and propose a concrete next step.",
    "critical": "De-escalate: acknowledge the problem, take ownership and offer a clear path to resolution.",
}


@dataclass
class GenerationRequest:
    """Everything the orchestrator needs; all text is already sanitized."""

    use_case: UseCase
    organization_id: str
    trigger_text: str
    trigger_reason: str = ""
    messages: list[ConversationMessage] = field(default_factory=list)
    style: EffectiveStyleContext = field(default_factory=EffectiveStyleContext)
    draft: Optional[str] = None
    instruction: Optional[str] = None


@dataclass
class PreparedPrompt:
    system: str
    messages: list[Message]
    sentiment: SentimentAnalysis = SENTIMENT_FALLBACK
    topic: TopicClassification = TOPIC_FALLBACK


def _conversation_block(messages: list[ConversationMessage]) -> str:
    return "\n".join(m.to_prompt_line() for m in messages)


def build_prompt(
    request: GenerationRequest,
    sentiment: SentimentAnalysis = SENTIMENT_FALLBACK,
    topic: TopicClassification = TOPIC_FALLBACK,
    templates: str = "",
) -> PreparedPrompt:
    """Pure prompt assembly for *request*."""
    sections = [SYSTEM_PROMPTS[request.use_case], SECURITY_RULES]
    style = request.style.to_prompt()
    if style:
        sections.append(style)
    if templates:
        sections.append(templates)
    if sentiment.confidence > 0:
        sections.append(
            SENTIMENT_GUIDANCE.format(
                tone=sentiment.tone,
                risk_level=sentiment.risk_level,
                confidence=sentiment.confidence,
                advice=_SENTIMENT_ADVICE.get(sentiment.risk_level, ""),
            )
        )
    if topic.confidence > 0:
        sections.append(TOPIC_GUIDANCE.format(topic=topic.topic, confidence=topic.confidence))

    if request.use_case is UseCase.refinement:
        content = REFINEMENT_USER_PROMPT.format(
            draft=spotlight(request.draft or ""),
            instruction=spotlight(request.instruction or ""),
        )
    else:
        content = USER_PROMPT.format(
            conversation=spotlight(_conversation_block(request.messages)),
            trigger=spotlight(request.trigger_text),
            trigger_reason=request.trigger_reason or request.use_case.value,
        )

    return PreparedPrompt(
        system="\n\n".join(sections),
        messages=[{"role": "user", "content": content}],
        sentiment=sentiment,
        topic=topic,
    )


def avoid_topics(prompt: PreparedPrompt, topics: list[str]) -> PreparedPrompt:
    """Copy of *prompt* that tells the model to stay clear of *topics*."""
    if not topics:
        return prompt
    section = AVOID_TOPICS_GUIDANCE.format(topics=", ".join(topics))
    return replace(prompt, system=f"{prompt.system}\n\n{section}")


class GenerationOrchestrator:
    """Builds the request and drives the single-pass primary stream."""

    def __init__(
        self,
        client: ModelClient,
        classifier: Optional[AdvisoryClassifier] = None,
        templates: Optional[TemplateMatcher] = None,
        max_tokens: int = 1024,
        primary_timeout: Optional[float] = None,
        slow_stream_warning: float = 20.0,
    ) -> None:
        self._client = client
        self._classifier = classifier
        self._templates = templates
        self._max_tokens = max_tokens
        self._primary_timeout = primary_timeout
        self._slow_stream_warning = slow_stream_warning

    @property
    def model(self) -> str:
        return getattr(self._client, "model", "")

    async def _sentiment(self, conversation: str, target: str) -> SentimentAnalysis:
        if self._classifier is None:
            return SENTIMENT_FALLBACK
        return await self._classifier.sentiment(conversation, target)

    async def _topic(self, conversation: str, target: str) -> TopicClassification:
        if self._classifier is None:
            return TOPIC_FALLBACK
        return await self._classifier.topic(conversation, target)

    async def _template_section(self, organization_id: str, text: str) -> str:
        if self._templates is None:
            return ""
        return await self._templates.prompt_section(organization_id, text)

    async def prepare(self, request: GenerationRequest) -> PreparedPrompt:
        """Run the advisory sub-calls concurrently and assemble the prompt.

        Each sub-call carries its own time box and fallback, so this never
        raises on their account.
        """
        if request.use_case is UseCase.refinement:
            return build_prompt(request)

        conversation = _conversation_block(request.messages)
        sentiment, topic, templates = await asyncio.gather(
            self._sentiment(conversation, request.trigger_text),
            self._topic(conversation, request.trigger_text),
            self._template_section(request.organization_id, request.trigger_text),
        )
        return build_prompt(request, sentiment, topic, templates)

    async def stream(
        self, prompt: PreparedPrompt, usage: Optional[CompletionUsage] = None
    ) -> AsyncIterator[str]:
        """Yield text deltas from the primary model call.

        Raises :class:`GenerationTimeoutError` when ``primary_timeout`` is set
        and exceeded; any other upstream error surfaces as
        :class:`GenerationFailure`.  Closing this generator closes the
        upstream stream.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + self._primary_timeout if self._primary_timeout else None
        warned = False

        upstream = self._client.stream_completion(
            prompt.system, prompt.messages, max_tokens=self._max_tokens, usage=usage
        )
        async with aclosing(upstream):
            iterator = upstream.__aiter__()
            while True:
                try:
                    if deadline is None:
                        delta = await iterator.__anext__()
                    else:
                        remaining = deadline - loop.time()
                        if remaining <= 0:
                            raise asyncio.TimeoutError
                        delta = await asyncio.wait_for(iterator.__anext__(), remaining)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError as exc:
                    raise GenerationTimeoutError(
                        "Primary generation exceeded its time bound",
                        timeout=self._primary_timeout,
                    ) from exc
                except GenerationFailure:
                    raise
                except Exception as exc:
                    raise GenerationFailure(f"Primary generation failed: {exc}") from exc

                elapsed = loop.time() - started
                if not warned and elapsed > self._slow_stream_warning:
                    warned = True
                    logger.warning("slow generation stream", elapsed_s=round(elapsed, 2))
                yield delta

        logger.debug("generation stream complete", elapsed_s=round(loop.time() - started, 2))
