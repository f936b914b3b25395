"""Model client interface and its Anthropic implementation.

The pipeline only talks to :class:`ModelClient`; tests inject fakes and the
process wires up :class:`AnthropicModelClient`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol

import anthropic
import structlog

from parley.config import DEFAULT_MODEL
from parley.errors import GenerationFailure, GenerationTimeoutError, TransientUpstreamError

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Pricing table (USD per 1 M tokens)
# ---------------------------------------------------------------------------

MODEL_PRICING: dict[str, dict[str, float]] = {
    "claude-sonnet-4-5-20250929": {"input": 3.0, "output": 15.0},
    "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0},
    "claude-haiku-4-5-20251001": {"input": 1.0, "output": 5.0},
    "claude-haiku-3-5-20241022": {"input": 0.80, "output": 4.0},
    "claude-opus-4-20250514": {"input": 15.0, "output": 75.0},
}


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model, MODEL_PRICING[DEFAULT_MODEL])
    input_cost = (input_tokens / 1_000_000) * pricing["input"]
    output_cost = (output_tokens / 1_000_000) * pricing["output"]
    return round(input_cost + output_cost, 6)


# ---------------------------------------------------------------------------
# Response dataclasses
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Structured response from a non-streaming call."""

    content: str
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    cost_estimate: float = 0.0


@dataclass
class CompletionUsage:
    """Filled in by ``stream_completion`` once the stream ends."""

    input_tokens: int = 0
    output_tokens: int = 0


Message = dict[str, str]


class ModelClient(Protocol):
    model: str

    def stream_completion(
        self,
        system_prompt: str,
        messages: list[Message],
        *,
        max_tokens: int = 1024,
        usage: Optional[CompletionUsage] = None,
    ) -> AsyncIterator[str]: ...

    async def complete(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 256,
    ) -> LLMResponse: ...


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


def _translate(exc: anthropic.APIError) -> GenerationFailure:
    if isinstance(exc, anthropic.APITimeoutError):
        return GenerationTimeoutError(f"Model call timed out: {exc}")
    if isinstance(exc, (anthropic.APIConnectionError, anthropic.RateLimitError, anthropic.InternalServerError)):
        return TransientUpstreamError(f"Transient model error: {exc}")
    if isinstance(exc, anthropic.APIStatusError) and exc.status_code in (408, 409, 429, 529):
        return TransientUpstreamError(f"Transient model error ({exc.status_code}): {exc}")
    return GenerationFailure(f"Model call failed: {exc}")


class AnthropicModelClient:
    """Thin wrapper around the async Anthropic SDK.

    Parameters
    ----------
    model : str
        Model identifier to use for completions.
    api_key : str
        Anthropic API key.  An empty key leaves the client unconfigured and
        every call raises :class:`GenerationFailure`.
    max_retries : int
        SDK-level retries.  Classifier clients use ``0``; their retries run
        inside the caller's time box.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str = "",
        max_retries: int = 2,
        timeout: Optional[float] = None,
    ) -> None:
        self.model = model
        self._configured = bool(api_key)
        if self._configured:
            kwargs: dict = {"api_key": api_key, "max_retries": max_retries}
            if timeout is not None:
                kwargs["timeout"] = timeout
            self._client = anthropic.AsyncAnthropic(**kwargs)
        else:
            self._client = None  # type: ignore[assignment]

    @property
    def configured(self) -> bool:
        return self._configured

    def _require_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            raise GenerationFailure("Model client not configured. Set ANTHROPIC_API_KEY.")
        return self._client

    async def stream_completion(
        self,
        system_prompt: str,
        messages: list[Message],
        *,
        max_tokens: int = 1024,
        usage: Optional[CompletionUsage] = None,
    ) -> AsyncIterator[str]:
        """Yield text deltas.  Closing the generator closes the HTTP stream."""
        client = self._require_client()
        try:
            async with client.messages.stream(
                model=self.model,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=messages,
            ) as stream:
                async for text in stream.text_stream:
                    yield text
                final = await stream.get_final_message()
        except anthropic.APIError as exc:
            raise _translate(exc) from exc

        if usage is not None:
            usage.input_tokens = final.usage.input_tokens
            usage.output_tokens = final.usage.output_tokens

    async def complete(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 256,
    ) -> LLMResponse:
        client = self._require_client()
        start = time.monotonic()
        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=messages,
            )
        except anthropic.APIError as exc:
            raise _translate(exc) from exc
        latency_ms = int((time.monotonic() - start) * 1000)

        content = "".join(block.text for block in response.content if block.type == "text")
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        return LLMResponse(
            content=content,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=latency_ms,
            cost_estimate=estimate_cost(self.model, input_tokens, output_tokens),
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
