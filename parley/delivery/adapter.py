"""Delivery of streamed suggestions to the subject's private view.

The adapter renders deltas as they arrive and finalizes with controls.  If
the progressive channel is unavailable it falls back exactly once to a
direct post carrying the same text and controls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol

import structlog

from parley.delivery.controls import Control, Presentation, build_controls, context_line
from parley.errors import DeliveryFailure

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Recipient:
    """Where a private message goes."""

    subject_id: str
    channel_ref: str
    thread_ref: Optional[str] = None


class ProgressiveRender(Protocol):
    async def append(self, text: str) -> None: ...

    async def finalize(self, controls: list[Control], footer: str = "") -> None: ...

    async def abort(self) -> None: ...


class DeliveryTarget(Protocol):
    async def render_progressive(self, recipient: Recipient, correlation_id: str) -> ProgressiveRender: ...

    async def post_direct(self, recipient: Recipient, text: str, controls: list[Control], footer: str = "") -> None: ...

    async def post_as_user(self, recipient: Recipient, text: str) -> None: ...


class DeliveryAdapter:
    """One instance per process; one :meth:`deliver` call per stream."""

    def __init__(self, target: DeliveryTarget) -> None:
        self._target = target

    @property
    def target(self) -> DeliveryTarget:
        return self._target

    async def _open(self, recipient: Recipient, correlation_id: str) -> Optional[ProgressiveRender]:
        try:
            return await self._target.render_progressive(recipient, correlation_id)
        except Exception as exc:
            logger.info("progressive delivery unavailable", error=str(exc), suggestion_id=correlation_id)
            return None

    async def deliver(
        self,
        recipient: Recipient,
        stream: AsyncIterator[str],
        presentation: Presentation,
    ) -> str:
        """Consume *stream* into the subject's view and return the full text.

        Errors raised by *stream* propagate after the partial render is
        aborted; the caller decides what notice to show.
        """
        render = await self._open(recipient, presentation.suggestion_id)
        parts: list[str] = []

        try:
            async for chunk in stream:
                if not chunk:
                    continue
                parts.append(chunk)
                if render is None:
                    continue
                try:
                    await render.append(chunk)
                except Exception as exc:
                    logger.warning(
                        "progressive append failed, switching to direct post",
                        error=str(exc),
                        suggestion_id=presentation.suggestion_id,
                    )
                    await self._abort(render)
                    render = None
        except BaseException:
            if render is not None:
                await self._abort(render)
            raise

        text = "".join(parts)
        controls = build_controls(presentation, text)
        footer = context_line(presentation)

        if render is not None:
            try:
                await render.finalize(controls, footer)
                return text
            except Exception as exc:
                logger.warning(
                    "progressive finalize failed, switching to direct post",
                    error=str(exc),
                    suggestion_id=presentation.suggestion_id,
                )
                await self._abort(render)

        try:
            await self._target.post_direct(recipient, text, controls, footer)
        except Exception as exc:
            raise DeliveryFailure(f"Direct delivery failed: {exc}") from exc
        return text

    async def notify(self, recipient: Recipient, text: str) -> None:
        """Plain notice (quota, safety, errors) with no controls."""
        try:
            await self._target.post_direct(recipient, text, [])
        except Exception as exc:
            raise DeliveryFailure(f"Notice delivery failed: {exc}") from exc

    async def send_as_user(self, recipient: Recipient, text: str) -> None:
        try:
            await self._target.post_as_user(recipient, text)
        except Exception as exc:
            raise DeliveryFailure(f"Send as user failed: {exc}") from exc

    @staticmethod
    async def _abort(render: ProgressiveRender) -> None:
        try:
            await render.abort()
        except Exception as exc:
            logger.debug("abort of progressive render failed", error=str(exc))
