"""Conversation context assembly.

Context is best-effort enrichment: an upstream failure yields an empty
conversation and a warning, never an exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol, Sequence

import structlog

from parley.models.conversation import ConversationMessage

logger = structlog.get_logger(__name__)

DEFAULT_WINDOW_MINUTES = 60
DEFAULT_MAX_MESSAGES = 20


class ContextSource(Protocol):
    """Messaging-platform reads used to build context."""

    async def fetch_history(
        self, channel_ref: str, oldest: float, limit: int
    ) -> Sequence[ConversationMessage]: ...

    async def fetch_thread(
        self,
        channel_ref: str,
        thread_ref: str,
        limit: int,
        oldest: Optional[float] = None,
    ) -> Sequence[ConversationMessage]: ...


@dataclass(frozen=True)
class ContextRequest:
    channel_ref: str
    message_ref: str
    thread_ref: Optional[str] = None
    window_minutes: int = DEFAULT_WINDOW_MINUTES
    max_messages: int = DEFAULT_MAX_MESSAGES


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContextAssembler:
    """Chooses thread or channel context for a trigger and normalizes it."""

    def __init__(
        self,
        source: ContextSource,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._source = source
        self._clock = clock

    async def assemble(self, request: ContextRequest) -> list[ConversationMessage]:
        """Return human messages relevant to the trigger, oldest first."""
        try:
            thread_ref = await self._resolve_thread(request)
            if thread_ref is not None:
                raw = await self._source.fetch_thread(
                    request.channel_ref, thread_ref, limit=request.max_messages
                )
                mode = "thread"
            else:
                oldest = (self._clock() - timedelta(minutes=request.window_minutes)).timestamp()
                raw = await self._source.fetch_history(
                    request.channel_ref, oldest=oldest, limit=request.max_messages
                )
                mode = "channel"
        except Exception as exc:
            logger.warning(
                "context fetch failed, continuing without context",
                channel_ref=request.channel_ref,
                thread_ref=request.thread_ref,
                error=str(exc),
            )
            return []

        messages = _normalize(raw, request.max_messages)
        logger.info(
            "conversation context assembled",
            channel_ref=request.channel_ref,
            mode=mode,
            messages=len(messages),
        )
        return messages

    async def _resolve_thread(self, request: ContextRequest) -> Optional[str]:
        if request.thread_ref and request.thread_ref != request.message_ref:
            return request.thread_ref

        # The trigger may itself be a thread parent.
        try:
            replies = await self._source.fetch_thread(
                request.channel_ref, request.message_ref, limit=2
            )
        except Exception as exc:
            logger.debug(
                "thread lookup failed, using channel context",
                channel_ref=request.channel_ref,
                message_ref=request.message_ref,
                error=str(exc),
            )
            return None
        if len(replies) > 1:
            return request.message_ref
        return None


def _normalize(
    raw: Sequence[ConversationMessage], max_messages: int
) -> list[ConversationMessage]:
    humans = [m for m in raw if m.is_human and m.text.strip()]
    humans.sort(key=lambda m: m.sort_key)
    return humans[-max_messages:]
