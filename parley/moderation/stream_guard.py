"""Guarded pass-through for streamed model output.

Deltas accumulate in a buffer and only the part older than the holdback
window is released.  The window is longer than any rule match, so a
violating span is always seen whole before any of it is released.
"""

from __future__ import annotations

from parley.moderation.models import GuardrailPolicy, GuardrailVerdict, Severity, TriggerMode
from parley.moderation.moderator import GuardrailEngine


class StreamGuard:
    """One guard per generated suggestion; not reusable."""

    def __init__(
        self,
        engine: GuardrailEngine,
        policy: GuardrailPolicy,
        *,
        allow_regenerate: bool = False,
        **context: str,
    ) -> None:
        self._engine = engine
        self._policy = policy
        self._regenerate = allow_regenerate and policy.trigger_mode is TriggerMode.regenerate
        self._context = context
        self._holdback = engine.holdback_for(policy)
        self._buffer = ""
        self._released = 0
        self._closed = False

    @property
    def text(self) -> str:
        return self._buffer

    @property
    def holdback(self) -> int:
        return self._holdback

    def feed(self, delta: str) -> str:
        """Add *delta*; return the text that is now safe to render."""
        if self._closed:
            raise RuntimeError("StreamGuard already finished")
        self._buffer += delta

        blocking = [
            v
            for v in self._engine.scan(self._buffer, self._policy, final=False)
            if v.severity is Severity.block
        ]
        if blocking:
            self._closed = True
            self._engine.reject(blocking, regenerate=self._regenerate, **self._context)

        safe_end = len(self._buffer) - self._holdback
        if safe_end <= self._released:
            return ""
        chunk = self._buffer[self._released:safe_end]
        self._released = safe_end
        return chunk

    def finish(self) -> tuple[str, GuardrailVerdict]:
        """Validate the complete text and release the withheld tail."""
        if self._closed:
            raise RuntimeError("StreamGuard already finished")
        self._closed = True
        verdict = self._engine.enforce(
            self._buffer, self._policy, regenerate=self._regenerate, **self._context
        )
        tail = self._buffer[self._released:]
        self._released = len(self._buffer)
        return tail, verdict
