"""Feedback and audit recording, off the critical path.

Nothing here may fail or slow down the user-facing action it is attached
to: writes are dispatched on the :class:`~parley.tasks.BackgroundDispatcher`
and their failures are only logged.
"""

from __future__ import annotations

import json
from collections import Counter
from functools import partial
from pathlib import Path
from typing import Any, Optional, Protocol

import anyio
import structlog

from parley.audit.audit_log import AuditLogger
from parley.models.suggestion import FeedbackAction, FeedbackEvent, SuggestionRecord
from parley.tasks import BackgroundDispatcher

logger = structlog.get_logger(__name__)


class EventSink(Protocol):
    def append_event(self, record: FeedbackEvent) -> None: ...


class FeedbackStore:
    """Append-only JSONL store at ``<base_dir>/feedback.jsonl``."""

    def __init__(self, base_dir: Optional[str | Path] = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".parley" / "feedback"
        self._base.mkdir(parents=True, exist_ok=True)
        self._path = self._base / "feedback.jsonl"

    def append_event(self, record: FeedbackEvent) -> None:
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record.to_dict()) + "\n")

    def get_events(
        self,
        *,
        suggestion_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        action: Optional[FeedbackAction] = None,
        limit: int = 200,
    ) -> list[FeedbackEvent]:
        """Return filtered events, newest first."""
        if not self._path.exists():
            return []
        events: list[FeedbackEvent] = []
        for line in self._path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                events.append(FeedbackEvent.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError):
                continue
        if suggestion_id:
            events = [e for e in events if e.suggestion_id == suggestion_id]
        if subject_id:
            events = [e for e in events if e.subject_id == subject_id]
        if action:
            events = [e for e in events if e.action is action]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    def action_counts(self, subject_id: Optional[str] = None) -> dict[str, int]:
        events = self.get_events(subject_id=subject_id, limit=1_000_000)
        return dict(Counter(e.action.value for e in events))


class SuggestionStore:
    """Emitted suggestions at ``<base_dir>/suggestions.jsonl``, looked up by id."""

    def __init__(self, base_dir: Optional[str | Path] = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".parley" / "feedback"
        self._base.mkdir(parents=True, exist_ok=True)
        self._path = self._base / "suggestions.jsonl"

    def append_record(self, record: SuggestionRecord) -> None:
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record.to_dict()) + "\n")

    def get(self, suggestion_id: str) -> Optional[SuggestionRecord]:
        if not self._path.exists():
            return None
        for line in self._path.read_text(encoding="utf-8").splitlines():
            if suggestion_id not in line:
                continue
            try:
                record = SuggestionRecord.from_dict(json.loads(line))
            except (json.JSONDecodeError, KeyError, ValueError):
                continue
            if record.suggestion_id == suggestion_id:
                return record
        return None


class FeedbackRecorder:
    """Fire-and-forget writer for feedback events and audit entries."""

    def __init__(
        self,
        sink: EventSink,
        dispatcher: BackgroundDispatcher,
        audit: Optional[AuditLogger] = None,
        suggestions: Optional[SuggestionStore] = None,
    ) -> None:
        self._sink = sink
        self._dispatcher = dispatcher
        self._audit = audit
        self._suggestions = suggestions

    def record_suggestion(self, record: SuggestionRecord) -> None:
        if self._suggestions is None:
            return
        store = self._suggestions

        async def _write() -> None:
            await anyio.to_thread.run_sync(store.append_record, record)

        self._dispatcher.dispatch("suggestion.record", _write)

    def record_feedback(self, event: FeedbackEvent) -> None:
        sink = self._sink

        async def _write() -> None:
            await anyio.to_thread.run_sync(sink.append_event, event)
            logger.debug(
                "feedback recorded",
                suggestion_id=event.suggestion_id,
                action=event.action.value,
            )

        self._dispatcher.dispatch("feedback.record", _write)

    def record_audit(
        self,
        actor: str,
        action: str,
        resource_type: str,
        resource_id: str,
        *,
        organization_id: str = "",
        details: Optional[dict[str, Any]] = None,
        success: bool = True,
    ) -> None:
        if self._audit is None:
            return
        audit = self._audit

        async def _write() -> None:
            write = partial(
                audit.log_event,
                actor,
                action,
                resource_type,
                resource_id,
                organization_id=organization_id,
                details=details,
                success=success,
            )
            await anyio.to_thread.run_sync(write)

        self._dispatcher.dispatch("audit.record", _write)
