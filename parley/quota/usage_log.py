"""File-based usage event ledger.

Stores every consumption event as JSON lines in monthly files under
``<data_dir>/usage/YYYY-MM.jsonl``.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional


@dataclass
class UsageEvent:
    """A single metered generation."""

    id: str = ""
    subject_id: str = ""
    event_type: str = "suggestion"  # "suggestion" | "refinement"
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cost_estimate: float = 0.0
    channel_ref: str = ""
    suggestion_id: str = ""
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = uuid.uuid4().hex[:12]
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()


Period = Literal["month", "all"]


class UsageLog:
    """Append-only monthly JSONL usage files."""

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".parley" / "usage"
        self._base.mkdir(parents=True, exist_ok=True)

    def _records_file(self, dt: datetime | None = None) -> Path:
        dt = dt or datetime.now(timezone.utc)
        return self._base / f"{dt.strftime('%Y-%m')}.jsonl"

    def record(self, event: UsageEvent) -> UsageEvent:
        """Append *event* and return it."""
        with self._records_file().open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(asdict(event)) + "\n")
        return event

    def _load(self, paths: list[Path]) -> list[UsageEvent]:
        events: list[UsageEvent] = []
        for path in paths:
            for line in path.read_text(encoding="utf-8").splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(UsageEvent(**json.loads(line)))
                except (json.JSONDecodeError, TypeError):
                    continue
        return events

    def get_events(
        self,
        subject_id: Optional[str] = None,
        period: Period = "month",
        event_type: Optional[str] = None,
    ) -> list[UsageEvent]:
        """Return events, most recent first."""
        if period == "month":
            path = self._records_file()
            paths = [path] if path.exists() else []
        else:
            paths = sorted(self._base.glob("*.jsonl"))

        events = self._load(paths)
        if subject_id:
            events = [e for e in events if e.subject_id == subject_id]
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events

    def totals(self, subject_id: Optional[str] = None, period: Period = "month") -> dict[str, float]:
        """Aggregate counts, tokens and cost."""
        events = self.get_events(subject_id, period)
        return {
            "events": len(events),
            "input_tokens": sum(e.input_tokens for e in events),
            "output_tokens": sum(e.output_tokens for e in events),
            "cost_estimate": round(sum(e.cost_estimate for e in events), 6),
        }
