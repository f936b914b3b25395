"""Append-only guardrail violation log.

Entries are newline-delimited JSON in ``<data_dir>/moderation/violations.jsonl``.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from parley.moderation.models import Violation


@dataclass
class ViolationRecord:
    """A single persisted violation."""

    id: str
    timestamp: str
    organization_id: str
    subject_id: str
    suggestion_id: str
    rule: str
    severity: str
    snippet: str
    action: str  # "blocked" | "warned"
    category: str = ""


class ViolationLog:
    """File-based JSONL log of guardrail violations."""

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self._base_dir = Path(base_dir) if base_dir else Path.home() / ".parley" / "moderation"
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._path = self._base_dir / "violations.jsonl"

    @property
    def path(self) -> Path:
        return self._path

    def append(
        self,
        violations: Iterable[Violation],
        *,
        action: str,
        organization_id: str = "",
        subject_id: str = "",
        suggestion_id: str = "",
    ) -> list[ViolationRecord]:
        """Persist *violations* in one write and return the stored records."""
        now = datetime.now(timezone.utc).isoformat()
        records = [
            ViolationRecord(
                id=uuid.uuid4().hex[:16],
                timestamp=now,
                organization_id=organization_id,
                subject_id=subject_id,
                suggestion_id=suggestion_id,
                rule=v.rule,
                severity=v.severity.value,
                snippet=v.snippet,
                action=action,
                category=v.category,
            )
            for v in violations
        ]
        if not records:
            return records
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write("".join(json.dumps(asdict(r)) + "\n" for r in records))
        return records

    def get_violations(
        self,
        *,
        organization_id: Optional[str] = None,
        suggestion_id: Optional[str] = None,
        limit: int = 200,
    ) -> list[ViolationRecord]:
        """Return filtered violations, newest first."""
        if not self._path.exists():
            return []
        records: list[ViolationRecord] = []
        for line in self._path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                records.append(ViolationRecord(**json.loads(line)))
            except (json.JSONDecodeError, TypeError):
                continue

        if organization_id:
            records = [r for r in records if r.organization_id == organization_id]
        if suggestion_id:
            records = [r for r in records if r.suggestion_id == suggestion_id]

        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit]
