"""Append-only audit trail.

Entries are newline-delimited JSON in daily files under
``<data_dir>/audit/YYYY-MM-DD.jsonl``.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


@dataclass
class AuditEntry:
    """A single audited pipeline action."""

    id: str
    timestamp: str
    actor: str  # subject id, or "system"
    action: str  # e.g. "suggestion.delivered", "suggestion.sent"
    resource_type: str
    resource_id: str
    organization_id: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    success: bool = True


class AuditLogger:
    """File-based JSONL audit logger with daily rotation."""

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self._base_dir = Path(base_dir) if base_dir else Path.home() / ".parley" / "audit"
        self._base_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _log_file_for_date(self, dt: datetime) -> Path:
        return self._base_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def _read_entries(self) -> list[AuditEntry]:
        entries: list[AuditEntry] = []
        for path in sorted(self._base_dir.glob("*.jsonl")):
            for line in path.read_text(encoding="utf-8").splitlines():
                if not line.strip():
                    continue
                try:
                    entries.append(AuditEntry(**json.loads(line)))
                except (json.JSONDecodeError, TypeError):
                    continue
        return entries

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def log_event(
        self,
        actor: str,
        action: str,
        resource_type: str,
        resource_id: str,
        *,
        organization_id: str = "",
        details: Optional[dict[str, Any]] = None,
        success: bool = True,
    ) -> AuditEntry:
        """Append an entry to today's file and return it."""
        now = datetime.now(timezone.utc)
        entry = AuditEntry(
            id=uuid.uuid4().hex[:16],
            timestamp=now.isoformat(),
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            organization_id=organization_id,
            details=details or {},
            success=success,
        )
        with self._log_file_for_date(now).open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(asdict(entry), default=str) + "\n")
        return entry

    def get_events(
        self,
        *,
        actor: Optional[str] = None,
        action: Optional[str] = None,
        resource_id: Optional[str] = None,
        since: Optional[str] = None,
        limit: int = 200,
    ) -> list[AuditEntry]:
        """Return filtered entries, newest first."""
        entries = self._read_entries()
        if actor:
            entries = [e for e in entries if e.actor == actor]
        if action:
            entries = [e for e in entries if e.action == action]
        if resource_id:
            entries = [e for e in entries if e.resource_id == resource_id]
        if since:
            entries = [e for e in entries if e.timestamp >= since]
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    def export_events(self, fmt: str = "json", **filters: Any) -> str:
        """Export entries as ``json`` or ``csv``."""
        entries = self.get_events(**filters)
        if fmt == "csv":
            lines = ["id,timestamp,actor,action,resource_type,resource_id,organization_id,success"]
            for e in entries:
                lines.append(
                    f"{e.id},{e.timestamp},{e.actor},{e.action},{e.resource_type},"
                    f"{e.resource_id},{e.organization_id},{e.success}"
                )
            return "\n".join(lines)
        return json.dumps([asdict(e) for e in entries], indent=2, default=str)
