"""Quota ledgers: atomic reserve-one-unit storage.

Both implementations make check-and-increment a single atomic step, so two
concurrent requests can never both take the last unit.
"""

from __future__ import annotations

import asyncio
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import anyio

from parley.quota.plans import BillingPeriod, Plan


@dataclass(frozen=True)
class ReservationResult:
    """Outcome of one ``reserve_unit`` call."""

    granted: bool
    used: int
    included: int
    overage_allowance: int

    @property
    def limit(self) -> int:
        return self.included + self.overage_allowance


class QuotaLedger(Protocol):
    async def reserve_unit(self, subject_id: str, period: BillingPeriod, plan: Plan) -> ReservationResult: ...

    async def peek(self, subject_id: str, period: BillingPeriod) -> int: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryQuotaLedger:
    """Process-local ledger for tests and single-process deployments."""

    def __init__(self) -> None:
        self._used: dict[tuple[str, str], int] = {}
        self._lock = asyncio.Lock()

    def seed(self, subject_id: str, period: BillingPeriod, used: int) -> None:
        self._used[(subject_id, period.key)] = used

    async def reserve_unit(self, subject_id: str, period: BillingPeriod, plan: Plan) -> ReservationResult:
        key = (subject_id, period.key)
        async with self._lock:
            used = self._used.get(key, 0)
            granted = used < plan.limit
            if granted:
                used += 1
                self._used[key] = used
        return ReservationResult(granted, used, plan.included, plan.overage_allowance)

    async def peek(self, subject_id: str, period: BillingPeriod) -> int:
        return self._used.get((subject_id, period.key), 0)


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS usage_reservations (
    subject_id   TEXT    NOT NULL,
    period_start TEXT    NOT NULL,
    period_end   TEXT    NOT NULL,
    used         INTEGER NOT NULL,
    included     INTEGER NOT NULL,
    overage      INTEGER NOT NULL,
    updated_at   TEXT    NOT NULL,
    PRIMARY KEY (subject_id, period_start)
)
"""

# Insert-or-increment, guarded by the limit.  No row back means denied.
_RESERVE = """
INSERT INTO usage_reservations
    (subject_id, period_start, period_end, used, included, overage, updated_at)
VALUES (?, ?, ?, 1, ?, ?, ?)
ON CONFLICT (subject_id, period_start) DO UPDATE SET
    used       = usage_reservations.used + 1,
    included   = excluded.included,
    overage    = excluded.overage,
    updated_at = excluded.updated_at
WHERE usage_reservations.used < excluded.included + excluded.overage
RETURNING used
"""

_PEEK = "SELECT used FROM usage_reservations WHERE subject_id = ? AND period_start = ?"


class SQLiteQuotaLedger:
    """Durable ledger backed by a single SQLite file.

    Each call opens its own connection in a worker thread.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(_SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._path, timeout=30.0)

    def _reserve_sync(self, subject_id: str, period: BillingPeriod, plan: Plan) -> ReservationResult:
        conn = self._connect()
        try:
            rows = conn.execute(
                _RESERVE,
                (
                    subject_id,
                    period.start.isoformat(),
                    period.end.isoformat(),
                    plan.included,
                    plan.overage_allowance,
                    datetime.now(timezone.utc).isoformat(),
                ),
            ).fetchall()
            conn.commit()
            if rows:
                return ReservationResult(True, rows[0][0], plan.included, plan.overage_allowance)
            current = conn.execute(_PEEK, (subject_id, period.start.isoformat())).fetchone()
            used = current[0] if current else 0
            return ReservationResult(False, used, plan.included, plan.overage_allowance)
        finally:
            conn.close()

    def _peek_sync(self, subject_id: str, period: BillingPeriod) -> int:
        conn = self._connect()
        try:
            row = conn.execute(_PEEK, (subject_id, period.start.isoformat())).fetchone()
            return row[0] if row else 0
        finally:
            conn.close()

    async def reserve_unit(self, subject_id: str, period: BillingPeriod, plan: Plan) -> ReservationResult:
        if plan.limit <= 0:
            used = await self.peek(subject_id, period)
            return ReservationResult(False, used, plan.included, plan.overage_allowance)
        return await anyio.to_thread.run_sync(self._reserve_sync, subject_id, period, plan)

    async def peek(self, subject_id: str, period: BillingPeriod) -> int:
        return await anyio.to_thread.run_sync(self._peek_sync, subject_id, period)
