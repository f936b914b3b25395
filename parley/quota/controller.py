"""Quota admission control.

Every generation attempt must take one unit from the subject's allowance for
the current billing period before any model call is made.  Units are never
refunded, even when generation later fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Union

import anyio
import structlog

from parley.quota.ledger import QuotaLedger
from parley.quota.plans import BillingPeriod, PlanCatalog, billing_period
from parley.quota.usage_log import UsageEvent, UsageLog
from parley.tasks import BackgroundDispatcher

logger = structlog.get_logger(__name__)


class WarningLevel(str, Enum):
    safe = "safe"
    warning = "warning"
    critical = "critical"
    exceeded = "exceeded"


def warning_level(used: int, included: int) -> WarningLevel:
    """Advisory level from ``used / included``; never gates admission."""
    if included <= 0:
        return WarningLevel.exceeded if used > 0 else WarningLevel.safe
    ratio = used / included
    if ratio >= 1.0:
        return WarningLevel.exceeded
    if ratio >= 0.95:
        return WarningLevel.critical
    if ratio >= 0.8:
        return WarningLevel.warning
    return WarningLevel.safe


@dataclass(frozen=True)
class Allow:
    subject_id: str
    used: int
    included: int
    limit: int
    warning_level: WarningLevel
    period: BillingPeriod

    @property
    def in_overage(self) -> bool:
        return self.used > self.included


@dataclass(frozen=True)
class Deny:
    reason: str
    used: int
    limit: int


Admission = Union[Allow, Deny]


@dataclass(frozen=True)
class UsageStatus:
    subject_id: str
    plan_id: str
    used: int
    included: int
    overage_allowance: int
    warning_level: WarningLevel
    period_start: datetime
    period_end: datetime

    @property
    def limit(self) -> int:
        return self.included + self.overage_allowance

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuotaAdmissionController:
    """Gatekeeper in front of the generation orchestrator."""

    def __init__(
        self,
        ledger: QuotaLedger,
        plans: PlanCatalog,
        usage_log: Optional[UsageLog] = None,
        dispatcher: Optional[BackgroundDispatcher] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ledger = ledger
        self._plans = plans
        self._usage_log = usage_log
        self._dispatcher = dispatcher
        self._clock = clock

    async def admit(self, subject_id: str, organization_id: str = "") -> Admission:
        """Atomically reserve one unit for *subject_id* in the current period."""
        period = billing_period(self._clock())
        plan = self._plans.plan_for(subject_id)
        result = await self._ledger.reserve_unit(subject_id, period, plan)

        if not result.granted:
            logger.info(
                "admission denied",
                subject_id=subject_id,
                organization_id=organization_id,
                plan=plan.plan_id,
                used=result.used,
                limit=result.limit,
            )
            return Deny(reason="period_limit_reached", used=result.used, limit=result.limit)

        level = warning_level(result.used, result.included)
        logger.debug(
            "admission granted",
            subject_id=subject_id,
            plan=plan.plan_id,
            used=result.used,
            limit=result.limit,
            warning_level=level.value,
        )
        return Allow(
            subject_id=subject_id,
            used=result.used,
            included=result.included,
            limit=result.limit,
            warning_level=level,
            period=period,
        )

    async def usage_status(self, subject_id: str) -> UsageStatus:
        """Read-only view of the current period; consumes nothing."""
        period = billing_period(self._clock())
        plan = self._plans.plan_for(subject_id)
        used = await self._ledger.peek(subject_id, period)
        return UsageStatus(
            subject_id=subject_id,
            plan_id=plan.plan_id,
            used=used,
            included=plan.included,
            overage_allowance=plan.overage_allowance,
            warning_level=warning_level(used, plan.included),
            period_start=period.start,
            period_end=period.end,
        )

    def record_consumption(self, event: UsageEvent) -> None:
        """Append a usage event off the critical path."""
        if self._usage_log is None:
            return
        usage_log = self._usage_log
        if self._dispatcher is None:
            try:
                usage_log.record(event)
            except OSError:
                logger.exception("failed to record usage", subject_id=event.subject_id)
            return

        async def _write() -> None:
            await anyio.to_thread.run_sync(usage_log.record, event)

        self._dispatcher.dispatch("usage.record", _write)

    def usage_totals(self, subject_id: str, period: str = "month") -> dict[str, float]:
        """Token and cost totals from the usage log (zeros without one)."""
        if self._usage_log is None:
            return {"events": 0, "input_tokens": 0, "output_tokens": 0, "cost_estimate": 0.0}
        return self._usage_log.totals(subject_id, period)  # type: ignore[arg-type]
