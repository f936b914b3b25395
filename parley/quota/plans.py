"""Plan allowances and billing periods."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional

import structlog

from parley.config import PlanOverride

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Plan:
    """Units included per billing period plus the hard overage ceiling."""

    plan_id: str
    included: int
    overage_allowance: int = 0

    @property
    def limit(self) -> int:
        return self.included + self.overage_allowance


BUILTIN_PLANS: dict[str, Plan] = {
    p.plan_id: p
    for p in [
        Plan("free", 5, 0),
        Plan("starter", 25, 250),
        Plan("pro", 75, 750),
        Plan("team", 50, 500),
        Plan("business", 100, 1000),
    ]
}


@dataclass(frozen=True)
class BillingPeriod:
    """Half-open UTC interval ``[start, end)``."""

    start: datetime
    end: datetime

    @property
    def key(self) -> str:
        return self.start.strftime("%Y-%m")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def billing_period(now: datetime) -> BillingPeriod:
    """Return the calendar month (UTC) containing *now*."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return BillingPeriod(start=start, end=end)


class PlanCatalog:
    """Maps subjects to plans; config overrides win over built-ins."""

    def __init__(
        self,
        overrides: Optional[Mapping[str, PlanOverride]] = None,
        subject_plans: Optional[Mapping[str, str]] = None,
        default_plan: str = "free",
    ) -> None:
        self._plans = dict(BUILTIN_PLANS)
        for plan_id, override in (overrides or {}).items():
            self._plans[plan_id] = Plan(plan_id, override.included, override.overage_allowance)
        self._subject_plans = dict(subject_plans or {})
        if default_plan not in self._plans:
            raise ValueError(f"Unknown default plan: {default_plan}")
        self._default = default_plan

    def get(self, plan_id: str) -> Optional[Plan]:
        return self._plans.get(plan_id)

    def plan_for(self, subject_id: str) -> Plan:
        plan_id = self._subject_plans.get(subject_id, self._default)
        plan = self._plans.get(plan_id)
        if plan is None:
            logger.warning("unknown plan for subject", subject_id=subject_id, plan_id=plan_id)
            plan = self._plans[self._default]
        return plan

    def assign(self, subject_id: str, plan_id: str) -> None:
        if plan_id not in self._plans:
            raise ValueError(f"Unknown plan: {plan_id}")
        self._subject_plans[subject_id] = plan_id
