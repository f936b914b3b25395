from parley.quota.controller import (
    Admission,
    Allow,
    Deny,
    QuotaAdmissionController,
    UsageStatus,
    WarningLevel,
    warning_level,
)
from parley.quota.ledger import InMemoryQuotaLedger, QuotaLedger, ReservationResult, SQLiteQuotaLedger
from parley.quota.plans import BUILTIN_PLANS, BillingPeriod, Plan, PlanCatalog, billing_period
from parley.quota.usage_log import UsageEvent, UsageLog

__all__ = [
    "Admission",
    "Allow",
    "BUILTIN_PLANS",
    "BillingPeriod",
    "Deny",
    "InMemoryQuotaLedger",
    "Plan",
    "PlanCatalog",
    "QuotaAdmissionController",
    "QuotaLedger",
    "ReservationResult",
    "SQLiteQuotaLedger",
    "UsageEvent",
    "UsageLog",
    "UsageStatus",
    "WarningLevel",
    "billing_period",
    "warning_level",
]
