"""Pydantic models for API responses."""

from __future__ import annotations

from pydantic import BaseModel


class AcceptedResponse(BaseModel):
    status: str = "accepted"
    kind: str = ""


class UsageStatusResponse(BaseModel):
    """Mirrors parley.quota.controller.UsageStatus."""

    subject_id: str
    plan_id: str
    used: int
    included: int
    overage_allowance: int
    limit: int
    remaining: int
    warning_level: str
    period_start: str
    period_end: str


class UsageTotalsResponse(BaseModel):
    events: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_estimate: float = 0.0


class UsageResponse(BaseModel):
    status: UsageStatusResponse
    totals: UsageTotalsResponse
