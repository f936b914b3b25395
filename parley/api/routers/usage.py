"""Read-only usage display."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Query, Request

from parley.api.models import UsageResponse, UsageStatusResponse, UsageTotalsResponse

router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.get("/{subject_id}", response_model=UsageResponse)
async def get_usage(
    request: Request,
    subject_id: str,
    period: Literal["month", "all"] = Query("month"),
):
    """Return the subject's allowance for the current billing period."""
    pipeline = request.app.state.pipeline
    usage_status = await pipeline.quota.usage_status(subject_id)
    totals = pipeline.quota.usage_totals(subject_id, period)
    return UsageResponse(
        status=UsageStatusResponse(
            subject_id=usage_status.subject_id,
            plan_id=usage_status.plan_id,
            used=usage_status.used,
            included=usage_status.included,
            overage_allowance=usage_status.overage_allowance,
            limit=usage_status.limit,
            remaining=usage_status.remaining,
            warning_level=usage_status.warning_level.value,
            period_start=usage_status.period_start.isoformat(),
            period_end=usage_status.period_end.isoformat(),
        ),
        totals=UsageTotalsResponse(**totals),
    )
