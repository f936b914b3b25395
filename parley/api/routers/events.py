"""Trigger events: accepted immediately, processed in the background."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from parley.api.models import AcceptedResponse
from parley.api.security import verify_request_signature
from parley.errors import ValidationError
from parley.interactions import parse_trigger

router = APIRouter(prefix="/api/events", tags=["events"], dependencies=[Depends(verify_request_signature)])


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=AcceptedResponse)
async def receive_event(
    request: Request,
    background: BackgroundTasks,
    payload: dict[str, Any] = Body(...),
):
    """Accept a trigger event and run the suggestion pipeline for it."""
    if payload.get("type") == "url_verification":
        return JSONResponse({"challenge": str(payload.get("challenge", ""))})

    try:
        event = parse_trigger(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "errors": exc.errors},
        ) from exc

    background.add_task(request.app.state.pipeline.handle_trigger, event)
    return AcceptedResponse(kind=event.kind.value)
