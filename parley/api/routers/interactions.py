"""Interaction actions on delivered suggestions (send, refine, dismiss, accept)."""

from __future__ import annotations

import json
from typing import Any, Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from parley.api.models import AcceptedResponse
from parley.api.security import verify_request_signature
from parley.delivery.controls import REFINE_INPUT_ACTION, REFINE_INPUT_BLOCK
from parley.errors import ValidationError
from parley.interactions import action_from_control, parse_action

router = APIRouter(
    prefix="/api/interactions",
    tags=["interactions"],
    dependencies=[Depends(verify_request_signature)],
)


def _mapping(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _typed_instruction(data: dict) -> Optional[str]:
    """Text the user typed into the refine box of the suggestion, if any."""
    values = _mapping(_mapping(data.get("state")).get("values"))
    field = _mapping(_mapping(values.get(REFINE_INPUT_BLOCK)).get(REFINE_INPUT_ACTION))
    value = field.get("value")
    return value if isinstance(value, str) and value.strip() else None


async def _read_action(request: Request):
    """Accept either a tagged JSON action or a form-encoded button payload."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/x-www-form-urlencoded"):
        form = parse_qs((await request.body()).decode("utf-8"))
        try:
            data = json.loads((form.get("payload") or [""])[0])
        except json.JSONDecodeError as exc:
            raise ValidationError("Interaction payload is not valid JSON") from exc
        if not isinstance(data, dict):
            raise ValidationError("Interaction payload must be an object")
        actions = data.get("actions")
        if not isinstance(actions, list) or not actions or not isinstance(actions[0], dict):
            raise ValidationError("Interaction payload has no actions")
        return action_from_control(
            str(actions[0].get("action_id", "")),
            actions[0].get("value", ""),
            subject_id=str(_mapping(data.get("user")).get("id", "")),
            organization_id=str(_mapping(data.get("team")).get("id", "")),
            instruction=_typed_instruction(data),
        )

    try:
        body = await request.json()
    except json.JSONDecodeError as exc:
        raise ValidationError("Request body is not valid JSON") from exc
    return parse_action(body)


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=AcceptedResponse)
async def receive_interaction(request: Request, background: BackgroundTasks):
    try:
        action = await _read_action(request)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "errors": exc.errors},
        ) from exc

    background.add_task(request.app.state.pipeline.handle_action, action)
    return AcceptedResponse(kind=action.type)
