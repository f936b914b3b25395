"""Boundary parsing for trigger events and interaction actions.

Payloads are validated once here; everything downstream works with typed
models.  Malformed input raises :class:`parley.errors.ValidationError`.
"""

from __future__ import annotations

import json
from typing import Annotated, Literal, Optional, Union

import pydantic
from pydantic import BaseModel, Field, TypeAdapter

from parley.delivery.controls import DISMISS_ACTION, MAX_PAYLOAD_TEXT, REFINE_ACTION, SEND_ACTION
from parley.errors import ValidationError
from parley.models.suggestion import TriggerKind, UseCase

_SUGGESTION_ID = r"^sug_[0-9a-f]{32}$"


# ---------------------------------------------------------------------------
# Trigger events
# ---------------------------------------------------------------------------


class TriggerEvent(BaseModel):
    """Something happened that should produce a suggestion."""

    kind: TriggerKind
    organization_id: str = Field(min_length=1)
    subject_id: str = Field(min_length=1)
    channel_ref: str = Field(min_length=1)
    message_ref: str = Field(min_length=1)
    thread_ref: Optional[str] = None
    text: str = Field(default="", max_length=40_000)
    use_case: UseCase = UseCase.suggestion


# ---------------------------------------------------------------------------
# Interaction actions (tagged variant)
# ---------------------------------------------------------------------------


class _ActionBase(BaseModel):
    suggestion_id: str = Field(pattern=_SUGGESTION_ID)
    subject_id: str = Field(min_length=1)
    organization_id: str = ""
    channel_ref: str = Field(min_length=1)
    thread_ref: Optional[str] = None
    suggestion_text: str = Field(default="", max_length=MAX_PAYLOAD_TEXT)


class SendAction(_ActionBase):
    type: Literal["send"] = "send"
    final_text: Optional[str] = Field(default=None, max_length=40_000)


class AcceptAction(_ActionBase):
    type: Literal["accept"] = "accept"
    final_text: Optional[str] = Field(default=None, max_length=40_000)


class DismissAction(_ActionBase):
    type: Literal["dismiss"] = "dismiss"


class RefineAction(_ActionBase):
    type: Literal["refine"] = "refine"
    instruction: str = Field(min_length=1, max_length=2000)


InteractionAction = Annotated[
    Union[SendAction, AcceptAction, DismissAction, RefineAction],
    Field(discriminator="type"),
]

_action_adapter: TypeAdapter = TypeAdapter(InteractionAction)


def _errors(exc: pydantic.ValidationError) -> list[str]:
    return [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]


def parse_trigger(payload: object) -> TriggerEvent:
    try:
        return TriggerEvent.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError("Invalid trigger payload", errors=_errors(exc)) from exc


def parse_action(payload: object) -> Union[SendAction, AcceptAction, DismissAction, RefineAction]:
    try:
        return _action_adapter.validate_python(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError("Invalid interaction payload", errors=_errors(exc)) from exc


_CONTROL_TYPES = {
    SEND_ACTION: "send",
    REFINE_ACTION: "refine",
    DISMISS_ACTION: "dismiss",
}


def action_from_control(
    action_id: str,
    value: str,
    *,
    subject_id: str,
    organization_id: str = "",
    instruction: Optional[str] = None,
    final_text: Optional[str] = None,
) -> Union[SendAction, AcceptAction, DismissAction, RefineAction]:
    """Translate a button click (action id + echoed JSON value) into an action."""
    action_type = _CONTROL_TYPES.get(action_id)
    if action_type is None:
        raise ValidationError(f"Unknown control: {action_id}")
    try:
        data = json.loads(value)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ValidationError("Control value is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ValidationError("Control value must be an object")

    payload = {
        **data,
        "type": action_type,
        "subject_id": subject_id,
        "organization_id": organization_id,
    }
    if instruction is not None:
        payload["instruction"] = instruction
    if final_text is not None:
        payload["final_text"] = final_text
    return parse_action(payload)
