"""Tests for trigger and interaction payload validation."""

import json

import pytest

from parley.delivery.controls import REFINE_ACTION, SEND_ACTION, control_payload
from parley.errors import ValidationError
from parley.interactions import (
    DismissAction,
    RefineAction,
    SendAction,
    action_from_control,
    parse_action,
    parse_trigger,
)
from parley.models.suggestion import TriggerKind, UseCase, new_suggestion_id

SUGGESTION_ID = new_suggestion_id()


def _trigger(**overrides) -> dict:
    data = {
        "kind": "mention",
        "organization_id": "T1",
        "subject_id": "U1",
        "channel_ref": "C1",
        "message_ref": "1700000000.000100",
        "text": "<@U1> can you look at this?",
    }
    data.update(overrides)
    return data


def test_parse_trigger_defaults():
    event = parse_trigger(_trigger())
    assert event.kind is TriggerKind.mention
    assert event.use_case is UseCase.suggestion
    assert event.thread_ref is None


def test_parse_trigger_rejects_missing_and_unknown_values():
    with pytest.raises(ValidationError) as exc_info:
        parse_trigger(_trigger(subject_id="", kind="telepathy"))
    joined = " ".join(exc_info.value.errors)
    assert "subject_id" in joined
    assert "kind" in joined


def test_parse_action_variants():
    base = {"suggestion_id": SUGGESTION_ID, "subject_id": "U1", "channel_ref": "C1", "suggestion_text": "Sure"}
    assert isinstance(parse_action({**base, "type": "send"}), SendAction)
    assert isinstance(parse_action({**base, "type": "dismiss"}), DismissAction)
    refine = parse_action({**base, "type": "refine", "instruction": "shorter"})
    assert isinstance(refine, RefineAction)
    assert refine.instruction == "shorter"


def test_parse_action_rejects_bad_payloads():
    base = {"suggestion_id": SUGGESTION_ID, "subject_id": "U1", "channel_ref": "C1"}
    for payload in [
        {**base, "type": "forward"},
        {**base, "type": "refine"},
        {**base, "type": "send", "suggestion_id": "not-an-id"},
        {**base, "type": "send", "suggestion_text": "x" * 2501},
    ]:
        with pytest.raises(ValidationError):
            parse_action(payload)


def test_action_from_control_round_trips_button_value():
    value = control_payload(SUGGESTION_ID, "C1", "100.0", "Sounds good")
    action = action_from_control(SEND_ACTION, value, subject_id="U1", organization_id="T1")
    assert isinstance(action, SendAction)
    assert action.suggestion_id == SUGGESTION_ID
    assert action.thread_ref == "100.0"
    assert action.organization_id == "T1"


def test_action_from_control_refine_needs_instruction():
    value = control_payload(SUGGESTION_ID, "C1", None, "Sounds good")
    with pytest.raises(ValidationError):
        action_from_control(REFINE_ACTION, value, subject_id="U1")
    action = action_from_control(REFINE_ACTION, value, subject_id="U1", instruction="more formal")
    assert isinstance(action, RefineAction)


def test_action_from_control_rejects_unknown_control_and_bad_json():
    with pytest.raises(ValidationError):
        action_from_control("launch_rocket", "{}", subject_id="U1")
    with pytest.raises(ValidationError):
        action_from_control(SEND_ACTION, "{not json", subject_id="U1")
    with pytest.raises(ValidationError):
        action_from_control(SEND_ACTION, json.dumps([1, 2]), subject_id="U1")
