"""Interactive controls and notice text attached to delivered suggestions."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Optional

from parley.quota.controller import WarningLevel

MAX_PAYLOAD_TEXT = 2500

SEND_ACTION = "send_suggestion"
REFINE_ACTION = "refine_suggestion"
DISMISS_ACTION = "dismiss_suggestion"

# Free-text box shown next to the controls; its value rides along with a Refine click.
REFINE_INPUT_BLOCK = "refine_instruction"
REFINE_INPUT_ACTION = "refine_instruction_input"


@dataclass(frozen=True)
class Control:
    """A button on the finalized suggestion."""

    action_id: str
    label: str
    value: str  # JSON payload echoed back in the interaction
    style: Optional[str] = None


@dataclass
class Presentation:
    """Metadata rendered around a suggestion."""

    suggestion_id: str
    channel_ref: str
    thread_ref: Optional[str] = None
    trigger_reason: str = ""
    warning_level: WarningLevel = WarningLevel.safe
    used: int = 0
    limit: int = 0
    notes: list[str] = field(default_factory=list)


def control_payload(
    suggestion_id: str,
    channel_ref: str,
    thread_ref: Optional[str],
    suggestion_text: str,
) -> str:
    return json.dumps(
        {
            "suggestion_id": suggestion_id,
            "channel_ref": channel_ref,
            "thread_ref": thread_ref,
            "suggestion_text": suggestion_text[:MAX_PAYLOAD_TEXT],
        }
    )


def build_controls(presentation: Presentation, suggestion_text: str) -> list[Control]:
    """Send-as-me, refine and dismiss, each carrying the correlation id."""
    payload = control_payload(
        presentation.suggestion_id,
        presentation.channel_ref,
        presentation.thread_ref,
        suggestion_text,
    )
    return [
        Control(SEND_ACTION, "Send as Me", payload, style="primary"),
        Control(REFINE_ACTION, "Refine", payload),
        Control(DISMISS_ACTION, "Dismiss", payload),
    ]


def usage_notice(level: WarningLevel, used: int, limit: int) -> str:
    if level is WarningLevel.warning:
        return f"You've used {used} of {limit} suggestions this period."
    if level is WarningLevel.critical:
        return f"Almost out: {used} of {limit} suggestions used this period."
    if level is WarningLevel.exceeded:
        return f"You're over your included suggestions ({used} used); overage usage applies."
    return ""


def context_line(presentation: Presentation) -> str:
    """One line of context shown under the suggestion."""
    parts = []
    if presentation.trigger_reason:
        parts.append(f"Because {presentation.trigger_reason}")
    notice = usage_notice(presentation.warning_level, presentation.used, presentation.limit)
    if notice:
        parts.append(notice)
    parts.extend(presentation.notes)
    parts.append("Only visible to you")
    return " · ".join(parts)
