"""Suggestion and feedback records."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class TriggerKind(str, Enum):
    """Why a suggestion pipeline was started."""

    mention = "mention"
    reply = "reply"
    thread = "thread"
    message_action = "message_action"
    dm = "dm"

    @property
    def reason(self) -> str:
        return _TRIGGER_REASONS[self]


_TRIGGER_REASONS = {
    TriggerKind.mention: "someone mentioned you",
    TriggerKind.reply: "someone replied to you",
    TriggerKind.thread: "new activity in a thread you're following",
    TriggerKind.message_action: "you requested a suggestion",
    TriggerKind.dm: "someone messaged you directly",
}


class UseCase(str, Enum):
    """Selects the fixed system prompt template for a generation."""

    suggestion = "suggestion"
    task_completion = "task_completion"
    report = "report"
    refinement = "refinement"


class FeedbackAction(str, Enum):
    accepted = "accepted"
    refined = "refined"
    dismissed = "dismissed"
    sent = "sent"


def new_suggestion_id() -> str:
    """Globally unique, stable correlation id for a suggestion."""
    return f"sug_{uuid.uuid4().hex}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SuggestionRecord:
    """Created when a suggestion is emitted; feedback refers back to it."""

    suggestion_id: str
    subject_id: str
    channel_ref: str
    trigger_kind: TriggerKind
    organization_id: str = ""
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "suggestion_id": self.suggestion_id,
            "subject_id": self.subject_id,
            "channel_ref": self.channel_ref,
            "trigger_kind": self.trigger_kind.value,
            "organization_id": self.organization_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SuggestionRecord":
        return cls(
            suggestion_id=data["suggestion_id"],
            subject_id=data["subject_id"],
            channel_ref=data.get("channel_ref", ""),
            trigger_kind=TriggerKind(data["trigger_kind"]),
            organization_id=data.get("organization_id", ""),
            created_at=data.get("created_at", ""),
        )


@dataclass(frozen=True)
class FeedbackEvent:
    """Append-only record of what the subject did with a suggestion."""

    suggestion_id: str
    action: FeedbackAction
    original_text: str
    subject_id: str = ""
    organization_id: str = ""
    channel_ref: str = ""
    final_text: Optional[str] = None
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "suggestion_id": self.suggestion_id,
            "action": self.action.value,
            "original_text": self.original_text,
            "subject_id": self.subject_id,
            "organization_id": self.organization_id,
            "channel_ref": self.channel_ref,
            "final_text": self.final_text,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FeedbackEvent":
        return cls(
            suggestion_id=data["suggestion_id"],
            action=FeedbackAction(data["action"]),
            original_text=data.get("original_text", ""),
            subject_id=data.get("subject_id", ""),
            organization_id=data.get("organization_id", ""),
            channel_ref=data.get("channel_ref", ""),
            final_text=data.get("final_text"),
            timestamp=data.get("timestamp", ""),
        )
