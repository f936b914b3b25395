"""Conversation messages assembled per request."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ConversationMessage:
    """A single message from the conversation the subject is replying to.

    ``timestamp`` is the platform's message reference (for Slack, the ``ts``
    string, which sorts chronologically as a float).
    """

    author_id: str
    text: str
    timestamp: str
    is_human: bool = True

    @property
    def sort_key(self) -> float:
        try:
            return float(self.timestamp)
        except ValueError:
            return 0.0

    def to_prompt_line(self) -> str:
        return f"[{self.timestamp}] User {self.author_id}: {self.text}"
