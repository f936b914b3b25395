"""Core data model for the suggestion pipeline."""

from parley.models.conversation import ConversationMessage
from parley.models.suggestion import (
    FeedbackAction,
    FeedbackEvent,
    SuggestionRecord,
    TriggerKind,
    UseCase,
    new_suggestion_id,
)

__all__ = [
    "ConversationMessage",
    "FeedbackAction",
    "FeedbackEvent",
    "SuggestionRecord",
    "TriggerKind",
    "UseCase",
    "new_suggestion_id",
]
