from parley.feedback.recorder import FeedbackRecorder, FeedbackStore, SuggestionStore

__all__ = ["FeedbackRecorder", "FeedbackStore", "SuggestionStore"]
