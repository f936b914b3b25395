"""Error taxonomy for the suggestion pipeline.

Everything raised across a component seam derives from :class:`ParleyError`
so the pipeline can map failures to user-facing notices in one place.
"""

from __future__ import annotations


class ParleyError(Exception):
    """Base class for all pipeline errors."""

    user_message = "Something went wrong while preparing your suggestion."


class ValidationError(ParleyError):
    """A trigger or interaction payload failed boundary validation."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class QuotaExceededError(ParleyError):
    """The subject has no allowance left in the current billing period."""

    def __init__(self, reason: str, used: int, limit: int) -> None:
        super().__init__(f"Quota exceeded ({reason}): {used}/{limit}")
        self.reason = reason
        self.used = used
        self.limit = limit

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return (
            f"You've used {self.used} of {self.limit} suggestions this month. "
            "Your allowance resets at the start of next month."
        )


class GuardrailViolationError(ParleyError):
    """Model output failed the organization's guardrail policy."""

    user_message = (
        "This suggestion was withheld because it conflicted with your "
        "organization's content policy."
    )

    def __init__(self, message: str, violations: list | None = None, regenerate: bool = False) -> None:
        super().__init__(message)
        self.violations = violations or []
        self.regenerate = regenerate  # caller may retry once avoiding these rules


class GenerationFailure(ParleyError):
    """The primary generation call failed."""

    user_message = "I couldn't generate a suggestion right now. Please try again."


class TransientUpstreamError(GenerationFailure):
    """An upstream call failed in a way that may succeed on retry."""


class GenerationTimeoutError(GenerationFailure):
    """An upstream call exceeded its time bound."""

    def __init__(self, message: str, timeout: float | None = None) -> None:
        super().__init__(message)
        self.timeout = timeout


class DeliveryFailure(ParleyError):
    """Neither the progressive nor the direct delivery path succeeded."""
