from parley.moderation.models import GuardrailPolicy, GuardrailVerdict, Severity, TriggerMode, Violation
from parley.moderation.moderator import GuardrailEngine
from parley.moderation.policy import PolicyRegistry, load_policy
from parley.moderation.sanitizer import detect_injection, sanitize, spotlight
from parley.moderation.stream_guard import StreamGuard
from parley.moderation.violations import ViolationLog, ViolationRecord

__all__ = [
    "GuardrailEngine",
    "GuardrailPolicy",
    "GuardrailVerdict",
    "PolicyRegistry",
    "Severity",
    "StreamGuard",
    "TriggerMode",
    "Violation",
    "ViolationLog",
    "ViolationRecord",
    "detect_injection",
    "load_policy",
    "sanitize",
    "spotlight",
]
