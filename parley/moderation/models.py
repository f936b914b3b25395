"""Data models for the guardrail system."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Severity(str, Enum):
    """What happens when a rule matches model output."""

    block = "block"
    warn = "warn"


class TriggerMode(str, Enum):
    """How an organization reacts to a blocking violation."""

    hard_block = "hard_block"
    regenerate = "regenerate"  # one retry told to avoid the violated rules
    soft_warning = "soft_warning"  # every violation is downgraded to a warning


@dataclass(frozen=True)
class Violation:
    """A single rule match in a piece of model output."""

    rule: str
    severity: Severity
    snippet: str  # matched text; redacted for secret/PII rules
    category: str = ""  # "category" | "keyword" | "pii"


@dataclass
class GuardrailVerdict:
    """Result of validating text against a policy."""

    passed: bool
    violations: list[Violation] = field(default_factory=list)

    @property
    def blocking(self) -> list[Violation]:
        return [v for v in self.violations if v.severity is Severity.block]

    @property
    def warnings(self) -> list[Violation]:
        return [v for v in self.violations if v.severity is Severity.warn]


DEFAULT_CATEGORIES = ("legal_advice", "pricing_commitments", "competitor_bashing")


@dataclass
class GuardrailPolicy:
    """Per-organization output policy.

    ``severities`` maps a rule name (category id, PII rule id, or
    ``blocked_keyword``) to its severity; unlisted rules use
    ``default_severity``.
    """

    enabled_categories: list[str] = field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    blocked_keywords: list[str] = field(default_factory=list)
    pii_checks: list[str] | None = None  # None means every built-in PII rule
    severities: dict[str, Severity] = field(default_factory=dict)
    default_severity: Severity = Severity.block
    trigger_mode: TriggerMode = TriggerMode.hard_block

    def severity_for(self, rule: str) -> Severity:
        if self.trigger_mode is TriggerMode.soft_warning:
            return Severity.warn
        return self.severities.get(rule, self.default_severity)
