"""Guardrail engine: checks model output against an organization policy.

Blocking violations are written to the violation log exactly once and raised
as :class:`~parley.errors.GuardrailViolationError`; the offending text is
never handed back to the caller.
"""

from __future__ import annotations

from typing import Optional

import structlog

from parley.errors import GuardrailViolationError
from parley.moderation.models import GuardrailPolicy, GuardrailVerdict, Severity, Violation
from parley.moderation.policy import PolicyRegistry
from parley.moderation.rules import PII_RULES, Rule, category_rules, keyword_rule
from parley.moderation.violations import ViolationLog

logger = structlog.get_logger(__name__)


def _redact(text: str) -> str:
    if len(text) <= 4:
        return "*" * len(text)
    return text[:4] + "*" * min(len(text) - 4, 12)


class GuardrailEngine:
    """Stateless rule evaluation plus violation logging."""

    def __init__(
        self,
        policies: Optional[PolicyRegistry] = None,
        violation_log: Optional[ViolationLog] = None,
    ) -> None:
        self.policies = policies or PolicyRegistry()
        self._log = violation_log

    # -- rules ---------------------------------------------------------------

    @staticmethod
    def rules_for(policy: GuardrailPolicy) -> list[Rule]:
        rules: list[Rule] = []
        for keyword in policy.blocked_keywords:
            if keyword.strip():
                rules.append(keyword_rule("blocked_keyword", keyword.strip(), "keyword"))
        for category_id in policy.enabled_categories:
            rules.extend(category_rules(category_id))
        pii_names = PII_RULES.keys() if policy.pii_checks is None else policy.pii_checks
        rules.extend(PII_RULES[name] for name in pii_names if name in PII_RULES)
        return rules

    def holdback_for(self, policy: GuardrailPolicy) -> int:
        """Characters a stream must withhold so no match can leak early."""
        lengths = [rule.max_length for rule in self.rules_for(policy)]
        return (max(lengths) + 1) if lengths else 0

    # -- checks --------------------------------------------------------------

    def scan(self, text: str, policy: GuardrailPolicy, *, final: bool = True) -> list[Violation]:
        """Return every violation in *text*.

        With ``final=False`` a match touching the end of *text* is ignored,
        since more output could still change it.
        """
        found: list[Violation] = []
        seen: set[tuple[str, str]] = set()
        for rule in self.rules_for(policy):
            for match in rule.pattern.finditer(text):
                if not final and match.end() >= len(text):
                    continue
                matched = match.group(0)
                snippet = _redact(matched) if rule.kind == "pii" else matched
                key = (rule.name, snippet.lower())
                if key in seen:
                    continue
                seen.add(key)
                found.append(
                    Violation(
                        rule=rule.name,
                        severity=policy.severity_for(rule.name),
                        snippet=snippet,
                        category=rule.kind,
                    )
                )
        return found

    def validate(self, text: str, policy: GuardrailPolicy) -> GuardrailVerdict:
        """Pure check of *text*; fails if any ``block`` violation is present."""
        violations = self.scan(text, policy)
        passed = not any(v.severity is Severity.block for v in violations)
        return GuardrailVerdict(passed=passed, violations=violations)

    def enforce(
        self,
        text: str,
        policy: GuardrailPolicy,
        *,
        regenerate: bool = False,
        **context: str,
    ) -> GuardrailVerdict:
        """Validate, log and raise on failure; return the verdict otherwise."""
        verdict = self.validate(text, policy)
        if not verdict.passed:
            self.reject(verdict.violations, regenerate=regenerate, **context)
        if verdict.warnings:
            self._record(verdict.warnings, action="warned", **context)
        return verdict

    def reject(self, violations: list[Violation], *, regenerate: bool = False, **context: str) -> None:
        """Log *violations* as blocked (or regenerated) and raise.

        With ``regenerate`` the raised error tells the caller it may retry
        once with the violated rules listed as topics to avoid.
        """
        self._record(violations, action="regenerated" if regenerate else "blocked", **context)
        raise GuardrailViolationError(
            f"Output blocked by {len(violations)} guardrail violation(s)",
            violations=violations,
            regenerate=regenerate,
        )

    def _record(self, violations: list[Violation], *, action: str, **context: str) -> None:
        logger.warning(
            "guardrail violation",
            action=action,
            rules=sorted({v.rule for v in violations}),
            **context,
        )
        if self._log is None:
            return
        try:
            self._log.append(violations, action=action, **context)
        except OSError:
            logger.exception("failed to persist guardrail violations", **context)
