"""Guardrail policy loading.

Policies are YAML files named ``<organization id>.yaml`` inside the policy
directory.  Organizations without a file get :class:`GuardrailPolicy`
defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import structlog
import yaml

from parley.moderation.models import GuardrailPolicy, Severity, TriggerMode
from parley.moderation.rules import PII_RULES, PREDEFINED_CATEGORIES

logger = structlog.get_logger(__name__)


def policy_from_dict(data: dict) -> GuardrailPolicy:
    """Build a policy from a parsed mapping, rejecting unknown ids."""
    defaults = GuardrailPolicy()
    categories = data.get("enabled_categories")
    categories = list(defaults.enabled_categories if categories is None else categories)
    unknown = [c for c in categories if c not in PREDEFINED_CATEGORIES]
    if unknown:
        raise ValueError(f"Unknown guardrail categories: {unknown}")

    pii_checks = data.get("pii_checks")
    if pii_checks is not None:
        pii_checks = list(pii_checks)
        unknown = [p for p in pii_checks if p not in PII_RULES]
        if unknown:
            raise ValueError(f"Unknown PII checks: {unknown}")

    severities = {
        str(rule): Severity(value) for rule, value in (data.get("severities") or {}).items()
    }

    return GuardrailPolicy(
        enabled_categories=categories,
        blocked_keywords=[str(k) for k in data.get("blocked_keywords") or []],
        pii_checks=pii_checks,
        severities=severities,
        default_severity=Severity(data.get("default_severity") or Severity.block.value),
        trigger_mode=TriggerMode(data.get("trigger_mode") or TriggerMode.hard_block.value),
    )


def load_policy(path: str | Path) -> GuardrailPolicy:
    """Load a guardrail policy from a YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Guardrail policy {path} must be a mapping")
    return policy_from_dict(data)


class PolicyRegistry:
    """Looks up the policy for an organization, caching parsed files."""

    def __init__(self, policy_dir: Optional[str | Path] = None) -> None:
        self._dir = Path(policy_dir) if policy_dir else None
        self._cache: dict[str, GuardrailPolicy] = {}

    def get(self, organization_id: str) -> GuardrailPolicy:
        if organization_id in self._cache:
            return self._cache[organization_id]

        policy = GuardrailPolicy()
        if self._dir is not None:
            path = self._dir / f"{organization_id}.yaml"
            if path.exists():
                try:
                    policy = load_policy(path)
                except (OSError, ValueError, TypeError, AttributeError, yaml.YAMLError) as exc:
                    # Defaults still apply.
                    logger.warning(
                        "invalid guardrail policy, using defaults",
                        organization_id=organization_id,
                        path=str(path),
                        error=str(exc),
                    )
        self._cache[organization_id] = policy
        return policy

    def set(self, organization_id: str, policy: GuardrailPolicy) -> None:
        self._cache[organization_id] = policy
