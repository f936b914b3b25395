"""Runtime configuration.

Settings come from ``PARLEY_*`` environment variables and may be overlaid by
a YAML file named in ``PARLEY_CONFIG``.  The YAML file is validated strictly:
unknown keys are an error rather than silently ignored.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_CLASSIFIER_MODEL = "claude-haiku-4-5-20251001"


@dataclass(frozen=True)
class PlanOverride:
    """Per-plan allowance override loaded from config."""

    included: int
    overage_allowance: int = 0

    def __post_init__(self) -> None:
        if self.included < 0:
            raise ValueError("included must be >= 0")
        if self.overage_allowance < 0:
            raise ValueError("overage_allowance must be >= 0")


@dataclass(frozen=True)
class Settings:
    """All tunable knobs for a Parley process."""

    data_dir: Path = field(default_factory=lambda: Path.home() / ".parley")
    model: str = DEFAULT_MODEL
    classifier_model: str = DEFAULT_CLASSIFIER_MODEL
    anthropic_api_key: str = ""
    max_output_tokens: int = 1024

    classifier_timeout: float = 3.0
    classifier_retries: int = 2
    primary_timeout: Optional[float] = None
    slow_stream_warning: float = 20.0

    context_window_minutes: int = 60
    context_max_messages: int = 20

    default_plan: str = "free"
    subject_plans: dict[str, str] = field(default_factory=dict)
    plans: dict[str, PlanOverride] = field(default_factory=dict)

    guardrail_policy_dir: Optional[Path] = None

    slack_bot_token: str = ""
    slack_signing_secret: str = ""
    slack_api_base: str = "https://slack.com/api"

    def __post_init__(self) -> None:
        if self.classifier_timeout <= 0:
            raise ValueError("classifier_timeout must be > 0")
        if self.primary_timeout is not None and self.primary_timeout <= 0:
            raise ValueError("primary_timeout must be > 0 when set")
        if self.context_window_minutes <= 0:
            raise ValueError("context_window_minutes must be > 0")
        if self.context_max_messages <= 0:
            raise ValueError("context_max_messages must be > 0")

    @property
    def sqlite_path(self) -> Path:
        return self.data_dir / "quota.sqlite3"


_SCALAR_KEYS = {f.name for f in fields(Settings)} - {"plans", "subject_plans"}
_ALLOWED_YAML_KEYS = _SCALAR_KEYS | {"plans", "subject_plans"}


def _from_env() -> dict[str, Any]:
    env = os.environ
    values: dict[str, Any] = {}
    if env.get("PARLEY_DATA_DIR"):
        values["data_dir"] = Path(env["PARLEY_DATA_DIR"]).expanduser()
    if env.get("PARLEY_MODEL"):
        values["model"] = env["PARLEY_MODEL"]
    if env.get("PARLEY_CLASSIFIER_MODEL"):
        values["classifier_model"] = env["PARLEY_CLASSIFIER_MODEL"]
    if env.get("ANTHROPIC_API_KEY"):
        values["anthropic_api_key"] = env["ANTHROPIC_API_KEY"]
    if env.get("PARLEY_CLASSIFIER_TIMEOUT"):
        values["classifier_timeout"] = float(env["PARLEY_CLASSIFIER_TIMEOUT"])
    if env.get("PARLEY_PRIMARY_TIMEOUT"):
        values["primary_timeout"] = float(env["PARLEY_PRIMARY_TIMEOUT"])
    if env.get("PARLEY_DEFAULT_PLAN"):
        values["default_plan"] = env["PARLEY_DEFAULT_PLAN"]
    if env.get("PARLEY_GUARDRAIL_DIR"):
        values["guardrail_policy_dir"] = Path(env["PARLEY_GUARDRAIL_DIR"]).expanduser()
    if env.get("SLACK_BOT_TOKEN"):
        values["slack_bot_token"] = env["SLACK_BOT_TOKEN"]
    if env.get("SLACK_SIGNING_SECRET"):
        values["slack_signing_secret"] = env["SLACK_SIGNING_SECRET"]
    return values


def _from_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Parley config file not found: {path}")

    with open(path, "r", encoding="utf-8") as fh:
        try:
            raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ValueError("Configuration root must be a mapping")

    unknown = set(raw) - _ALLOWED_YAML_KEYS
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

    values: dict[str, Any] = {k: v for k, v in raw.items() if k in _SCALAR_KEYS}
    for key in ("data_dir", "guardrail_policy_dir"):
        if values.get(key):
            values[key] = Path(values[key]).expanduser()

    plans_raw = raw.get("plans") or {}
    if not isinstance(plans_raw, dict):
        raise ValueError("'plans' must be a mapping of plan id to allowance")
    plans: dict[str, PlanOverride] = {}
    for plan_id, entry in plans_raw.items():
        if not isinstance(entry, dict) or "included" not in entry:
            raise ValueError(f"Plan '{plan_id}' must define 'included'")
        plans[str(plan_id)] = PlanOverride(
            included=int(entry["included"]),
            overage_allowance=int(entry.get("overage_allowance", 0)),
        )
    if plans:
        values["plans"] = plans

    subject_plans = raw.get("subject_plans") or {}
    if not isinstance(subject_plans, dict):
        raise ValueError("'subject_plans' must be a mapping of subject id to plan id")
    if subject_plans:
        values["subject_plans"] = {str(k): str(v) for k, v in subject_plans.items()}

    return values


def load_settings(path: str | Path | None = None) -> Settings:
    """Build :class:`Settings` from the environment and an optional YAML file.

    YAML values win over environment values; the path defaults to
    ``PARLEY_CONFIG`` when not given.
    """
    settings = Settings(**_from_env())
    config_path = path or os.environ.get("PARLEY_CONFIG")
    if config_path:
        settings = replace(settings, **_from_yaml(Path(config_path).expanduser()))
    return settings
