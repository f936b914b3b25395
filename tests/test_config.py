"""Tests for settings loading."""

import tempfile
from pathlib import Path

import pytest

from parley.config import DEFAULT_MODEL, PlanOverride, Settings, load_settings


def test_defaults(monkeypatch):
    for name in ["PARLEY_CONFIG", "PARLEY_DATA_DIR", "PARLEY_MODEL", "PARLEY_PRIMARY_TIMEOUT"]:
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.model == DEFAULT_MODEL
    assert settings.primary_timeout is None
    assert settings.default_plan == "free"


def test_env_overrides(monkeypatch):
    monkeypatch.delenv("PARLEY_CONFIG", raising=False)
    monkeypatch.setenv("PARLEY_DATA_DIR", "/tmp/parley-test")
    monkeypatch.setenv("PARLEY_PRIMARY_TIMEOUT", "45")
    settings = load_settings()
    assert settings.data_dir == Path("/tmp/parley-test")
    assert settings.primary_timeout == 45.0
    assert settings.sqlite_path == Path("/tmp/parley-test/quota.sqlite3")


def test_yaml_overlay():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "parley.yaml"
        path.write_text(
            "classifier_timeout: 1.5\n"
            "default_plan: team\n"
            "plans:\n  team: {included: 20, overage_allowance: 5}\n"
            "subject_plans:\n  U1: pro\n"
        )
        settings = load_settings(path)
        assert settings.classifier_timeout == 1.5
        assert settings.plans == {"team": PlanOverride(20, 5)}
        assert settings.subject_plans == {"U1": "pro"}


def test_yaml_rejects_unknown_keys():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "parley.yaml"
        path.write_text("modle: typo\n")
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_settings(path)


def test_yaml_rejects_plan_without_included():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "parley.yaml"
        path.write_text("plans:\n  team: {overage_allowance: 5}\n")
        with pytest.raises(ValueError):
            load_settings(path)


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        load_settings("/nonexistent/parley.yaml")


def test_invalid_values_rejected():
    with pytest.raises(ValueError):
        Settings(classifier_timeout=0)
    with pytest.raises(ValueError):
        Settings(primary_timeout=-1)
    with pytest.raises(ValueError):
        PlanOverride(included=-1)
