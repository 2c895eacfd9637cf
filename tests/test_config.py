"""Settings sources and validation."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from DevProbe.config import (
    DEFAULT_MINIMAL_CAPABILITIES,
    Settings,
    get_config_dir,
    get_config_path,
    get_settings,
)


def test_defaults() -> None:
    settings = Settings()
    assert settings.profile == "minimal"
    assert settings.minimal_capabilities == list(DEFAULT_MINIMAL_CAPABILITIES)
    assert settings.timeouts == {}


def test_config_dir_override(tmp_path) -> None:
    assert get_config_dir() == tmp_path / "config"
    assert get_config_path() == tmp_path / "config" / "config.json"


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("DEVPROBE_PROFILE", "full")
    monkeypatch.setenv("DEVPROBE_TIMEOUTS", '{"swift_build": 30}')
    settings = Settings()
    assert settings.profile == "full"
    assert settings.timeouts == {"swift_build": 30}


def test_json_config_file(tmp_path, monkeypatch) -> None:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "config.json").write_text(
        json.dumps({"minimal_capabilities": ["list_simulators"], "max_call_seconds": 60})
    )
    settings = Settings()
    assert settings.minimal_capabilities == ["list_simulators"]
    assert settings.max_call_seconds == 60

    monkeypatch.setenv("DEVPROBE_MAX_CALL_SECONDS", "90")
    assert Settings().max_call_seconds == 90


def test_constructor_wins_over_environment(monkeypatch) -> None:
    monkeypatch.setenv("DEVPROBE_PROFILE", "full")
    assert Settings(profile="minimal").profile == "minimal"


@pytest.mark.parametrize(
    "overrides",
    [
        {"default_timeout_seconds": 0},
        {"max_call_seconds": float("inf")},
        {"kill_grace_seconds": -1},
        {"timeouts": {"swift_build": 0}},
        {"max_output_bytes": 0},
        {"profile": "everything"},
    ],
)
def test_invalid_values_are_rejected(overrides) -> None:
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_minimal_names_are_deduplicated() -> None:
    settings = Settings(minimal_capabilities=["a", " a", "", "b"])
    assert settings.minimal_capabilities == ["a", "b"]


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()


def test_scratch_dir_is_created(tmp_path) -> None:
    settings = Settings(scratch_dir=tmp_path / "deep" / "scratch")
    assert settings.ensure_scratch_dir().is_dir()
