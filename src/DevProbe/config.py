"""Runtime settings for DevProbe.

Values come from (highest priority first) constructor kwargs, ``DEVPROBE_*``
environment variables and ``~/.devprobe/config.json``.
"""

from __future__ import annotations

import math
import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

Profile = Literal["minimal", "full"]

DEFAULT_MINIMAL_CAPABILITIES: tuple[str, ...] = (
    "get_project_summary",
    "instruments_profile",
    "simulator_ui_state",
    "simulator_interact",
    "simulator_find_text",
)


def get_config_dir() -> Path:
    """Return the configuration directory, creating nothing."""
    override = os.environ.get("DEVPROBE_CONFIG_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".devprobe"


def get_config_path() -> Path:
    return get_config_dir() / "config.json"


def _check_seconds(value: float, name: str) -> float:
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"{name} must be a finite positive number of seconds")
    return value


class Settings(BaseSettings):
    """DevProbe settings."""

    model_config = SettingsConfigDict(
        env_prefix="DEVPROBE_",
        extra="ignore",
        validate_default=True,
    )

    profile: Profile = "minimal"
    minimal_capabilities: list[str] = Field(
        default_factory=lambda: list(DEFAULT_MINIMAL_CAPABILITIES)
    )

    default_timeout_seconds: float = 120.0
    timeouts: dict[str, float] = Field(default_factory=dict)
    max_call_seconds: float = 1800.0
    kill_grace_seconds: float = 2.0

    max_output_bytes: int = Field(default=4 * 1024 * 1024, gt=0)
    stderr_excerpt_bytes: int = Field(default=4096, gt=0)

    xcrun_path: str = "xcrun"
    swift_path: str = "swift"
    xcodebuild_path: str = "xcodebuild"
    tesseract_path: str = "tesseract"
    osascript_path: str = "osascript"

    apple_docs_url: str = "https://developer.apple.com/tutorials/data/documentation"
    github_api_url: str = "https://api.github.com"
    github_token: str = ""
    http_timeout_seconds: float = 30.0

    scratch_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "devprobe"
    )
    log_level: str = "INFO"

    @field_validator(
        "default_timeout_seconds", "max_call_seconds", "kill_grace_seconds", "http_timeout_seconds"
    )
    @classmethod
    def _positive_seconds(cls, value: float, info) -> float:
        return _check_seconds(value, info.field_name)

    @field_validator("timeouts")
    @classmethod
    def _positive_overrides(cls, value: dict[str, float]) -> dict[str, float]:
        for name, seconds in value.items():
            _check_seconds(seconds, f"timeouts[{name}]")
        return value

    @field_validator("minimal_capabilities")
    @classmethod
    def _dedupe_names(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for name in value:
            name = name.strip()
            if name and name not in seen:
                seen.append(name)
        return seen

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        del dotenv_settings, file_secret_settings
        return (
            init_settings,
            env_settings,
            JsonConfigSettingsSource(settings_cls, json_file=get_config_path()),
        )

    def ensure_scratch_dir(self) -> Path:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        return self.scratch_dir


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
