"""Shared fixtures: isolated settings and scripted capabilities."""

from __future__ import annotations

import sys
from typing import Any

import pytest

from DevProbe.capabilities.registry import CapabilityRegistry
from DevProbe.capabilities.schema import SUCCESS_ONLY, CapabilitySpec, PlanContext
from DevProbe.config import Settings, get_settings
from DevProbe.execution.plan import RawResult
from DevProbe.parsers.common import expect_mapping, load_json

PY = sys.executable

ECHO_SCRIPT = (
    "import json, sys, time; time.sleep(float(sys.argv[2])); "
    "print(json.dumps({'value': sys.argv[1]}))"
)


def json_result(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    return expect_mapping(load_json(raw, "script"), "script")


def script_capability(
    name: str,
    code: str,
    *,
    timeout: float | None = None,
    ok_exit_codes: frozenset[int] | None = SUCCESS_ONLY,
    normalize=json_result,
    schema: dict[str, Any] | None = None,
) -> CapabilitySpec:
    def build(args: dict[str, Any], ctx: PlanContext):
        return ctx.plan(PY, "-c", code, timeout=timeout)

    return CapabilitySpec(
        name=name,
        description=f"scripted {name}",
        input_schema=schema or {"type": "object"},
        build=build,
        normalize=normalize,
        ok_exit_codes=ok_exit_codes,
    )


def echo_capability() -> CapabilitySpec:
    def build(args: dict[str, Any], ctx: PlanContext):
        return ctx.plan(PY, "-c", ECHO_SCRIPT, args["value"], args.get("delay", 0))

    return CapabilitySpec(
        name="echo",
        description="echo a value after a delay",
        input_schema={
            "type": "object",
            "properties": {
                "value": {"type": "string"},
                "delay": {"type": "number", "minimum": 0},
            },
            "required": ["value"],
            "additionalProperties": False,
        },
        build=build,
        normalize=json_result,
    )


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("DEVPROBE_CONFIG_DIR", str(tmp_path / "config"))
    for key in ("DEVPROBE_PROFILE", "DEVPROBE_MINIMAL_CAPABILITIES", "DEVPROBE_TIMEOUTS"):
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        scratch_dir=tmp_path / "scratch",
        kill_grace_seconds=0.5,
        default_timeout_seconds=10,
        max_output_bytes=64 * 1024,
    )


def make_registry(full: list[CapabilitySpec], minimal: list[str]) -> CapabilityRegistry:
    registry = CapabilityRegistry()
    for capability in full:
        registry.register("full", capability)
    for name in minimal:
        registry.register("minimal", registry.resolve("full", name))
    registry.freeze()
    return registry
