"""Capability schema: input contract, plan builder and output normalizer."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

from DevProbe.config import Settings
from DevProbe.execution.plan import ExecutionPlan, RawResult

NextStep = Callable[[RawResult], ExecutionPlan]
Step = Union[ExecutionPlan, NextStep]
PlanBuilder = Callable[[dict[str, Any], "PlanContext"], Union[ExecutionPlan, Sequence[Step]]]
Normalizer = Callable[[RawResult, dict[str, Any]], dict[str, Any]]

SUCCESS_ONLY: frozenset[int] = frozenset({0})


@dataclass(frozen=True)
class PlanContext:
    """Per-call inputs a plan builder needs besides the caller's arguments."""

    settings: Settings
    timeout: float
    max_output_bytes: int

    def plan(
        self,
        program: str,
        *args: Any,
        timeout: float | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        stdin: bytes | None = None,
        label: str = "",
        context: Mapping[str, Any] | None = None,
    ) -> ExecutionPlan:
        return ExecutionPlan(
            program=program,
            args=tuple(str(a) for a in args),
            cwd=cwd,
            env=env,
            stdin=stdin,
            timeout=timeout if timeout is not None else self.timeout,
            max_output_bytes=self.max_output_bytes,
            label=label,
            context=dict(context or {}),
        )

    def call(
        self,
        func: Callable[[], Any],
        *,
        timeout: float | None = None,
        label: str = "",
        context: Mapping[str, Any] | None = None,
    ) -> ExecutionPlan:
        return ExecutionPlan(
            call=func,
            timeout=timeout if timeout is not None else self.timeout,
            max_output_bytes=self.max_output_bytes,
            label=label,
            context=dict(context or {}),
        )

    def xcrun(self, *args: Any, **kwargs: Any) -> ExecutionPlan:
        return self.plan(self.settings.xcrun_path, *args, **kwargs)

    def scratch_path(self, prefix: str, suffix: str) -> Path:
        return self.settings.ensure_scratch_dir() / f"{prefix}-{uuid.uuid4().hex[:12]}{suffix}"


@dataclass(frozen=True)
class CapabilitySpec:
    """One invocable capability. Immutable once registered."""

    name: str
    description: str
    input_schema: dict[str, Any]
    build: PlanBuilder
    normalize: Normalizer
    ok_exit_codes: frozenset[int] | None = SUCCESS_ONLY
    step_exit_codes: frozenset[int] | None = SUCCESS_ONLY
    category: str = ""
    default_timeout: float | None = None

    def accepts_exit(self, status: int | None) -> bool:
        if self.ok_exit_codes is None:
            return True
        return status in self.ok_exit_codes

    def accepts_step_exit(self, status: int | None) -> bool:
        if self.step_exit_codes is None:
            return True
        return status in self.step_exit_codes

    def descriptor(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }
