"""Dispatch engine: one independent state machine per call request."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from DevProbe.capabilities.registry import PROFILES, CapabilityRegistry
from DevProbe.capabilities.schema import CapabilitySpec, PlanContext, Step
from DevProbe.capabilities.validation import validate_arguments
from DevProbe.config import Settings
from DevProbe.errors import (
    CallTimedOutError,
    DevProbeError,
    ErrorEnvelope,
    ErrorKind,
    RegistryConfigError,
    ToolFailedError,
    UnknownCapabilityError,
)
from DevProbe.execution.plan import ExecutionPlan, RawResult
from DevProbe.execution.runner import ProcessRunner
from DevProbe.parsers.common import excerpt

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    ErrorKind.UNKNOWN_CAPABILITY: logging.DEBUG,
    ErrorKind.INVALID_ARGUMENTS: logging.DEBUG,
    ErrorKind.TOOL_FAILED: logging.INFO,
    ErrorKind.TIMED_OUT: logging.INFO,
    ErrorKind.EXECUTION_START_FAILED: logging.WARNING,
    ErrorKind.NORMALIZATION_FAILED: logging.ERROR,
}


class CallState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    EXECUTING = "executing"
    NORMALIZING = "normalizing"
    COMPLETED = "completed"


@dataclass(frozen=True)
class CallRequest:
    capability_name: str
    arguments: Any = None
    request_id: str | int | None = None


@dataclass
class CallOutcome:
    """Terminal outcome of one request: exactly one of ``result``/``error`` is set."""

    request_id: str | int | None
    capability_name: str
    result: dict[str, Any] | None = None
    error: ErrorEnvelope | None = None
    states: list[CallState] = field(default_factory=list)
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "request_id": self.request_id,
            "capability": self.capability_name,
            "ok": self.ok,
        }
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        else:
            payload["result"] = self.result
        return payload


class DispatchEngine:
    """Routes call requests to capabilities of the active profile.

    There is no engine-wide lock: each call owns its plans and raw results,
    and the registry is read-only once frozen.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        settings: Settings,
        *,
        profile: str | None = None,
        runner: ProcessRunner | None = None,
    ) -> None:
        profile = profile or settings.profile
        if profile not in PROFILES:
            raise RegistryConfigError(f"unknown profile {profile!r}")
        if not registry.frozen:
            raise RegistryConfigError("registry must be frozen before dispatching")
        self._registry = registry
        self._settings = settings
        self._profile = profile
        self._runner = runner or ProcessRunner(kill_grace_seconds=settings.kill_grace_seconds)
        self._inflight: set[asyncio.Task] = set()

    @property
    def profile(self) -> str:
        return self._profile

    def describe(self) -> list[dict[str, Any]]:
        """Discovery: ordered descriptors of the active profile."""
        return self._registry.describe(self._profile)

    async def dispatch(self, request: CallRequest) -> CallOutcome:
        """Run one request to completion.

        The call runs in its own task shielded from the caller, so a caller
        that goes away (closed transport) does not cut the call short; it
        still ends at its own timeout with its processes reaped.
        """
        task = asyncio.create_task(self._run(request))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for calls whose callers have gone away."""
        if self._inflight:
            await asyncio.wait(set(self._inflight), timeout=timeout)

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def _run(self, request: CallRequest) -> CallOutcome:
        started = time.monotonic()
        outcome = CallOutcome(
            request_id=request.request_id,
            capability_name=request.capability_name,
            states=[CallState.RECEIVED],
        )
        try:
            outcome.result = await self._process(request, outcome.states)
        except DevProbeError as exc:
            outcome.error = ErrorEnvelope.from_exception(
                exc,
                capability_name=request.capability_name,
                request_id=request.request_id,
            )
            logger.log(
                _LOG_LEVELS[exc.kind],
                "%s [%s] %s: %s",
                request.capability_name,
                request.request_id,
                exc.kind.value,
                exc.message,
            )
        except Exception as exc:
            logger.exception(
                "Unexpected fault handling %s [%s]", request.capability_name, request.request_id
            )
            outcome.error = ErrorEnvelope(
                kind=ErrorKind.NORMALIZATION_FAILED,
                message=f"Internal error while handling {request.capability_name}: {exc}",
                capability_name=request.capability_name,
                request_id=request.request_id,
            )
        outcome.states.append(CallState.COMPLETED)
        outcome.duration = time.monotonic() - started
        return outcome

    async def _process(self, request: CallRequest, states: list[CallState]) -> dict[str, Any]:
        name = request.capability_name
        capability = self._registry.resolve(self._profile, name)
        if capability is None:
            raise UnknownCapabilityError(f"Unknown capability: {name}")
        args = validate_arguments(self._registry.validator_for(name), request.arguments)
        states.append(CallState.VALIDATED)

        ctx = PlanContext(
            settings=self._settings,
            timeout=self._timeout_for(capability),
            max_output_bytes=self._settings.max_output_bytes,
        )
        steps = self._steps(capability, args, ctx)
        states.append(CallState.EXECUTING)
        try:
            raw = await asyncio.wait_for(
                self._execute(capability, steps), self._settings.max_call_seconds
            )
        except asyncio.TimeoutError:
            raise CallTimedOutError(
                f"{name} exceeded the {self._settings.max_call_seconds:g}s call limit"
            ) from None

        states.append(CallState.NORMALIZING)
        if raw.timed_out:
            raise CallTimedOutError(
                f"{name} did not finish within its time limit", duration=round(raw.duration, 3)
            )
        if not capability.accepts_exit(raw.exit_status):
            raise self._tool_failed(name, raw)
        return capability.normalize(raw, args)

    def _timeout_for(self, capability: CapabilitySpec) -> float:
        if capability.name in self._settings.timeouts:
            return self._settings.timeouts[capability.name]
        return capability.default_timeout or self._settings.default_timeout_seconds

    @staticmethod
    def _steps(
        capability: CapabilitySpec, args: dict[str, Any], ctx: PlanContext
    ) -> Sequence[Step]:
        built = capability.build(args, ctx)
        steps: Sequence[Step] = [built] if isinstance(built, ExecutionPlan) else list(built)
        if not steps or not isinstance(steps[0], ExecutionPlan):
            raise TypeError(f"{capability.name} must start with an ExecutionPlan")
        return steps

    async def _execute(self, capability: CapabilitySpec, steps: Sequence[Step]) -> RawResult:
        raw: RawResult | None = None
        last = len(steps) - 1
        for index, step in enumerate(steps):
            plan = step if isinstance(step, ExecutionPlan) else step(raw)
            raw = await self._runner.run(plan)
            if index == last or raw.timed_out:
                return raw
            if not capability.accepts_step_exit(raw.exit_status):
                raise self._tool_failed(f"{capability.name} ({plan.describe()})", raw)
        assert raw is not None
        return raw

    def _tool_failed(self, what: str, raw: RawResult) -> ToolFailedError:
        limit = self._settings.stderr_excerpt_bytes
        stderr = excerpt(raw.stderr_text, limit) or excerpt(raw.stdout_text[-limit:], limit)
        message = f"{what} exited with status {raw.exit_status}"
        if stderr:
            message = f"{message}: {stderr}"
        return ToolFailedError(message, exit_status=raw.exit_status, stderr=stderr)
