"""Dispatch engine: per-call state machine and error mapping."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import psutil
import pytest

from DevProbe.capabilities.schema import CapabilitySpec, PlanContext
from DevProbe.errors import ErrorKind, NormalizationError, RegistryConfigError
from DevProbe.execution.plan import RawResult
from DevProbe.execution.runner import ProcessRunner
from DevProbe.server.dispatch import CallRequest, CallState, DispatchEngine

from conftest import PY, echo_capability, make_registry, script_capability

SLEEPER = "import time; time.sleep(5); print('{}')"
DENIED = "import sys; sys.stderr.write('permission denied'); sys.exit(1)"


class RecordingRunner(ProcessRunner):
    def __init__(self) -> None:
        super().__init__(kill_grace_seconds=0.5)
        self.plans = []

    async def run(self, plan):
        self.plans.append(plan)
        return await super().run(plan)


def _engine(settings, capabilities, minimal=(), profile="full", runner=None) -> DispatchEngine:
    registry = make_registry(list(capabilities), list(minimal))
    return DispatchEngine(registry, settings, profile=profile, runner=runner)


def _catalog() -> list[CapabilitySpec]:
    return [
        echo_capability(),
        script_capability("sleeper", SLEEPER, timeout=2),
        script_capability("denied", DENIED),
        script_capability("garbled", "print('not json at all')"),
    ]


def test_engine_requires_frozen_registry(settings) -> None:
    from DevProbe.capabilities.registry import CapabilityRegistry

    with pytest.raises(RegistryConfigError):
        DispatchEngine(CapabilityRegistry(), settings)


def test_engine_rejects_unknown_profile(settings) -> None:
    with pytest.raises(RegistryConfigError):
        _engine(settings, _catalog(), minimal=["echo"], profile="huge")


def test_describe_is_idempotent_and_ordered(settings) -> None:
    engine = _engine(settings, _catalog(), minimal=["echo"])
    first = engine.describe()
    assert first == engine.describe()
    assert [d["name"] for d in first] == ["echo", "sleeper", "denied", "garbled"]
    assert set(first[0]) == {"name", "description", "inputSchema"}


def test_minimal_profile_lists_only_its_members(settings) -> None:
    engine = _engine(settings, _catalog(), minimal=["echo"], profile="minimal")
    assert [d["name"] for d in engine.describe()] == ["echo"]


@pytest.mark.asyncio
async def test_successful_call_walks_every_state(settings) -> None:
    engine = _engine(settings, _catalog(), minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("echo", {"value": "hi"}, request_id=7))
    assert outcome.ok
    assert outcome.result == {"value": "hi"}
    assert outcome.request_id == 7
    assert outcome.states == [
        CallState.RECEIVED,
        CallState.VALIDATED,
        CallState.EXECUTING,
        CallState.NORMALIZING,
        CallState.COMPLETED,
    ]
    assert outcome.to_dict()["ok"] is True


@pytest.mark.asyncio
async def test_full_only_capability_is_unknown_in_minimal(settings) -> None:
    runner = RecordingRunner()
    engine = _engine(settings, _catalog(), minimal=["echo"], profile="minimal", runner=runner)
    outcome = await engine.dispatch(CallRequest("sleeper", {}))
    assert outcome.error.kind is ErrorKind.UNKNOWN_CAPABILITY
    assert "sleeper" in outcome.error.message
    assert outcome.states == [CallState.RECEIVED, CallState.COMPLETED]
    assert runner.plans == []


@pytest.mark.asyncio
async def test_invalid_arguments_never_reach_the_runner(settings) -> None:
    runner = RecordingRunner()
    engine = _engine(settings, _catalog(), minimal=["echo"], runner=runner)

    outcome = await engine.dispatch(CallRequest("echo", {"delay": -1}))
    assert outcome.error.kind is ErrorKind.INVALID_ARGUMENTS
    assert "value" in outcome.error.message
    constraints = {v["constraint"] for v in outcome.error.details["violations"]}
    assert {"required", "minimum"} <= constraints

    outcome = await engine.dispatch(CallRequest("echo", {"value": "x", "extra": 1}))
    assert outcome.error.kind is ErrorKind.INVALID_ARGUMENTS

    outcome = await engine.dispatch(CallRequest("echo", ["value"]))
    assert outcome.error.kind is ErrorKind.INVALID_ARGUMENTS
    assert runner.plans == []


@pytest.mark.asyncio
async def test_missing_arguments_are_an_empty_object(settings) -> None:
    engine = _engine(settings, _catalog(), minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("garbled", None))
    assert outcome.error.kind is ErrorKind.NORMALIZATION_FAILED


@pytest.mark.asyncio
async def test_timeout_is_reported_and_process_reaped(settings) -> None:
    engine = _engine(settings, _catalog(), minimal=["echo"])
    started = time.monotonic()
    outcome = await engine.dispatch(CallRequest("sleeper", {}))
    elapsed = time.monotonic() - started
    assert outcome.error.kind is ErrorKind.TIMED_OUT
    assert elapsed < 4.5
    assert CallState.NORMALIZING in outcome.states
    assert psutil.Process().children(recursive=True) == []


@pytest.mark.asyncio
async def test_configured_timeout_overrides_capability_default(settings) -> None:
    settings = settings.model_copy(update={"timeouts": {"echo": 0.5}})
    engine = _engine(settings, _catalog(), minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("echo", {"value": "late", "delay": 3}))
    assert outcome.error.kind is ErrorKind.TIMED_OUT


@pytest.mark.asyncio
async def test_nonzero_exit_is_tool_failed_with_stderr(settings) -> None:
    engine = _engine(settings, _catalog(), minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("denied", {}))
    assert outcome.error.kind is ErrorKind.TOOL_FAILED
    assert "permission denied" in outcome.error.message
    assert outcome.error.details["exit_status"] == 1


@pytest.mark.asyncio
async def test_accepted_exit_code_is_normalized(settings) -> None:
    def status(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
        return {"exit_status": raw.exit_status}

    capability = script_capability("lenient", DENIED, ok_exit_codes=frozenset({0, 1}), normalize=status)
    engine = _engine(settings, [echo_capability(), capability], minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("lenient", {}))
    assert outcome.result == {"exit_status": 1}


@pytest.mark.asyncio
async def test_unparseable_output_is_normalization_failed(settings) -> None:
    engine = _engine(settings, _catalog(), minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("garbled", {}))
    assert outcome.error.kind is ErrorKind.NORMALIZATION_FAILED


@pytest.mark.asyncio
async def test_normalizer_fault_becomes_normalization_failed(settings) -> None:
    def broken(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
        return {}["missing"]

    capability = script_capability("buggy", "print('{}')", normalize=broken)
    engine = _engine(settings, [echo_capability(), capability], minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("buggy", {}))
    assert outcome.error.kind is ErrorKind.NORMALIZATION_FAILED
    assert outcome.states[-1] is CallState.COMPLETED


@pytest.mark.asyncio
async def test_missing_program_is_execution_start_failed(settings) -> None:
    def build(args: dict[str, Any], ctx: PlanContext):
        return ctx.plan("devprobe-missing-binary", "--help")

    capability = CapabilitySpec(
        name="ghost",
        description="runs a program that does not exist",
        input_schema={"type": "object"},
        build=build,
        normalize=lambda raw, args: {},
    )
    engine = _engine(settings, [echo_capability(), capability], minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("ghost", {}))
    assert outcome.error.kind is ErrorKind.EXECUTION_START_FAILED
    assert CallState.NORMALIZING not in outcome.states


@pytest.mark.asyncio
async def test_concurrent_calls_do_not_share_state(settings) -> None:
    engine = _engine(settings, _catalog(), minimal=["echo"])
    requests = [
        CallRequest("echo", {"value": f"v{i}", "delay": 0.3 - i * 0.05}, request_id=i)
        for i in range(5)
    ]
    started = time.monotonic()
    outcomes = await asyncio.gather(*(engine.dispatch(r) for r in requests))
    assert time.monotonic() - started < 3
    for i, outcome in enumerate(outcomes):
        assert outcome.request_id == i
        assert outcome.result == {"value": f"v{i}"}


@pytest.mark.asyncio
async def test_slow_call_does_not_block_fast_call(settings) -> None:
    engine = _engine(settings, _catalog(), minimal=["echo"])
    slow = asyncio.create_task(engine.dispatch(CallRequest("echo", {"value": "slow", "delay": 1.5})))
    fast = await engine.dispatch(CallRequest("echo", {"value": "fast"}))
    assert fast.result == {"value": "fast"}
    assert not slow.done()
    assert (await slow).result == {"value": "slow"}


@pytest.mark.asyncio
async def test_call_ceiling_bounds_multi_step_calls(settings) -> None:
    settings = settings.model_copy(update={"max_call_seconds": 1.0})

    def build(args: dict[str, Any], ctx: PlanContext):
        first = ctx.plan(PY, "-c", "import time; time.sleep(0.7)")
        return [first, lambda raw: ctx.plan(PY, "-c", "import time; time.sleep(0.7)")]

    capability = CapabilitySpec(
        name="two_naps",
        description="two short sleeps",
        input_schema={"type": "object"},
        build=build,
        normalize=lambda raw, args: {},
    )
    engine = _engine(settings, [echo_capability(), capability], minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("two_naps", {}))
    assert outcome.error.kind is ErrorKind.TIMED_OUT
    assert "call limit" in outcome.error.message


@pytest.mark.asyncio
async def test_steps_see_previous_result(settings) -> None:
    def build(args: dict[str, Any], ctx: PlanContext):
        first = ctx.plan(PY, "-c", "print('abc')", context={"tag": "first"})
        return [first, lambda raw: ctx.plan(PY, "-c", f"print({raw.stdout_text.strip()!r} * 2)")]

    capability = CapabilitySpec(
        name="chain",
        description="feeds step one into step two",
        input_schema={"type": "object"},
        build=build,
        normalize=lambda raw, args: {"out": raw.stdout_text.strip()},
    )
    engine = _engine(settings, [echo_capability(), capability], minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("chain", {}))
    assert outcome.result == {"out": "abcabc"}


@pytest.mark.asyncio
async def test_failed_intermediate_step_is_tool_failed(settings) -> None:
    def build(args: dict[str, Any], ctx: PlanContext):
        return [ctx.plan(PY, "-c", DENIED), lambda raw: ctx.plan(PY, "-c", "print('{}')")]

    capability = CapabilitySpec(
        name="stops_early",
        description="first step fails",
        input_schema={"type": "object"},
        build=build,
        normalize=lambda raw, args: {},
    )
    engine = _engine(settings, [echo_capability(), capability], minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("stops_early", {}))
    assert outcome.error.kind is ErrorKind.TOOL_FAILED
    assert "permission denied" in outcome.error.message


@pytest.mark.asyncio
async def test_step_may_raise_a_taxonomy_error(settings) -> None:
    def fail(raw: RawResult):
        raise NormalizationError("no output directory reported")

    def build(args: dict[str, Any], ctx: PlanContext):
        return [ctx.plan(PY, "-c", "pass"), fail]

    capability = CapabilitySpec(
        name="lost",
        description="second step cannot be planned",
        input_schema={"type": "object"},
        build=build,
        normalize=lambda raw, args: {},
    )
    engine = _engine(settings, [echo_capability(), capability], minimal=["echo"])
    outcome = await engine.dispatch(CallRequest("lost", {}))
    assert outcome.error.kind is ErrorKind.NORMALIZATION_FAILED
    assert outcome.error.message == "no output directory reported"


@pytest.mark.asyncio
async def test_cancelled_caller_leaves_call_running_to_completion(settings) -> None:
    engine = _engine(settings, _catalog(), minimal=["echo"])
    caller = asyncio.create_task(engine.dispatch(CallRequest("echo", {"value": "x", "delay": 0.5})))
    await asyncio.sleep(0.2)
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller
    assert engine.inflight == 1
    await engine.drain(timeout=5)
    assert engine.inflight == 0
    assert psutil.Process().children(recursive=True) == []
