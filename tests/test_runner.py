"""Execution adapter: time bounds, output caps and cleanup."""

from __future__ import annotations

import asyncio
import time

import psutil
import pytest

from DevProbe.errors import ExecutionStartFailedError
from DevProbe.execution.plan import ExecutionPlan, Termination
from DevProbe.execution.runner import ProcessRunner

from conftest import PY


def _gone(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


def _wait_gone(pid: int, seconds: float = 3.0) -> bool:
    deadline = time.monotonic() + seconds
    while time.monotonic() < deadline:
        if _gone(pid):
            return True
        time.sleep(0.05)
    return _gone(pid)


def test_plan_rejects_non_finite_timeout() -> None:
    with pytest.raises(ValueError):
        ExecutionPlan(program="true", timeout=0)
    with pytest.raises(ValueError):
        ExecutionPlan(program="true", timeout=float("inf"))
    with pytest.raises(ValueError):
        ExecutionPlan(timeout=1)


@pytest.mark.asyncio
async def test_nonzero_exit_is_a_normal_result() -> None:
    plan = ExecutionPlan(
        program=PY,
        args=("-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"),
        timeout=10,
    )
    raw = await ProcessRunner().run(plan)
    assert raw.termination is Termination.EXITED
    assert raw.exit_status == 3
    assert raw.stderr_text == "boom"
    assert not raw.truncated


@pytest.mark.asyncio
async def test_timeout_kills_process_tree() -> None:
    code = (
        "import subprocess, sys, time\n"
        "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)'])\n"
        "print(child.pid, flush=True)\n"
        "time.sleep(5)\n"
    )
    plan = ExecutionPlan(program=PY, args=("-c", code), timeout=2)
    started = time.monotonic()
    raw = await ProcessRunner(kill_grace_seconds=0.5).run(plan)
    elapsed = time.monotonic() - started

    assert raw.timed_out
    assert elapsed < 5
    grandchild = int(raw.stdout_text.split()[0])
    assert _wait_gone(grandchild)
    assert psutil.Process().children(recursive=True) == []


@pytest.mark.asyncio
async def test_output_cap_sets_truncation_and_keeps_exit_status() -> None:
    plan = ExecutionPlan(
        program=PY,
        args=("-c", "import sys; sys.stdout.write('x' * 200000); sys.exit(0)"),
        timeout=10,
        max_output_bytes=1000,
    )
    raw = await ProcessRunner().run(plan)
    assert raw.exit_status == 0
    assert raw.stdout_truncated
    assert len(raw.stdout) == 1000
    assert not raw.stderr_truncated


@pytest.mark.asyncio
async def test_missing_program_fails_to_start() -> None:
    plan = ExecutionPlan(program="devprobe-no-such-tool", timeout=5)
    with pytest.raises(ExecutionStartFailedError) as info:
        await ProcessRunner().run(plan)
    assert "not found" in info.value.message


@pytest.mark.asyncio
async def test_missing_working_directory_fails_to_start(tmp_path) -> None:
    plan = ExecutionPlan(program=PY, args=("-c", "pass"), cwd=str(tmp_path / "nope"), timeout=5)
    with pytest.raises(ExecutionStartFailedError):
        await ProcessRunner().run(plan)


@pytest.mark.asyncio
async def test_plan_context_is_carried_to_result() -> None:
    plan = ExecutionPlan(program=PY, args=("-c", "pass"), timeout=5, context={"trace_path": "/t"})
    raw = await ProcessRunner().run(plan)
    assert raw.extra == {"trace_path": "/t"}


@pytest.mark.asyncio
async def test_stdin_is_fed_and_closed() -> None:
    plan = ExecutionPlan(
        program=PY,
        args=("-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"),
        stdin=b"plist body",
        timeout=10,
    )
    raw = await ProcessRunner().run(plan)
    assert raw.exit_status == 0
    assert raw.stdout == b"PLIST BODY"


@pytest.mark.asyncio
async def test_child_that_ignores_stdin_still_finishes() -> None:
    plan = ExecutionPlan(
        program=PY, args=("-c", "print('done')"), stdin=b"x" * (1024 * 1024), timeout=10
    )
    raw = await ProcessRunner().run(plan)
    assert raw.exit_status == 0
    assert raw.stdout_text.strip() == "done"


def test_stdin_is_only_for_processes() -> None:
    with pytest.raises(ValueError):
        ExecutionPlan(call=lambda: None, stdin=b"x", timeout=1)


@pytest.mark.asyncio
async def test_os_call_return_value_becomes_stdout() -> None:
    plan = ExecutionPlan(call=lambda: {"width": 10}, timeout=5)
    raw = await ProcessRunner().run(plan)
    assert raw.exit_status == 0
    assert raw.stdout == b'{"width": 10}'


@pytest.mark.asyncio
async def test_os_call_failure_is_exit_status_one() -> None:
    def broken() -> None:
        raise RuntimeError("window not found")

    raw = await ProcessRunner().run(ExecutionPlan(call=broken, timeout=5))
    assert raw.exit_status == 1
    assert raw.stderr_text == "window not found"


@pytest.mark.asyncio
async def test_os_call_missing_module_fails_to_start() -> None:
    def needs_module() -> None:
        raise ImportError("No module named 'pyautogui'")

    with pytest.raises(ExecutionStartFailedError):
        await ProcessRunner().run(ExecutionPlan(call=needs_module, timeout=5))


@pytest.mark.asyncio
async def test_os_call_timeout() -> None:
    plan = ExecutionPlan(call=lambda: time.sleep(1.5), timeout=0.2)
    started = time.monotonic()
    raw = await ProcessRunner().run(plan)
    assert raw.timed_out
    assert raw.exit_status is None
    assert time.monotonic() - started < 1.0
    await asyncio.sleep(1.5)
