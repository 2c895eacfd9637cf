"""Execution adapter: run one plan under a hard time bound."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import signal
import time
from contextlib import suppress
from typing import Any

import psutil

from DevProbe.errors import ExecutionStartFailedError
from DevProbe.execution.plan import ExecutionPlan, RawResult, Termination

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_DRAIN_AFTER_KILL_SECONDS = 2.0


class _StreamCapture:
    """Keeps the first ``limit`` bytes of a stream and drains the rest."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.buffer = bytearray()
        self.truncated = False

    async def drain(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            if not chunk:
                return
            room = max(self.limit - len(self.buffer), 0)
            if room:
                self.buffer += chunk[:room]
            if len(chunk) > room:
                self.truncated = True


async def _feed_stdin(writer: asyncio.StreamWriter | None, data: bytes) -> None:
    if writer is None:
        return
    # A child may exit without reading its input.
    with suppress(BrokenPipeError, ConnectionResetError):
        writer.write(data)
        await writer.drain()
    writer.close()


def _descendants(pid: int) -> list[psutil.Process]:
    try:
        return psutil.Process(pid).children(recursive=True)
    except psutil.Error:
        return []


def _reap_descendants(procs: list[psutil.Process], grace: float) -> None:
    if not procs:
        return
    _, alive = psutil.wait_procs(procs, timeout=grace)
    for proc in alive:
        with suppress(psutil.Error):
            proc.kill()
    if alive:
        psutil.wait_procs(alive, timeout=grace)


def _signal_group(pgid: int, sig: int) -> None:
    killpg = getattr(os, "killpg", None)
    if killpg is None:
        return
    with suppress(ProcessLookupError, PermissionError):
        killpg(pgid, sig)


class _OwnedProcess:
    """Async context manager owning one child process and its descendants.

    Leaving the block always terminates and reaps whatever is still running,
    including when the surrounding task is cancelled.
    """

    def __init__(self, plan: ExecutionPlan, program: str, grace: float) -> None:
        self.plan = plan
        self.program = program
        self.grace = grace
        self.proc: asyncio.subprocess.Process | None = None

    async def __aenter__(self) -> asyncio.subprocess.Process:
        plan = self.plan
        env = None
        if plan.env is not None:
            env = {**os.environ, **plan.env}
        try:
            self.proc = await asyncio.create_subprocess_exec(
                self.program,
                *plan.args,
                stdin=(
                    asyncio.subprocess.DEVNULL
                    if plan.stdin is None
                    else asyncio.subprocess.PIPE
                ),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=plan.cwd,
                env=env,
                start_new_session=True,
            )
        except (FileNotFoundError, NotADirectoryError) as exc:
            missing = exc.filename or plan.cwd or self.program
            raise ExecutionStartFailedError(
                f"Could not start {plan.program}: {missing} does not exist",
                program=plan.program,
            ) from exc
        except PermissionError as exc:
            raise ExecutionStartFailedError(
                f"Could not start {plan.program}: permission denied",
                program=plan.program,
            ) from exc
        except OSError as exc:
            raise ExecutionStartFailedError(
                f"Could not start {plan.program}: {exc.strerror or exc}",
                program=plan.program,
            ) from exc
        return self.proc

    async def __aexit__(self, exc_type, exc, tb) -> None:
        proc = self.proc
        if proc is None:
            return
        if proc.returncode is None:
            await asyncio.shield(self.kill_tree())

    async def kill_tree(self) -> None:
        proc = self.proc
        if proc is None:
            return
        children = await asyncio.to_thread(_descendants, proc.pid)
        for child in children:
            with suppress(psutil.Error):
                child.terminate()
        _signal_group(proc.pid, signal.SIGTERM)
        with suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), self.grace)
        except asyncio.TimeoutError:
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
        await asyncio.to_thread(_reap_descendants, children, self.grace)
        # Orphans that escaped the psutil snapshot still share the session.
        _signal_group(proc.pid, getattr(signal, "SIGKILL", signal.SIGTERM))
        logger.debug("Reaped pid %s and %d descendant(s)", proc.pid, len(children))


def _encode_call_value(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    return json.dumps(value, default=str).encode("utf-8")


class ProcessRunner:
    """Runs ExecutionPlans. Never blocks past ``plan.timeout`` plus kill grace."""

    def __init__(self, *, kill_grace_seconds: float = 2.0) -> None:
        self.kill_grace_seconds = kill_grace_seconds

    async def run(self, plan: ExecutionPlan) -> RawResult:
        if plan.is_os_call:
            return await self._run_call(plan)
        return await self._run_process(plan)

    def _resolve(self, plan: ExecutionPlan) -> str:
        program = plan.program
        if os.sep in program:
            if not os.path.exists(program):
                raise ExecutionStartFailedError(
                    f"{program} does not exist", program=program
                )
            return program
        search_path = (plan.env or {}).get("PATH") or os.environ.get("PATH")
        resolved = shutil.which(program, path=search_path)
        if resolved is None:
            raise ExecutionStartFailedError(
                f"{program} not found on PATH", program=program
            )
        return resolved

    async def _run_process(self, plan: ExecutionPlan) -> RawResult:
        program = self._resolve(plan)
        stdout = _StreamCapture(plan.max_output_bytes)
        stderr = _StreamCapture(plan.max_output_bytes)
        started = time.monotonic()
        termination = Termination.EXITED

        owned = _OwnedProcess(plan, program, self.kill_grace_seconds)
        async with owned as proc:
            logger.debug("Started pid %s: %s", proc.pid, plan.describe())
            tasks = [
                asyncio.create_task(stdout.drain(proc.stdout)),
                asyncio.create_task(stderr.drain(proc.stderr)),
                asyncio.create_task(proc.wait()),
            ]
            if plan.stdin is not None:
                tasks.append(asyncio.create_task(_feed_stdin(proc.stdin, plan.stdin)))
            try:
                _, pending = await asyncio.wait(tasks, timeout=plan.timeout)
                if pending:
                    termination = Termination.TIMED_OUT
                    logger.info(
                        "%s exceeded %.1fs, terminating",
                        plan.describe(),
                        plan.timeout,
                    )
                    await owned.kill_tree()
                    _, pending = await asyncio.wait(
                        pending, timeout=_DRAIN_AFTER_KILL_SECONDS
                    )
            finally:
                for task in tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

        return RawResult(
            exit_status=proc.returncode,
            termination=termination,
            stdout=bytes(stdout.buffer),
            stderr=bytes(stderr.buffer),
            stdout_truncated=stdout.truncated,
            stderr_truncated=stderr.truncated,
            duration=time.monotonic() - started,
            extra=dict(plan.context),
        )

    async def _run_call(self, plan: ExecutionPlan) -> RawResult:
        started = time.monotonic()
        assert plan.call is not None
        try:
            value = await asyncio.wait_for(asyncio.to_thread(plan.call), plan.timeout)
        except asyncio.TimeoutError:
            # The worker thread cannot be interrupted; it finishes on its own.
            logger.info("%s exceeded %.1fs", plan.describe(), plan.timeout)
            return RawResult(
                exit_status=None,
                termination=Termination.TIMED_OUT,
                duration=time.monotonic() - started,
                extra=dict(plan.context),
            )
        except ExecutionStartFailedError:
            raise
        except ImportError as exc:
            raise ExecutionStartFailedError(
                f"{plan.describe()} is unavailable: {exc}"
            ) from exc
        except Exception as exc:
            logger.debug("%s raised %s", plan.describe(), exc)
            message = str(exc) or exc.__class__.__name__
            return RawResult(
                exit_status=1,
                termination=Termination.EXITED,
                stderr=message.encode("utf-8")[: plan.max_output_bytes],
                duration=time.monotonic() - started,
                extra=dict(plan.context),
            )

        data = _encode_call_value(value)
        limit = plan.max_output_bytes
        return RawResult(
            exit_status=0,
            termination=Termination.EXITED,
            stdout=data[:limit],
            stdout_truncated=len(data) > limit,
            duration=time.monotonic() - started,
            extra=dict(plan.context),
        )
