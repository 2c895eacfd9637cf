"""Execution plan and raw result types."""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DEFAULT_MAX_OUTPUT_BYTES = 4 * 1024 * 1024


class Termination(str, Enum):
    EXITED = "exited"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ExecutionPlan:
    """One bounded action: a process to spawn, or an OS call to make.

    Exactly one of ``program`` and ``call`` is set. ``call`` runs on a worker
    thread; its return value (str, bytes or anything JSON-serializable via
    ``str``) becomes stdout. ``stdin`` is written to a process and then closed;
    without it the child reads from the null device.
    """

    timeout: float
    program: str = ""
    args: tuple[str, ...] = ()
    cwd: str | None = None
    env: Mapping[str, str] | None = None
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    call: Callable[[], Any] | None = None
    stdin: bytes | None = None
    label: str = ""
    context: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.timeout, (int, float)) or isinstance(self.timeout, bool):
            raise ValueError("timeout must be a number of seconds")
        if not math.isfinite(self.timeout) or self.timeout <= 0:
            raise ValueError("timeout must be finite and positive")
        if self.max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be positive")
        if bool(self.program) == (self.call is not None):
            raise ValueError("plan needs exactly one of program or call")
        if self.stdin is not None and self.call is not None:
            raise ValueError("stdin only applies to process plans")
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))

    @property
    def is_os_call(self) -> bool:
        return self.call is not None

    def describe(self) -> str:
        if self.label:
            return self.label
        if self.call is not None:
            return getattr(self.call, "__name__", "os-call")
        return " ".join((self.program, *self.args))


@dataclass(frozen=True)
class RawResult:
    exit_status: int | None
    termination: Termination
    stdout: bytes = b""
    stderr: bytes = b""
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    duration: float = 0.0
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def timed_out(self) -> bool:
        return self.termination is Termination.TIMED_OUT

    @property
    def truncated(self) -> bool:
        return self.stdout_truncated or self.stderr_truncated

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    @property
    def combined_text(self) -> str:
        """stdout followed by stderr; compilers split diagnostics across both."""
        if not self.stderr:
            return self.stdout_text
        if not self.stdout:
            return self.stderr_text
        return self.stdout_text + "\n" + self.stderr_text
