"""Bounded execution of external programs and OS calls."""

from DevProbe.execution.plan import ExecutionPlan, RawResult, Termination
from DevProbe.execution.runner import ProcessRunner

__all__ = ["ExecutionPlan", "ProcessRunner", "RawResult", "Termination"]
