"""Error taxonomy shared by the dispatch engine, adapter and normalizers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    UNKNOWN_CAPABILITY = "UnknownCapability"
    INVALID_ARGUMENTS = "InvalidArguments"
    EXECUTION_START_FAILED = "ExecutionStartFailed"
    TIMED_OUT = "TimedOut"
    TOOL_FAILED = "ToolFailed"
    NORMALIZATION_FAILED = "NormalizationFailed"


class DevProbeError(Exception):
    """Base class for errors that map onto an error envelope."""

    kind: ErrorKind = ErrorKind.NORMALIZATION_FAILED

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class UnknownCapabilityError(DevProbeError):
    kind = ErrorKind.UNKNOWN_CAPABILITY


class InvalidArgumentsError(DevProbeError):
    kind = ErrorKind.INVALID_ARGUMENTS


class ExecutionStartFailedError(DevProbeError):
    """The external program could not be started at all."""

    kind = ErrorKind.EXECUTION_START_FAILED


class ToolFailedError(DevProbeError):
    kind = ErrorKind.TOOL_FAILED


class CallTimedOutError(DevProbeError):
    """Raised by the dispatch engine only, from a timed-out RawResult or call ceiling."""

    kind = ErrorKind.TIMED_OUT


class NormalizationError(DevProbeError):
    """Tool output could not be turned into a structured result."""

    kind = ErrorKind.NORMALIZATION_FAILED


class RegistryConfigError(RuntimeError):
    """Capability table is inconsistent. Fatal at startup."""


@dataclass(frozen=True)
class ErrorEnvelope:
    kind: ErrorKind
    message: str
    capability_name: str = ""
    request_id: str | int | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(
        cls,
        exc: DevProbeError,
        *,
        capability_name: str = "",
        request_id: str | int | None = None,
    ) -> "ErrorEnvelope":
        return cls(
            kind=exc.kind,
            message=exc.message,
            capability_name=capability_name,
            request_id=request_id,
            details=dict(exc.details),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "capability": self.capability_name,
        }
        if self.request_id is not None:
            payload["request_id"] = self.request_id
        if self.details:
            payload["details"] = self.details
        return payload
