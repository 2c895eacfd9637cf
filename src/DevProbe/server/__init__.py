"""Dispatch engine and protocol transports."""

from DevProbe.server.dispatch import CallOutcome, CallRequest, CallState, DispatchEngine

__all__ = ["CallOutcome", "CallRequest", "CallState", "DispatchEngine"]
