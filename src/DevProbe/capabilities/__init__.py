"""Capability definitions, registry and argument validation."""

from DevProbe.capabilities.catalog import build_registry
from DevProbe.capabilities.registry import CapabilityRegistry
from DevProbe.capabilities.schema import CapabilitySpec, PlanContext

__all__ = ["CapabilityRegistry", "CapabilitySpec", "PlanContext", "build_registry"]
