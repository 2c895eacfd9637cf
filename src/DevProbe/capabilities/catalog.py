"""Default capability catalog and profile assembly."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from DevProbe.capabilities.builtin import ALL_CAPABILITIES
from DevProbe.capabilities.registry import CapabilityRegistry
from DevProbe.capabilities.schema import CapabilitySpec
from DevProbe.config import Settings
from DevProbe.errors import RegistryConfigError

logger = logging.getLogger(__name__)


def build_registry(
    settings: Settings,
    capabilities: Iterable[CapabilitySpec] = ALL_CAPABILITIES,
) -> CapabilityRegistry:
    """Register every capability in ``full`` and the configured subset in ``minimal``."""
    registry = CapabilityRegistry()
    for capability in capabilities:
        registry.register("full", capability)

    for name in settings.minimal_capabilities:
        capability = registry.resolve("full", name)
        if capability is None:
            raise RegistryConfigError(
                f"minimal_capabilities names {name!r}, which is not a known capability"
            )
        registry.register("minimal", capability)

    registry.freeze()
    logger.info(
        "Capability catalog ready: %d full, %d minimal",
        len(registry.list("full")),
        len(registry.list("minimal")),
    )
    return registry
