"""Capability registry: one canonical table tagged with profile membership."""

from __future__ import annotations

import logging
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from DevProbe.capabilities.schema import CapabilitySpec
from DevProbe.errors import RegistryConfigError

logger = logging.getLogger(__name__)

PROFILES: tuple[str, ...] = ("minimal", "full")


class CapabilityRegistry:
    """Startup-populated, then read-only catalog of capabilities.

    Every capability lives once in ``_table``; profiles are projections kept as
    ordered name lists. Registration order is discovery order.
    """

    def __init__(self) -> None:
        self._table: dict[str, CapabilitySpec] = {}
        self._validators: dict[str, Draft202012Validator] = {}
        self._members: dict[str, list[str]] = {profile: [] for profile in PROFILES}
        self._frozen = False

    def register(self, profile_id: str, capability: CapabilitySpec) -> None:
        if self._frozen:
            raise RegistryConfigError("registry is frozen; register during startup only")
        members = self._members.get(profile_id)
        if members is None:
            raise RegistryConfigError(f"unknown profile {profile_id!r}")
        if capability.name in members:
            raise RegistryConfigError(
                f"capability {capability.name!r} registered twice in profile {profile_id!r}"
            )
        existing = self._table.get(capability.name)
        if existing is None:
            try:
                Draft202012Validator.check_schema(capability.input_schema)
            except SchemaError as exc:
                raise RegistryConfigError(
                    f"capability {capability.name!r} has an invalid input schema: {exc.message}"
                ) from exc
            self._table[capability.name] = capability
            self._validators[capability.name] = Draft202012Validator(capability.input_schema)
        elif existing is not capability:
            raise RegistryConfigError(
                f"capability {capability.name!r} has conflicting definitions across profiles"
            )
        members.append(capability.name)

    def freeze(self) -> None:
        """End the registration phase and check profile consistency."""
        minimal = set(self._members["minimal"])
        full = set(self._members["full"])
        stray = minimal - full
        if stray:
            raise RegistryConfigError(
                f"minimal profile names missing from full profile: {sorted(stray)}"
            )
        if full and minimal == full:
            raise RegistryConfigError("minimal profile must be a strict subset of full")
        self._frozen = True
        logger.debug(
            "Registry frozen: %d capabilities (%d minimal)", len(full), len(minimal)
        )

    @property
    def frozen(self) -> bool:
        return self._frozen

    def resolve(self, profile_id: str, name: str) -> CapabilitySpec | None:
        members = self._members.get(profile_id, ())
        if name not in members:
            return None
        return self._table[name]

    def validator_for(self, name: str) -> Draft202012Validator:
        return self._validators[name]

    def list(self, profile_id: str) -> tuple[CapabilitySpec, ...]:
        return tuple(self._table[name] for name in self._members.get(profile_id, ()))

    def describe(self, profile_id: str) -> list[dict[str, Any]]:
        return [cap.descriptor() for cap in self.list(profile_id)]

    def profiles_of(self, name: str) -> tuple[str, ...]:
        return tuple(p for p in PROFILES if name in self._members[p])
