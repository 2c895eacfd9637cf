"""xcodebuild -list and -showdestinations output."""

from __future__ import annotations

import json
import re
from typing import Any

from DevProbe.errors import NormalizationError
from DevProbe.execution.plan import RawResult
from DevProbe.parsers.common import complete_lines

# { platform:iOS Simulator, id:XXXX, OS:17.0, name:iPhone 15 }
_DESTINATION = re.compile(
    r"\{\s*platform:([^,]+),\s*(?:arch:([^,]+),\s*)?(?:id:([^,]+),\s*)?(?:OS:([^,]+),\s*)?name:([^,}]+)"
)


def _schemes_from_json(text: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(text[text.find("{"):]) if "{" in text else None
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    container = payload.get("workspace") or payload.get("project")
    if not isinstance(container, dict) or not isinstance(container.get("schemes"), list):
        return None
    return {
        "name": container.get("name", ""),
        "kind": "workspace" if "workspace" in payload else "project",
        "schemes": [str(s) for s in container["schemes"]],
        "targets": [str(t) for t in container.get("targets", [])],
        "configurations": [str(c) for c in container.get("configurations", [])],
    }


def _section(lines: list[str], header: str) -> list[str] | None:
    items: list[str] | None = None
    for line in lines:
        stripped = line.strip()
        if items is None:
            if stripped == header:
                items = []
            continue
        if not stripped or stripped.endswith(":"):
            break
        items.append(stripped)
    return items


def normalize_schemes(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Schemes from ``-list -json``, or the text listing as a fallback.

    A cut-off JSON document falls back to the text form, which keeps the
    complete lines before the cut.
    """
    if not raw.stdout_truncated:
        parsed = _schemes_from_json(raw.stdout_text)
        if parsed is not None:
            parsed["truncated"] = False
            return parsed

    lines, truncated = complete_lines(raw)
    schemes = _section(lines, "Schemes:")
    if schemes is None:
        raise NormalizationError("xcodebuild -list output has no scheme listing")
    return {
        "name": "",
        "kind": "text",
        "schemes": schemes,
        "targets": _section(lines, "Targets:") or [],
        "configurations": _section(lines, "Build Configurations:") or [],
        "truncated": truncated,
    }


def parse_destinations(lines: list[str]) -> list[dict[str, Any]]:
    destinations: list[dict[str, Any]] = []
    for line in lines:
        match = _DESTINATION.search(line)
        if not match:
            continue
        platform, arch, ident, os_version, name = (
            g.strip() if g is not None else None for g in match.groups()
        )
        entry: dict[str, Any] = {"platform": platform, "name": name}
        if ident:
            entry["id"] = ident
        if os_version:
            entry["os"] = os_version
        if arch:
            entry["arch"] = arch
        destinations.append(entry)
    return destinations


def normalize_destinations(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Line-oriented: truncated output keeps every complete destination line."""
    lines, truncated = complete_lines(raw)
    destinations = parse_destinations(lines)
    if not destinations and lines and not any("Destinations" in l for l in lines):
        raise NormalizationError("xcodebuild -showdestinations output has no destination list")
    platform = (args.get("platform") or "").lower()
    if platform:
        destinations = [d for d in destinations if platform in d["platform"].lower()]
    return {"destinations": destinations, "count": len(destinations), "truncated": truncated}
