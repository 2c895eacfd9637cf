"""simctl output: device inventory, app listings and control actions."""

from __future__ import annotations

import re
from typing import Any

from DevProbe.errors import NormalizationError
from DevProbe.execution.plan import RawResult
from DevProbe.parsers.common import expect_mapping, load_json

ALREADY_IN_STATE = 149

_LAUNCH_PID = re.compile(r"^\s*([\w.\-]+):\s*(\d+)\s*$", re.MULTILINE)
_RUNTIME_PREFIX = "com.apple.CoreSimulator.SimRuntime."


def _runtime_label(identifier: str) -> str:
    # com.apple.CoreSimulator.SimRuntime.iOS-17-0 -> iOS 17.0
    if not identifier.startswith(_RUNTIME_PREFIX):
        return identifier
    platform, _, version = identifier[len(_RUNTIME_PREFIX):].partition("-")
    return f"{platform} {version.replace('-', '.')}".strip()


def normalize_devices(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Devices grouped by runtime. JSON, so truncated output is rejected."""
    payload = expect_mapping(load_json(raw, "simctl list devices"), "simctl list devices")
    groups = payload.get("devices")
    if not isinstance(groups, dict):
        raise NormalizationError("simctl list devices output has no 'devices' mapping")

    state_filter = (args.get("state") or "").lower()
    runtimes: list[dict[str, Any]] = []
    total = booted = available = 0
    for runtime, devices in groups.items():
        if not isinstance(devices, list):
            raise NormalizationError(f"simctl runtime {runtime!r} is not a device list")
        entries = []
        for device in devices:
            if not isinstance(device, dict) or "udid" not in device:
                raise NormalizationError(f"simctl device entry under {runtime!r} has no udid")
            state = str(device.get("state", ""))
            if state_filter and state.lower() != state_filter:
                continue
            is_available = bool(device.get("isAvailable", True))
            entries.append(
                {
                    "udid": device["udid"],
                    "name": device.get("name", ""),
                    "state": state,
                    "available": is_available,
                    "device_type": device.get("deviceTypeIdentifier", ""),
                }
            )
            total += 1
            booted += state == "Booted"
            available += is_available
        if entries:
            runtimes.append(
                {"runtime": runtime, "label": _runtime_label(runtime), "devices": entries}
            )
    return {
        "summary": f"Found {total} devices ({booted} booted, {available} available)",
        "total": total,
        "booted": booted,
        "available": available,
        "runtimes": runtimes,
    }


def normalize_state_change(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """boot/shutdown: status 149 means the device was already in that state."""
    already = raw.exit_status == ALREADY_IN_STATE
    return {
        "device": args.get("device", "booted"),
        "changed": not already,
        "message": raw.stderr_text.strip() if already else "ok",
    }


def normalize_action(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    return {
        "device": args.get("device", "booted"),
        "success": True,
        "output": raw.stdout_text.strip(),
    }


def normalize_launch(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    match = _LAUNCH_PID.search(raw.stdout_text)
    if match is None:
        raise NormalizationError(
            f"simctl launch did not report a pid: {raw.stdout_text.strip()[:120]!r}"
        )
    return {
        "device": args.get("device", "booted"),
        "bundle_id": match.group(1),
        "pid": int(match.group(2)),
    }


def normalize_apps(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Installed apps. simctl prints an OpenStep plist, converted to JSON by plutil."""
    if not raw.stdout.strip():
        return {"apps": [], "count": 0}
    payload = expect_mapping(load_json(raw, "simctl listapps"), "simctl listapps")

    include_system = bool(args.get("include_system", False))
    apps = []
    for bundle_id, info in sorted(payload.items()):
        info = info if isinstance(info, dict) else {}
        app_type = info.get("ApplicationType", "")
        if app_type == "System" and not include_system:
            continue
        apps.append(
            {
                "bundle_id": bundle_id,
                "name": info.get("CFBundleDisplayName") or info.get("CFBundleName", ""),
                "version": info.get("CFBundleShortVersionString", ""),
                "type": app_type,
                "path": info.get("Path", ""),
            }
        )
    return {"apps": apps, "count": len(apps)}


def normalize_screenshot(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    size = expect_mapping(load_json(raw, "screenshot size"), "screenshot size")
    return {
        "device": args.get("device", "booted"),
        "path": raw.extra.get("screenshot_path", ""),
        "width": size.get("width"),
        "height": size.get("height"),
        "format": (size.get("format") or "PNG").lower(),
    }
