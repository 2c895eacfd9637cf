"""Schema fragments and argument helpers shared by the built-in capabilities."""

from __future__ import annotations

from typing import Any

PROJECT_PATH = {
    "type": "string",
    "minLength": 1,
    "description": "Path to a Swift package directory, .xcodeproj or .xcworkspace",
}
DEVICE = {
    "type": "string",
    "minLength": 1,
    "default": "booted",
    "description": "Simulator UDID, name, or 'booted'",
}
CONFIGURATION = {"type": "string", "enum": ["debug", "release"], "default": "debug"}

DESTINATION_SHORTHANDS = {
    "ios simulator": "platform=iOS Simulator,name=iPhone 16 Pro",
    "iphone simulator": "platform=iOS Simulator,name=iPhone 16 Pro",
    "ios sim": "platform=iOS Simulator,name=iPhone 16 Pro",
    "ios": "generic/platform=iOS",
    "iphone": "generic/platform=iOS",
    "macos": "platform=macOS",
    "mac": "platform=macOS",
    "tvos simulator": "platform=tvOS Simulator,name=Apple TV",
    "tvos sim": "platform=tvOS Simulator,name=Apple TV",
    "tvos": "generic/platform=tvOS",
    "watchos simulator": "platform=watchOS Simulator,name=Apple Watch Series 10 (46mm)",
    "watchos sim": "platform=watchOS Simulator,name=Apple Watch Series 10 (46mm)",
    "watchos": "generic/platform=watchOS",
    "visionos simulator": "platform=visionOS Simulator,name=Apple Vision Pro",
    "visionos sim": "platform=visionOS Simulator,name=Apple Vision Pro",
    "visionos": "generic/platform=visionOS",
}
DEFAULT_DESTINATION = "platform=macOS"


def object_schema(properties: dict[str, Any], *required: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(required),
        "additionalProperties": False,
    }


def xcode_container(project_path: str) -> tuple[list[str], str | None]:
    """xcodebuild flags for a project path, plus the working directory to use."""
    trimmed = project_path.rstrip("/")
    if trimmed.endswith(".xcworkspace"):
        return ["-workspace", trimmed], None
    if trimmed.endswith(".xcodeproj"):
        return ["-project", trimmed], None
    return [], trimmed


def resolve_destination(args: dict[str, Any]) -> str:
    if args.get("destination"):
        return args["destination"]
    platform = (args.get("platform") or "").strip().lower()
    if not platform:
        return DEFAULT_DESTINATION
    return DESTINATION_SHORTHANDS.get(platform, DEFAULT_DESTINATION)
