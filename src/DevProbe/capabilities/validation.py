"""Argument validation against capability input schemas."""

from __future__ import annotations

from typing import Any

from jsonschema import Draft202012Validator

from DevProbe.errors import InvalidArgumentsError

_MAX_REPORTED = 5


def validate_arguments(validator: Draft202012Validator, arguments: Any) -> dict[str, Any]:
    """Return ``arguments`` as a dict or raise InvalidArgumentsError.

    The message names each violated constraint and where it applies.
    """
    if arguments is None:
        arguments = {}
    errors = sorted(
        validator.iter_errors(arguments),
        key=lambda err: [str(part) for part in err.path],
    )
    if errors:
        violations = [
            {
                "path": "/".join(map(str, err.path)) or "<root>",
                "constraint": str(err.validator),
                "message": err.message,
            }
            for err in errors[:_MAX_REPORTED]
        ]
        summary = "; ".join(
            f"{v['path']}: {v['message']} ({v['constraint']})" for v in violations
        )
        raise InvalidArgumentsError(
            f"Invalid arguments: {summary}", violations=violations
        )
    if not isinstance(arguments, dict):
        raise InvalidArgumentsError("Invalid arguments: expected an object")
    return arguments


def require_fields(arguments: dict[str, Any], *names: str, when: str = "") -> None:
    """Cross-field check for requirements a flat schema cannot express cleanly."""
    missing = [name for name in names if arguments.get(name) is None]
    if missing:
        context = f" when {when}" if when else ""
        raise InvalidArgumentsError(
            f"Invalid arguments: {', '.join(missing)} required{context}",
            violations=[
                {"path": name, "constraint": "required", "message": f"{name} is required{context}"}
                for name in missing
            ],
        )
