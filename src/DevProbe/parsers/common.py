"""Helpers shared by the output normalizers."""

from __future__ import annotations

import json
from typing import Any

from DevProbe.errors import NormalizationError
from DevProbe.execution.plan import RawResult


def complete_lines(raw: RawResult, *, stream: str = "stdout") -> tuple[list[str], bool]:
    """Split a stream into lines, dropping a cut-off final line.

    Returns ``(lines, truncated)``. Line-oriented parsers use this as their
    partial-parse policy: everything before the cut is kept. ``combined``
    trims each stream on its own flag, then appends stderr to stdout.
    """
    if stream == "combined":
        lines = _stream_lines(raw.stdout_text, raw.stdout_truncated)
        lines += _stream_lines(raw.stderr_text, raw.stderr_truncated)
        return lines, raw.truncated
    if stream == "stderr":
        return _stream_lines(raw.stderr_text, raw.stderr_truncated), raw.stderr_truncated
    return _stream_lines(raw.stdout_text, raw.stdout_truncated), raw.stdout_truncated


def _stream_lines(text: str, truncated: bool) -> list[str]:
    lines = text.splitlines()
    if truncated and lines and not text.endswith("\n"):
        lines.pop()
    return lines


def load_json(raw: RawResult, what: str) -> Any:
    """Parse stdout as one JSON document. Cut-off JSON is never guessed at."""
    if raw.stdout_truncated:
        raise NormalizationError(
            f"{what} output exceeded the capture limit; JSON cannot be partially parsed",
            truncated=True,
        )
    text = raw.stdout_text.strip()
    if not text:
        raise NormalizationError(f"{what} produced no output")
    start = _json_start(text)
    try:
        return json.loads(text[start:])
    except json.JSONDecodeError as exc:
        raise NormalizationError(f"{what} output is not valid JSON: {exc.msg}") from exc


def _json_start(text: str) -> int:
    # SwiftPM prints progress lines ("Fetching ...") before the document.
    for idx, char in enumerate(text):
        if char in "{[":
            return idx
    return 0


def expect_mapping(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise NormalizationError(f"{what} output is not a JSON object")
    return value


def excerpt(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
