"""Compiler and build-system diagnostics (swift build, xcodebuild)."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any

from DevProbe.errors import ToolFailedError
from DevProbe.execution.plan import RawResult
from DevProbe.parsers.common import complete_lines, excerpt

_LOCATED = re.compile(r"^(.+?):(\d+):(\d+):\s*(error|warning|note):\s*(.+)$")
_BARE = re.compile(r"^(?:xcodebuild:\s*)?(error|warning):\s*(.+)$", re.IGNORECASE)
_LINKER = re.compile(r"^ld:\s*(.+)$")
_CLANG = re.compile(r"^clang:\s*(error|warning):\s*(.+)$")
_FAILED_BLOCK = "The following build commands failed:"
_FAILED_BLOCK_END = re.compile(r"^\(\d+ failures?\)$")

_SUCCESS_MARKERS = ("Build complete!", "** BUILD SUCCEEDED **")
_FAILURE_MARKERS = ("error:", "** BUILD FAILED **")


@dataclass(frozen=True)
class Diagnostic:
    severity: str
    message: str
    file: str | None = None
    line: int | None = None
    column: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def parse_diagnostics(lines: list[str]) -> tuple[list[Diagnostic], list[Diagnostic]]:
    """Return ``(errors, warnings)``; notes are dropped, duplicates collapsed."""
    errors: list[Diagnostic] = []
    warnings: list[Diagnostic] = []
    seen: set[Diagnostic] = set()
    in_failed_block = False

    def add(diag: Diagnostic) -> None:
        if diag in seen:
            return
        seen.add(diag)
        (errors if diag.severity == "error" else warnings).append(diag)

    for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        if line == _FAILED_BLOCK:
            in_failed_block = True
            continue
        if in_failed_block:
            if _FAILED_BLOCK_END.match(line):
                in_failed_block = False
            else:
                add(Diagnostic("error", f"Failed: {line}"))
            continue

        match = _LOCATED.match(line)
        if match:
            path, row, col, severity, message = match.groups()
            if severity != "note":
                add(Diagnostic(severity, message.strip(), path, int(row), int(col)))
            continue
        match = _CLANG.match(line)
        if match:
            add(Diagnostic(match.group(1).lower(), match.group(2).strip()))
            continue
        match = _BARE.match(line)
        if match:
            add(Diagnostic(match.group(1).lower(), match.group(2).strip()))
            continue
        match = _LINKER.match(line)
        if match:
            add(Diagnostic("error", f"ld: {match.group(1).strip()}"))
    return errors, warnings


def is_build_successful(text: str) -> bool:
    if any(marker in text for marker in _SUCCESS_MARKERS):
        return True
    return not any(marker in text for marker in _FAILURE_MARKERS)


def normalize_build(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Build result. Truncated logs keep every diagnostic before the cut."""
    lines, truncated = complete_lines(raw, stream="combined")
    errors, warnings = parse_diagnostics(lines)
    success = raw.exit_status == 0 and not errors
    if raw.exit_status == 0 and errors and is_build_successful(raw.combined_text):
        # "error:" text in source snippets or test names, build still succeeded.
        success = True
    if raw.exit_status != 0 and not errors:
        raise ToolFailedError(
            f"build exited with status {raw.exit_status} without diagnostics",
            exit_status=raw.exit_status,
            stderr=excerpt(raw.stderr_text or raw.stdout_text, 4000),
        )
    return {
        "success": success,
        "exit_status": raw.exit_status,
        "error_count": len(errors),
        "warning_count": len(warnings),
        "errors": [d.to_dict() for d in errors],
        "warnings": [d.to_dict() for d in warnings],
        "duration": round(raw.duration, 3),
        "truncated": truncated,
    }
