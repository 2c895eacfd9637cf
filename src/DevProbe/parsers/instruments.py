"""xctrace listings and trace table-of-contents exports."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Any

from DevProbe.errors import NormalizationError
from DevProbe.execution.plan import RawResult
from DevProbe.parsers.common import complete_lines

# "My Mac (14.5) (00008103-000A1B2C3D4E5F6G)"
_DEVICE_WITH_OS = re.compile(r"^(.+?)\s+\(([^)]+)\)\s+\(([^)]+)\)$")
# "My Mac (00008103-000A1B2C3D4E5F6G)"
_DEVICE_BARE = re.compile(r"^(.+?)\s+\(([A-Fa-f0-9-]+)\)$")


def _category(line: str) -> str | None:
    if line.startswith("==") and line.endswith("=="):
        return line.strip("=").strip()
    return None


def normalize_templates(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Templates grouped by category. Truncated output drops the cut-off name."""
    lines, truncated = complete_lines(raw)
    templates: list[dict[str, Any]] = []
    category: str | None = None
    for line in lines:
        stripped = line.strip()
        if not stripped:
            continue
        header = _category(stripped)
        if header is not None:
            category = header
            continue
        if category is None:
            raise NormalizationError(
                f"xctrace template listing has an entry outside any category: {stripped[:80]!r}"
            )
        templates.append({"name": stripped, "category": category})
    return {"templates": templates, "count": len(templates), "truncated": truncated}


def normalize_devices(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    lines, truncated = complete_lines(raw)
    devices: list[dict[str, Any]] = []
    section = ""
    for line in lines:
        stripped = line.strip()
        if not stripped:
            continue
        header = _category(stripped)
        if header is not None:
            section = header
            continue
        match = _DEVICE_WITH_OS.match(stripped)
        if match:
            name, os_version, ident = match.groups()
            devices.append(
                {"name": name, "os": os_version, "id": ident, "section": section}
            )
            continue
        match = _DEVICE_BARE.match(stripped)
        if match:
            name, ident = match.groups()
            devices.append({"name": name, "id": ident, "section": section})
    if lines and not devices and not section:
        raise NormalizationError("xctrace device listing has no recognizable entries")
    return {"devices": devices, "count": len(devices), "truncated": truncated}


def normalize_record(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Recording summary: the final step's RawResult carries the trace TOC."""
    summary = parse_trace_toc(raw)
    summary["trace_path"] = raw.extra.get("trace_path") or args.get("output_path", "")
    summary["template"] = args["template"]
    summary["requested_duration"] = args.get("duration", 10)
    return summary


def normalize_trace_summary(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    summary = parse_trace_toc(raw)
    summary["trace_path"] = args["trace_path"]
    return summary


def parse_trace_toc(raw: RawResult) -> dict[str, Any]:
    """Map each recorded table schema (one per instrument) to a summary.

    XML cannot be partially parsed, so truncated output is rejected.
    """
    if raw.stdout_truncated:
        raise NormalizationError(
            "trace table of contents exceeded the capture limit; XML cannot be partially parsed",
            truncated=True,
        )
    text = raw.stdout_text.strip()
    if not text:
        raise NormalizationError("xctrace export produced no table of contents")
    try:
        root = ET.fromstring(text[text.find("<"):])
    except ET.ParseError as exc:
        raise NormalizationError(f"trace table of contents is not valid XML: {exc}") from exc
    if root.tag != "trace-toc":
        raise NormalizationError(f"unexpected trace export root element <{root.tag}>")

    runs: list[dict[str, Any]] = []
    instruments: dict[str, dict[str, Any]] = {}
    for run in root.findall("run"):
        run_info: dict[str, Any] = {"number": run.get("number")}
        summary = run.find("info/summary")
        if summary is not None:
            run_info.update({child.tag: (child.text or "").strip() for child in summary})
        device = run.find("info/target/device")
        if device is not None:
            run_info["device"] = dict(device.attrib)
        process = run.find("info/target/process")
        if process is not None:
            run_info["process"] = dict(process.attrib)
        runs.append(run_info)

        for table in run.findall("data/table"):
            schema = table.get("schema")
            if not schema:
                continue
            entry = instruments.setdefault(schema, {"tables": 0, "runs": [], "attributes": {}})
            entry["tables"] += 1
            if run_info["number"] not in entry["runs"]:
                entry["runs"].append(run_info["number"])
            for key, value in table.attrib.items():
                if key != "schema":
                    entry["attributes"].setdefault(key, value)
    return {"runs": runs, "instruments": instruments}
