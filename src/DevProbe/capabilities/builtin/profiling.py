"""Performance profiling with xctrace (Instruments)."""

from __future__ import annotations

import os
from typing import Any

from DevProbe.capabilities.builtin._shared import object_schema
from DevProbe.capabilities.schema import CapabilitySpec, PlanContext
from DevProbe.errors import InvalidArgumentsError, ToolFailedError
from DevProbe.execution.plan import ExecutionPlan, RawResult
from DevProbe.parsers import instruments
from DevProbe.parsers.common import excerpt

# Extra wall time xctrace needs to launch the target and finalize the trace.
RECORD_OVERHEAD_SECONDS = 60
TOC_TIMEOUT_SECONDS = 30


def _templates_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    return ctx.xcrun("xctrace", "list", "templates")


def _devices_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    return ctx.xcrun("xctrace", "list", "devices")


def _target_args(target: str) -> list[str]:
    if target.isdigit():
        return ["--attach", target]
    return ["--launch", "--", target]


def _check_local_path(path: str, what: str) -> None:
    if path.startswith(("/", ".", "~")) and not os.path.exists(os.path.expanduser(path)):
        raise InvalidArgumentsError(f"Invalid arguments: {what} {path!r} does not exist")


def _profile_steps(args: dict[str, Any], ctx: PlanContext) -> list[Any]:
    target = args["target"]
    _check_local_path(target, "target")
    duration = int(args.get("duration", 10))
    trace_path = args.get("output_path") or str(ctx.scratch_path("profile", ".trace"))

    record_args = [
        "xctrace", "record",
        "--template", args["template"],
        "--output", trace_path,
        "--time-limit", f"{duration}s",
    ]
    if args.get("device"):
        record_args += ["--device", args["device"]]
    record_args += _target_args(target)
    record = ctx.xcrun(
        *record_args,
        timeout=duration + RECORD_OVERHEAD_SECONDS,
        context={"trace_path": trace_path},
    )

    def export_toc(previous: RawResult) -> ExecutionPlan:
        # xctrace may exit nonzero after a time-limited recording it did save.
        if previous.exit_status != 0 and not os.path.exists(trace_path):
            raise ToolFailedError(
                f"xctrace record exited with status {previous.exit_status}",
                exit_status=previous.exit_status,
                stderr=excerpt(previous.stderr_text, ctx.settings.stderr_excerpt_bytes),
            )
        return ctx.xcrun(
            "xctrace", "export", "--input", trace_path, "--toc",
            timeout=TOC_TIMEOUT_SECONDS,
            context={"trace_path": trace_path},
        )

    return [record, export_toc]


def _trace_summary_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    _check_local_path(args["trace_path"], "trace")
    return ctx.xcrun("xctrace", "export", "--input", args["trace_path"], "--toc")


PROFILING_CAPABILITIES: tuple[CapabilitySpec, ...] = (
    CapabilitySpec(
        name="list_instruments_templates",
        description="List Instruments templates available to xctrace, grouped by category.",
        input_schema=object_schema({}),
        build=_templates_plan,
        normalize=instruments.normalize_templates,
        category="profiling",
        default_timeout=60,
    ),
    CapabilitySpec(
        name="list_profiling_devices",
        description="List devices and simulators xctrace can record on.",
        input_schema=object_schema({}),
        build=_devices_plan,
        normalize=instruments.normalize_devices,
        category="profiling",
        default_timeout=60,
    ),
    CapabilitySpec(
        name="instruments_profile",
        description=(
            "Record a performance trace with an Instruments template (e.g. 'Time Profiler', "
            "'Allocations', 'Leaks') by launching an app or attaching to a pid, then "
            "summarize the recorded instruments."
        ),
        input_schema=object_schema(
            {
                "target": {
                    "type": "string",
                    "minLength": 1,
                    "description": "App bundle or executable path, process name, or numeric pid",
                },
                "template": {"type": "string", "minLength": 1},
                "duration": {"type": "integer", "minimum": 1, "maximum": 600, "default": 10},
                "device": {"type": "string"},
                "output_path": {"type": "string", "pattern": r"\.trace$"},
            },
            "target",
            "template",
        ),
        build=_profile_steps,
        normalize=instruments.normalize_record,
        step_exit_codes=None,
        category="profiling",
    ),
    CapabilitySpec(
        name="trace_summary",
        description="Summarize an existing .trace file: runs, target process and recorded tables.",
        input_schema=object_schema(
            {"trace_path": {"type": "string", "minLength": 1}}, "trace_path"
        ),
        build=_trace_summary_plan,
        normalize=instruments.normalize_trace_summary,
        category="profiling",
        default_timeout=60,
    ),
)
