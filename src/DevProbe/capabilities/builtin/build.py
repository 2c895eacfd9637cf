"""Build, test and run capabilities for SwiftPM and xcodebuild."""

from __future__ import annotations

from typing import Any

from DevProbe.capabilities.builtin._shared import (
    CONFIGURATION,
    PROJECT_PATH,
    object_schema,
    resolve_destination,
    xcode_container,
)
from DevProbe.capabilities.schema import CapabilitySpec, PlanContext
from DevProbe.execution.plan import ExecutionPlan, RawResult
from DevProbe.parsers import build_output, test_output

# A failed build or failing test run is a result, not a tool failure.
BUILD_OUTCOMES = frozenset({0, 1})
XCODEBUILD_OUTCOMES = frozenset({0, 1, 65})

_XCODE_CONFIGURATION = {"type": "string", "default": "Debug"}
_DESTINATION_PROPS = {
    "destination": {
        "type": "string",
        "description": "Full destination specifier, e.g. 'platform=iOS Simulator,name=iPhone 16'",
    },
    "platform": {
        "type": "string",
        "description": "Shorthand such as 'ios simulator', 'macos', 'watchos'",
    },
}


def _swift_build_steps(args: dict[str, Any], ctx: PlanContext) -> list[ExecutionPlan]:
    swift = ctx.settings.swift_path
    path = args["project_path"]
    steps = []
    if args.get("clean"):
        steps.append(ctx.plan(swift, "package", "clean", "--package-path", path, timeout=60))
    build_args = ["build", "--package-path", path, "--configuration", args.get("configuration", "debug")]
    if args.get("target"):
        build_args += ["--target", args["target"]]
    elif args.get("product"):
        build_args += ["--product", args["product"]]
    steps.append(ctx.plan(swift, *build_args))
    return steps


def _swift_test_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    test_args = ["test", "--package-path", args["project_path"]]
    if args.get("filter"):
        test_args += ["--filter", args["filter"]]
    if args.get("parallel") is False:
        test_args.append("--no-parallel")
    elif args.get("parallel"):
        test_args.append("--parallel")
    if args.get("code_coverage"):
        test_args.append("--enable-code-coverage")
    return ctx.plan(ctx.settings.swift_path, *test_args)


def _swift_run_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    # Options go before the executable; swift run passes anything after it through.
    run_args = [
        "run", "--package-path", args["project_path"],
        "--configuration", args.get("configuration", "debug"),
    ]
    if args.get("executable"):
        run_args.append(args["executable"])
    if args.get("arguments"):
        run_args += ["--", *args["arguments"]]
    return ctx.plan(
        ctx.settings.swift_path, *run_args,
        timeout=args.get("timeout", ctx.timeout),
    )


def _normalize_run(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Every exit status is reported; streams are returned as captured."""
    return {
        "exit_status": raw.exit_status,
        "success": raw.exit_status == 0,
        "stdout": raw.stdout_text,
        "stderr": raw.stderr_text,
        "stdout_truncated": raw.stdout_truncated,
        "stderr_truncated": raw.stderr_truncated,
        "duration": round(raw.duration, 3),
    }


def _xcodebuild_args(args: dict[str, Any], action: str) -> tuple[list[str], str | None]:
    flags, cwd = xcode_container(args["project_path"])
    argv = [*flags, "-scheme", args["scheme"]]
    argv += ["-configuration", args.get("configuration", "Debug")]
    argv += ["-destination", resolve_destination(args)]
    if args.get("sdk"):
        argv += ["-sdk", args["sdk"]]
    for identifier in args.get("only_testing") or []:
        argv.append(f"-only-testing:{identifier}")
    if args.get("clean"):
        argv.append("clean")
    argv.append(action)
    return argv, cwd


def _xcodebuild_build_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    argv, cwd = _xcodebuild_args(args, "build")
    return ctx.plan(ctx.settings.xcodebuild_path, *argv, cwd=cwd)


def _xcodebuild_test_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    argv, cwd = _xcodebuild_args(args, "test")
    return ctx.plan(ctx.settings.xcodebuild_path, *argv, cwd=cwd)


_XCODE_PROPS = {
    "project_path": PROJECT_PATH,
    "scheme": {"type": "string", "minLength": 1},
    "configuration": _XCODE_CONFIGURATION,
    "sdk": {"type": "string"},
    "clean": {"type": "boolean", "default": False},
    **_DESTINATION_PROPS,
}


BUILD_CAPABILITIES: tuple[CapabilitySpec, ...] = (
    CapabilitySpec(
        name="swift_build",
        description="Build a Swift package and report compiler errors and warnings with locations.",
        input_schema=object_schema(
            {
                "project_path": PROJECT_PATH,
                "configuration": CONFIGURATION,
                "target": {"type": "string"},
                "product": {"type": "string"},
                "clean": {"type": "boolean", "default": False},
            },
            "project_path",
        ),
        build=_swift_build_steps,
        normalize=build_output.normalize_build,
        ok_exit_codes=BUILD_OUTCOMES,
        category="build",
        default_timeout=600,
    ),
    CapabilitySpec(
        name="swift_test",
        description="Run a Swift package's tests and report each case with status, duration and failure.",
        input_schema=object_schema(
            {
                "project_path": PROJECT_PATH,
                "filter": {"type": "string"},
                "parallel": {"type": "boolean"},
                "code_coverage": {"type": "boolean", "default": False},
            },
            "project_path",
        ),
        build=_swift_test_plan,
        normalize=test_output.normalize_tests,
        ok_exit_codes=BUILD_OUTCOMES,
        category="build",
        default_timeout=900,
    ),
    CapabilitySpec(
        name="swift_run",
        description="Build and run an executable product; reports its exit status and output.",
        input_schema=object_schema(
            {
                "project_path": PROJECT_PATH,
                "executable": {"type": "string"},
                "arguments": {"type": "array", "items": {"type": "string"}},
                "configuration": CONFIGURATION,
                "timeout": {"type": "number", "exclusiveMinimum": 0, "maximum": 3600},
            },
            "project_path",
        ),
        build=_swift_run_plan,
        normalize=_normalize_run,
        ok_exit_codes=None,
        category="build",
        default_timeout=300,
    ),
    CapabilitySpec(
        name="xcodebuild_build",
        description="Build an Xcode scheme for a destination and report diagnostics.",
        input_schema=object_schema(dict(_XCODE_PROPS), "project_path", "scheme"),
        build=_xcodebuild_build_plan,
        normalize=build_output.normalize_build,
        ok_exit_codes=XCODEBUILD_OUTCOMES,
        category="build",
        default_timeout=1200,
    ),
    CapabilitySpec(
        name="xcodebuild_test",
        description="Run an Xcode scheme's tests on a destination and report each case.",
        input_schema=object_schema(
            {
                **_XCODE_PROPS,
                "only_testing": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Identifiers such as 'AppTests/LoginTests/testValid'",
                },
            },
            "project_path",
            "scheme",
        ),
        build=_xcodebuild_test_plan,
        normalize=test_output.normalize_tests,
        ok_exit_codes=XCODEBUILD_OUTCOMES,
        category="build",
        default_timeout=1800,
    ),
)
