"""Simulator control through simctl."""

from __future__ import annotations

from typing import Any

from DevProbe.capabilities.builtin._shared import DEVICE, object_schema
from DevProbe.capabilities.schema import SUCCESS_ONLY, CapabilitySpec, PlanContext
from DevProbe.execution.plan import ExecutionPlan, RawResult
from DevProbe.parsers import simctl

STATE_CHANGE_OUTCOMES = SUCCESS_ONLY | {simctl.ALREADY_IN_STATE}
_BUNDLE_ID = {"type": "string", "minLength": 1, "pattern": r"^[A-Za-z0-9.\-]+$"}


def simctl_plan(ctx: PlanContext, *args: Any, **kwargs: Any) -> ExecutionPlan:
    return ctx.xcrun("simctl", *args, **kwargs)


def image_size(path: str) -> dict[str, Any]:
    """Pixel size of a screenshot."""
    from PIL import Image

    with Image.open(path) as image:
        return {"width": image.width, "height": image.height, "format": image.format}


def screenshot_steps(args: dict[str, Any], ctx: PlanContext, *, with_size: bool) -> list[Any]:
    path = args.get("output_path") or str(ctx.scratch_path("screenshot", ".png"))
    device = args.get("device", "booted")
    capture = simctl_plan(
        ctx, "io", device, "screenshot", "--type=png", path,
        context={"screenshot_path": path},
    )
    if not with_size:
        return [capture]

    def measure(previous: RawResult) -> ExecutionPlan:
        return ctx.call(
            lambda: image_size(path),
            label="read screenshot size",
            context={"screenshot_path": path},
        )

    return [capture, measure]


def _list_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    return simctl_plan(ctx, "list", "devices", "--json")


def _boot_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    return simctl_plan(ctx, "boot", args["device"])


def _shutdown_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    return simctl_plan(ctx, "shutdown", args.get("device", "booted"))


def _open_url_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    return simctl_plan(ctx, "openurl", args.get("device", "booted"), args["url"])


def _launch_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    argv = ["launch"]
    if args.get("terminate_running"):
        argv.append("--terminate-running-process")
    argv += [args.get("device", "booted"), args["bundle_id"], *(args.get("arguments") or [])]
    return simctl_plan(ctx, *argv)


def _terminate_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    return simctl_plan(ctx, "terminate", args.get("device", "booted"), args["bundle_id"])


def _list_apps_steps(args: dict[str, Any], ctx: PlanContext) -> list[Any]:
    listing = simctl_plan(ctx, "listapps", args.get("device", "booted"))

    def convert(previous: RawResult) -> ExecutionPlan:
        # simctl prints an OpenStep plist; plutil turns it into JSON.
        return ctx.plan(
            "plutil", "-convert", "json", "-o", "-", "-", stdin=previous.stdout
        )

    return [listing, convert]


SIMULATOR_CAPABILITIES: tuple[CapabilitySpec, ...] = (
    CapabilitySpec(
        name="list_simulators",
        description="List simulator devices grouped by runtime with booted/available counts.",
        input_schema=object_schema(
            {"state": {"type": "string", "enum": ["Booted", "Shutdown"]}}
        ),
        build=_list_plan,
        normalize=simctl.normalize_devices,
        category="simulator",
        default_timeout=60,
    ),
    CapabilitySpec(
        name="simulator_boot",
        description="Boot a simulator device. Booting an already booted device is not an error.",
        input_schema=object_schema({"device": DEVICE}, "device"),
        build=_boot_plan,
        normalize=simctl.normalize_state_change,
        ok_exit_codes=STATE_CHANGE_OUTCOMES,
        category="simulator",
        default_timeout=180,
    ),
    CapabilitySpec(
        name="simulator_shutdown",
        description="Shut down a simulator device (default: the booted one).",
        input_schema=object_schema({"device": DEVICE}),
        build=_shutdown_plan,
        normalize=simctl.normalize_state_change,
        ok_exit_codes=STATE_CHANGE_OUTCOMES,
        category="simulator",
        default_timeout=120,
    ),
    CapabilitySpec(
        name="simulator_screenshot",
        description="Capture a PNG screenshot of a simulator and report its path and pixel size.",
        input_schema=object_schema(
            {"device": DEVICE, "output_path": {"type": "string", "pattern": r"\.png$"}}
        ),
        build=lambda args, ctx: screenshot_steps(args, ctx, with_size=True),
        normalize=simctl.normalize_screenshot,
        category="simulator",
        default_timeout=30,
    ),
    CapabilitySpec(
        name="simulator_launch_app",
        description="Launch an installed app by bundle identifier and report its pid.",
        input_schema=object_schema(
            {
                "device": DEVICE,
                "bundle_id": _BUNDLE_ID,
                "arguments": {"type": "array", "items": {"type": "string"}},
                "terminate_running": {"type": "boolean", "default": False},
            },
            "bundle_id",
        ),
        build=_launch_plan,
        normalize=simctl.normalize_launch,
        category="simulator",
        default_timeout=60,
    ),
    CapabilitySpec(
        name="simulator_terminate_app",
        description="Terminate a running app by bundle identifier.",
        input_schema=object_schema({"device": DEVICE, "bundle_id": _BUNDLE_ID}, "bundle_id"),
        build=_terminate_plan,
        normalize=simctl.normalize_action,
        category="simulator",
        default_timeout=30,
    ),
    CapabilitySpec(
        name="simulator_open_url",
        description="Open a URL (web link or custom scheme) on a simulator.",
        input_schema=object_schema(
            {"device": DEVICE, "url": {"type": "string", "minLength": 1}}, "url"
        ),
        build=_open_url_plan,
        normalize=simctl.normalize_action,
        category="simulator",
        default_timeout=30,
    ),
    CapabilitySpec(
        name="simulator_list_apps",
        description="List apps installed on a simulator (user apps unless include_system is set).",
        input_schema=object_schema(
            {"device": DEVICE, "include_system": {"type": "boolean", "default": False}}
        ),
        build=_list_apps_steps,
        normalize=simctl.normalize_apps,
        category="simulator",
        default_timeout=60,
    ),
)
