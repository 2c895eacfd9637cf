"""UI automation: OCR-based screen state, text lookup and input events."""

from __future__ import annotations

import logging
import time
from typing import Any

from DevProbe.capabilities.builtin._shared import DEVICE, object_schema
from DevProbe.capabilities.builtin.simulator import screenshot_steps
from DevProbe.capabilities.schema import CapabilitySpec, PlanContext
from DevProbe.capabilities.validation import require_fields
from DevProbe.errors import ExecutionStartFailedError, NormalizationError
from DevProbe.execution.plan import ExecutionPlan, RawResult
from DevProbe.parsers import ocr
from DevProbe.parsers.common import expect_mapping, load_json

logger = logging.getLogger(__name__)

TITLE_BAR_HEIGHT = 28
SWIPE_DURATION = 0.3
WINDOW_QUERY_TIMEOUT = 15

BUTTON_SHORTCUTS: dict[str, tuple[str, ...]] = {
    "home": ("command", "shift", "h"),
    "lock": ("command", "l"),
    "volumeUp": ("command", "up"),
    "volumeDown": ("command", "down"),
    "ringer": ("command", "shift", "s"),
    "screenshot": ("command", "s"),
    "keyboard": ("command", "k"),
}

_POINT_ACTIONS = ("tap", "double_tap", "long_press")

_SCALE = {
    "type": "number",
    "exclusiveMinimum": 0,
    "maximum": 4,
    "default": 1,
    "description": "Screenshot pixels per device point (3 for most iPhones)",
}


def _ocr_steps(args: dict[str, Any], ctx: PlanContext) -> list[Any]:
    steps = screenshot_steps(args, ctx, with_size=False)

    def recognize(previous: RawResult) -> ExecutionPlan:
        path = previous.extra["screenshot_path"]
        return ctx.plan(
            ctx.settings.tesseract_path, path, "stdout", "tsv",
            context={"screenshot_path": path},
            label=f"ocr {path}",
        )

    return [*steps, recognize]


def _applescript_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def window_bounds_script(device_name: str | None) -> str:
    selector = "window 1"
    if device_name:
        selector = f"first window whose name contains {_applescript_string(device_name)}"
    return "\n".join(
        [
            'tell application "System Events" to tell process "Simulator"',
            "    set frontmost to true",
            f"    set targetWindow to {selector}",
            "    set {wx, wy} to position of targetWindow",
            "    set {ww, wh} to size of targetWindow",
            '    return (wx as text) & "," & (wy as text) & "," & (ww as text) & "," & (wh as text)',
            "end tell",
        ]
    )


def parse_window_bounds(text: str) -> tuple[float, float, float, float]:
    parts = [p.strip() for p in text.strip().split(",")]
    if len(parts) != 4:
        raise NormalizationError(f"unexpected Simulator window bounds: {text.strip()[:80]!r}")
    try:
        x, y, width, height = (float(p) for p in parts)
    except ValueError as exc:
        raise NormalizationError(f"non-numeric Simulator window bounds: {text.strip()[:80]!r}") from exc
    return x, y, width, height


def to_screen(x: float, y: float, origin: tuple[float, float], zoom: float) -> tuple[int, int]:
    """Device point -> screen point inside the Simulator window content area."""
    return (
        round(origin[0] + x * zoom),
        round(origin[1] + TITLE_BAR_HEIGHT + y * zoom),
    )


def _load_pyautogui():
    try:
        import pyautogui
    except ImportError:
        raise ExecutionStartFailedError("pyautogui is not installed") from None
    except Exception as exc:  # no display server: the import itself fails
        raise ExecutionStartFailedError(f"pyautogui cannot reach a display: {exc}") from exc
    pyautogui.PAUSE = 0.05
    return pyautogui


def perform_interaction(args: dict[str, Any], origin: tuple[float, float]) -> dict[str, Any]:
    """Post the input events for one interaction. Runs on a worker thread."""
    gui = _load_pyautogui()
    action = args["action"]
    zoom = float(args.get("window_scale", 1.0))
    detail: dict[str, Any] = {"action": action}
    logger.debug("Posting %s with window origin %s", action, origin)

    if action in _POINT_ACTIONS:
        sx, sy = to_screen(args["x"], args["y"], origin, zoom)
        if action == "tap":
            gui.click(sx, sy)
        elif action == "double_tap":
            gui.doubleClick(sx, sy)
        else:
            gui.moveTo(sx, sy)
            gui.mouseDown()
            time.sleep(float(args.get("duration", 1.0)))
            gui.mouseUp()
        detail.update(x=args["x"], y=args["y"], screen_x=sx, screen_y=sy)
    elif action == "swipe":
        sx, sy = to_screen(args["x"], args["y"], origin, zoom)
        ex, ey = to_screen(args["to_x"], args["to_y"], origin, zoom)
        gui.moveTo(sx, sy)
        gui.dragTo(ex, ey, duration=float(args.get("duration", SWIPE_DURATION)), button="left")
        detail.update(start=[args["x"], args["y"]], end=[args["to_x"], args["to_y"]])
    elif action == "type":
        gui.write(args["text"], interval=0.02)
        detail["characters"] = len(args["text"])
    elif action == "button":
        gui.hotkey(*BUTTON_SHORTCUTS[args["button"]])
        detail["button"] = args["button"]
    return detail


def _check_interaction(args: dict[str, Any]) -> None:
    action = args["action"]
    if action in _POINT_ACTIONS:
        require_fields(args, "x", "y", when=f"action is {action}")
    elif action == "swipe":
        require_fields(args, "x", "y", "to_x", "to_y", when="action is swipe")
    elif action == "type":
        require_fields(args, "text", when="action is type")
    elif action == "button":
        require_fields(args, "button", when="action is button")


def _interact_steps(args: dict[str, Any], ctx: PlanContext) -> list[Any]:
    _check_interaction(args)
    locate = ctx.plan(
        ctx.settings.osascript_path, "-e", window_bounds_script(args.get("device_name")),
        timeout=WINDOW_QUERY_TIMEOUT,
        label="locate Simulator window",
    )

    def interact(previous: RawResult) -> ExecutionPlan:
        x, y, _, _ = parse_window_bounds(previous.stdout_text)
        return ctx.call(
            lambda: perform_interaction(args, (x, y)),
            label=f"simulator {args['action']}",
            context={"window": [x, y]},
        )

    return [locate, interact]


def _normalize_interaction(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    detail = expect_mapping(load_json(raw, "interaction"), "interaction")
    return {
        "success": True,
        "device_name": args.get("device_name"),
        "window_origin": raw.extra.get("window"),
        **detail,
    }


def _screen_props(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"device": DEVICE, "scale": _SCALE, **(extra or {})}


UI_CAPABILITIES: tuple[CapabilitySpec, ...] = (
    CapabilitySpec(
        name="simulator_ui_state",
        description=(
            "Screenshot a simulator and OCR it: returns the screenshot path and every text "
            "line with bounds and tap coordinates. Use before simulator_interact."
        ),
        input_schema=object_schema(_screen_props()),
        build=_ocr_steps,
        normalize=ocr.normalize_ui_state,
        category="ui",
        default_timeout=60,
    ),
    CapabilitySpec(
        name="simulator_find_text",
        description=(
            "Find text on the simulator screen (partial match) and return its tap "
            "coordinates, or the visible texts when it is not found."
        ),
        input_schema=object_schema(
            _screen_props(
                {
                    "text": {"type": "string", "minLength": 1},
                    "case_sensitive": {"type": "boolean", "default": False},
                }
            ),
            "text",
        ),
        build=_ocr_steps,
        normalize=ocr.normalize_find_text,
        category="ui",
        default_timeout=60,
    ),
    CapabilitySpec(
        name="simulator_interact",
        description=(
            "Interact with the Simulator window: tap, double_tap, long_press or swipe at "
            "device coordinates, type text, or press a hardware button."
        ),
        input_schema=object_schema(
            {
                "action": {
                    "type": "string",
                    "enum": ["tap", "double_tap", "long_press", "swipe", "type", "button"],
                },
                "device_name": {"type": "string"},
                "x": {"type": "number", "minimum": 0},
                "y": {"type": "number", "minimum": 0},
                "to_x": {"type": "number", "minimum": 0},
                "to_y": {"type": "number", "minimum": 0},
                "duration": {"type": "number", "exclusiveMinimum": 0, "maximum": 10},
                "text": {"type": "string", "minLength": 1},
                "button": {"type": "string", "enum": list(BUTTON_SHORTCUTS)},
                "window_scale": {"type": "number", "exclusiveMinimum": 0, "maximum": 4},
            },
            "action",
        ),
        build=_interact_steps,
        normalize=_normalize_interaction,
        category="ui",
        default_timeout=30,
    ),
)
