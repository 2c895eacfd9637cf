"""Project inspection: package manifest, dependencies, symbols, schemes."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from DevProbe.capabilities.builtin._shared import PROJECT_PATH, object_schema, xcode_container
from DevProbe.capabilities.schema import CapabilitySpec, PlanContext
from DevProbe.errors import NormalizationError
from DevProbe.execution.plan import ExecutionPlan, RawResult
from DevProbe.parsers import spm, symbols, xcodebuild

_FILES_WRITTEN = re.compile(r"Files written to (.+?)\s*$", re.MULTILINE)
_SYMBOL_GRAPH_KEYS = ("symbols", "module", "metadata")

_ACCESS_LEVEL = {"type": "string", "enum": list(symbols.ACCESS_LEVELS), "default": "public"}


def detect_project(project_path: str) -> tuple[str, str]:
    """``(project_type, path)`` where the type is package, xcodeproj or xcworkspace.

    A directory holding ``Package.swift`` is a package; otherwise a workspace
    beside it wins over a project. Anything else is left to SwiftPM to reject.
    """
    path = Path(project_path.rstrip("/") or "/")
    if path.suffix in (".xcworkspace", ".xcodeproj"):
        return path.suffix[1:], str(path)
    if path.name == "Package.swift":
        return "package", str(path.parent)
    if path.is_dir() and not (path / "Package.swift").is_file():
        for suffix in (".xcworkspace", ".xcodeproj"):
            found = sorted(path.glob(f"*{suffix}"))
            if found:
                return suffix[1:], str(found[0])
    return "package", str(path)


def _summary_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    project_type, path = detect_project(args["project_path"])
    context = {"project_type": project_type, "project_path": path}
    if project_type == "package":
        return ctx.plan(
            ctx.settings.swift_path, "package", "dump-package", "--package-path", path,
            context=context,
        )
    flags, cwd = xcode_container(path)
    return ctx.plan(
        ctx.settings.xcodebuild_path, "-list", "-json", *flags, cwd=cwd, context=context
    )


def normalize_summary(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    project_type = raw.extra.get("project_type", "package")
    path = raw.extra.get("project_path", args["project_path"])
    if project_type == "package":
        summary = spm.normalize_manifest(raw, args)
    else:
        listing = xcodebuild.normalize_schemes(raw, args)
        summary = {
            "name": listing["name"] or Path(path).stem,
            "schemes": listing["schemes"],
            "targets": [{"name": name} for name in listing["targets"]],
            "configurations": listing["configurations"],
            "target_count": len(listing["targets"]),
            "truncated": listing["truncated"],
        }
    return {"project_type": project_type, "path": path, **summary}


def _dependencies_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    return ctx.plan(
        ctx.settings.swift_path, "package", "show-dependencies",
        "--format", "json", "--package-path", args["project_path"],
    )


def _symbol_graph_dir(project_path: str, stdout: str) -> Path:
    match = _FILES_WRITTEN.search(stdout)
    if match:
        return Path(match.group(1))
    candidates = sorted(Path(project_path, ".build").glob("*/symbolgraph"))
    if not candidates:
        raise NormalizationError(
            "swift package dump-symbol-graph did not report where it wrote the graphs"
        )
    return candidates[-1]


def read_symbol_graphs(directory: Path, target: str | None) -> list[dict[str, Any]]:
    """Load main-module graphs (extension graphs are named ``Module@Other``)."""
    bundle = []
    for path in sorted(directory.glob("*.symbols.json")):
        module = path.name.removesuffix(".symbols.json")
        if "@" in module:
            continue
        if target and module != target:
            continue
        with path.open(encoding="utf-8") as handle:
            graph = json.load(handle)
        bundle.append(
            {"module": module, "graph": {k: graph.get(k) for k in _SYMBOL_GRAPH_KEYS}}
        )
    return bundle


def _symbol_steps(args: dict[str, Any], ctx: PlanContext) -> list[Any]:
    project_path = args["project_path"]
    dump = ctx.plan(
        ctx.settings.swift_path, "package", "dump-symbol-graph",
        "--minimum-access-level", args.get("minimum_access_level", "public"),
        "--package-path", project_path,
    )

    def read_step(previous: RawResult) -> ExecutionPlan:
        directory = _symbol_graph_dir(project_path, previous.stdout_text)
        target = args.get("target")
        return ctx.call(
            lambda: read_symbol_graphs(directory, target),
            label=f"read symbol graphs in {directory}",
        )

    return [dump, read_step]


def _schemes_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    flags, cwd = xcode_container(args["project_path"])
    return ctx.plan(ctx.settings.xcodebuild_path, "-list", "-json", *flags, cwd=cwd)


def _destinations_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    flags, cwd = xcode_container(args["project_path"])
    return ctx.plan(
        ctx.settings.xcodebuild_path, "-showdestinations", "-scheme", args["scheme"],
        *flags, cwd=cwd,
    )


PROJECT_CAPABILITIES: tuple[CapabilitySpec, ...] = (
    CapabilitySpec(
        name="get_project_summary",
        description=(
            "Summarize a project. Swift packages report tools version, platforms, "
            "products, targets with their dependencies and external packages; Xcode "
            "projects and workspaces report targets, schemes and configurations."
        ),
        input_schema=object_schema({"project_path": PROJECT_PATH}, "project_path"),
        build=_summary_plan,
        normalize=normalize_summary,
        category="project",
        default_timeout=60,
    ),
    CapabilitySpec(
        name="get_project_dependencies",
        description="Resolved dependency tree of a Swift package, flattened with depth.",
        input_schema=object_schema({"project_path": PROJECT_PATH}, "project_path"),
        build=_dependencies_plan,
        normalize=spm.normalize_dependency_tree,
        category="project",
        default_timeout=300,
    ),
    CapabilitySpec(
        name="get_project_symbols",
        description=(
            "Extract symbols (types, functions, properties) with declarations and "
            "documentation from a Swift package's symbol graphs."
        ),
        input_schema=object_schema(
            {
                "project_path": PROJECT_PATH,
                "target": {"type": "string", "description": "Limit to one module"},
                "minimum_access_level": _ACCESS_LEVEL,
                "kinds": {"type": "array", "items": {"type": "string"}},
                "max_results": {"type": "integer", "minimum": 1, "maximum": 5000},
            },
            "project_path",
        ),
        build=_symbol_steps,
        normalize=symbols.normalize_symbols,
        category="project",
        default_timeout=600,
    ),
    CapabilitySpec(
        name="search_symbols",
        description=(
            "Search a Swift package's symbols by name with exact, prefix, camelCase, "
            "substring and fuzzy matching, best matches first."
        ),
        input_schema=object_schema(
            {
                "project_path": PROJECT_PATH,
                "query": {"type": "string", "minLength": 1},
                "target": {"type": "string"},
                "minimum_access_level": _ACCESS_LEVEL,
                "kinds": {"type": "array", "items": {"type": "string"}},
                "max_results": {"type": "integer", "minimum": 1, "maximum": 500, "default": 50},
            },
            "project_path",
            "query",
        ),
        build=_symbol_steps,
        normalize=symbols.normalize_search,
        category="project",
        default_timeout=600,
    ),
    CapabilitySpec(
        name="get_symbol_documentation",
        description=(
            "Declaration, documentation comment, parameters and location of one symbol, "
            "looked up by qualified name (e.g. MyModule.MyType.myMethod) or bare name."
        ),
        input_schema=object_schema(
            {
                "project_path": PROJECT_PATH,
                "symbol_name": {"type": "string", "minLength": 1},
                "target": {"type": "string", "description": "Limit to one module"},
            },
            "project_path",
            "symbol_name",
        ),
        build=lambda args, ctx: _symbol_steps({"minimum_access_level": "private", **args}, ctx),
        normalize=symbols.normalize_symbol_documentation,
        category="project",
        default_timeout=600,
    ),
    CapabilitySpec(
        name="list_schemes",
        description="List schemes, targets and build configurations of an Xcode project or workspace.",
        input_schema=object_schema({"project_path": PROJECT_PATH}, "project_path"),
        build=_schemes_plan,
        normalize=xcodebuild.normalize_schemes,
        category="project",
        default_timeout=60,
    ),
    CapabilitySpec(
        name="list_destinations",
        description="List build destinations available for a scheme, optionally filtered by platform.",
        input_schema=object_schema(
            {
                "project_path": PROJECT_PATH,
                "scheme": {"type": "string", "minLength": 1},
                "platform": {"type": "string", "description": "Substring filter, e.g. 'iOS Simulator'"},
            },
            "project_path",
            "scheme",
        ),
        build=_destinations_plan,
        normalize=xcodebuild.normalize_destinations,
        category="project",
        default_timeout=60,
    ),
)
