"""Swift Package Manager manifest and dependency-graph output."""

from __future__ import annotations

from typing import Any

from DevProbe.errors import NormalizationError
from DevProbe.execution.plan import RawResult
from DevProbe.parsers.common import expect_mapping, load_json


def _dependency_ref(dep: dict[str, Any]) -> dict[str, Any] | None:
    """Target dependency entry; the manifest encodes these as one-key objects."""
    for kind in ("target", "product", "byName"):
        if kind not in dep:
            continue
        value = dep[kind]
        if isinstance(value, list):
            name = value[0] if value else None
            package = value[1] if kind == "product" and len(value) > 1 else None
        elif isinstance(value, dict):
            name = value.get("name")
            package = value.get("package")
        else:
            return None
        if not name:
            return None
        ref = {"name": name, "kind": kind}
        if package:
            ref["package"] = package
        return ref
    return None


def _requirement(req: Any) -> str | None:
    if not isinstance(req, dict):
        return None
    if req.get("range"):
        bounds = req["range"][0]
        return f"{bounds.get('lowerBound', '')}..<{bounds.get('upperBound', '')}"
    for key in ("exact", "branch", "revision"):
        if req.get(key):
            value = req[key][0] if isinstance(req[key], list) else req[key]
            return value if key == "exact" else f"{key}: {value}"
    return None


def _external_dependency(dep: dict[str, Any]) -> dict[str, Any] | None:
    for kind in ("sourceControl", "fileSystem", "registry"):
        entries = dep.get(kind)
        if not entries:
            continue
        first = entries[0]
        location = first.get("location") or {}
        url = None
        if isinstance(location, dict):
            remote = location.get("remote")
            if remote:
                url = remote[0].get("urlString") if isinstance(remote[0], dict) else remote[0]
            url = url or location.get("local")
        return {
            "name": first.get("identity", "unknown"),
            "kind": kind,
            "url": url or first.get("path"),
            "requirement": _requirement(first.get("requirement")),
        }
    if "url" in dep:
        url = dep["url"]
        return {
            "name": dep.get("name") or url.rstrip("/").rsplit("/", 1)[-1].removesuffix(".git"),
            "kind": "sourceControl",
            "url": url,
            "requirement": None,
        }
    return None


def normalize_manifest(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Package summary from ``swift package dump-package``. Truncated JSON is rejected."""
    manifest = expect_mapping(load_json(raw, "swift package dump-package"), "dump-package")
    if "name" not in manifest or not isinstance(manifest.get("targets"), list):
        raise NormalizationError("dump-package output is missing the package name or targets")

    tools_version = manifest.get("toolsVersion")
    if isinstance(tools_version, dict):
        tools_version = tools_version.get("_version")

    targets = []
    for target in manifest["targets"]:
        deps = [_dependency_ref(d) for d in target.get("dependencies") or [] if isinstance(d, dict)]
        targets.append(
            {
                "name": target.get("name", ""),
                "type": target.get("type", "regular"),
                "path": target.get("path"),
                "dependencies": [d for d in deps if d is not None],
            }
        )

    products = []
    for product in manifest.get("products") or []:
        product_type = product.get("type")
        if isinstance(product_type, dict):
            product_type = next(iter(product_type), "unknown")
        products.append(
            {
                "name": product.get("name", ""),
                "type": product_type,
                "targets": list(product.get("targets") or []),
            }
        )

    dependencies = [
        d for d in (_external_dependency(dep) for dep in manifest.get("dependencies") or []) if d
    ]
    return {
        "name": manifest["name"],
        "tools_version": tools_version,
        "platforms": [
            {"name": p.get("platformName"), "version": p.get("version")}
            for p in manifest.get("platforms") or []
        ],
        "products": products,
        "targets": targets,
        "dependencies": dependencies,
        "target_count": len(targets),
    }


def _flatten(node: dict[str, Any], depth: int, out: list[dict[str, Any]], seen: set[str]) -> None:
    for child in node.get("dependencies") or []:
        if not isinstance(child, dict):
            raise NormalizationError("show-dependencies entry is not an object")
        identity = child.get("identity") or child.get("name", "")
        out.append(
            {
                "name": child.get("name", identity),
                "identity": identity,
                "url": child.get("url"),
                "version": child.get("version"),
                "depth": depth,
                "duplicate": identity in seen,
            }
        )
        if identity in seen:
            continue
        seen.add(identity)
        _flatten(child, depth + 1, out, seen)


def normalize_dependency_tree(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Flattened dependency graph. Truncated JSON is rejected."""
    root = expect_mapping(load_json(raw, "swift package show-dependencies"), "show-dependencies")
    flat: list[dict[str, Any]] = []
    _flatten(root, 1, flat, set())
    direct = [d for d in flat if d["depth"] == 1]
    return {
        "package": root.get("name", ""),
        "direct_count": len(direct),
        "total_count": len({d["identity"] for d in flat}),
        "dependencies": flat,
    }
