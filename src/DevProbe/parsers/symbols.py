"""Symbol graph extraction and symbol search ranking."""

from __future__ import annotations

import difflib
from typing import Any

from DevProbe.errors import NormalizationError
from DevProbe.execution.plan import RawResult
from DevProbe.parsers.common import load_json

ACCESS_LEVELS = ("private", "fileprivate", "internal", "package", "public", "open")

_KINDS = {
    "class": "class",
    "struct": "struct",
    "enum": "enum",
    "enum.case": "case",
    "protocol": "protocol",
    "associatedtype": "associatedtype",
    "typealias": "typealias",
    "extension": "extension",
    "func": "function",
    "func.op": "operator",
    "method": "method",
    "type.method": "method",
    "init": "initializer",
    "deinit": "deinitializer",
    "property": "property",
    "type.property": "property",
    "var": "variable",
    "subscript": "subscript",
    "type.subscript": "subscript",
    "macro": "macro",
}


def symbol_kind(identifier: str) -> str:
    """"swift.type.method" -> "method"; unknown identifiers pass through."""
    _, _, tail = identifier.partition(".")
    return _KINDS.get(tail or identifier, tail or identifier)


def access_rank(level: str) -> int:
    try:
        return ACCESS_LEVELS.index(level)
    except ValueError:
        return ACCESS_LEVELS.index("internal")


def _spelling(fragments: Any) -> str | None:
    if not isinstance(fragments, list):
        return None
    return "".join(f.get("spelling", "") for f in fragments if isinstance(f, dict))


def extract_symbols(graph: dict[str, Any], module: str) -> list[dict[str, Any]]:
    symbols = []
    for entry in graph.get("symbols") or []:
        try:
            precise = entry["identifier"]["precise"]
            kind_id = entry["kind"]["identifier"]
            title = entry["names"]["title"]
        except (KeyError, TypeError):
            continue
        path = entry.get("pathComponents") or [title]
        symbol: dict[str, Any] = {
            "name": title,
            "kind": symbol_kind(kind_id),
            "module": module,
            "qualified_name": ".".join([module, *path]),
            "access_level": entry.get("accessLevel", "internal"),
            "usr": precise,
        }
        declaration = _spelling(entry.get("declarationFragments"))
        if declaration:
            symbol["declaration"] = declaration
        doc = entry.get("docComment")
        if isinstance(doc, dict) and doc.get("lines"):
            symbol["documentation"] = "\n".join(
                line.get("text", "") for line in doc["lines"] if isinstance(line, dict)
            )
        location = entry.get("location")
        if isinstance(location, dict) and "uri" in location:
            uri = location["uri"]
            symbol["file"] = uri[7:] if uri.startswith("file://") else uri
            symbol["line"] = (location.get("position") or {}).get("line")
        signature = entry.get("functionSignature")
        if isinstance(signature, dict):
            params = signature.get("parameters") or []
            symbol["parameters"] = [
                {"name": p.get("name", ""), "type": _spelling(p.get("declarationFragments")) or "Unknown"}
                for p in params
                if isinstance(p, dict)
            ]
            returns = _spelling(signature.get("returns"))
            if returns:
                symbol["return_type"] = returns
        symbols.append(symbol)
    return symbols


def _load_graphs(raw: RawResult) -> list[dict[str, Any]]:
    """Graph bundle produced by the reading step: ``[{"module", "graph"}]``."""
    bundle = load_json(raw, "symbol graph")
    if not isinstance(bundle, list):
        raise NormalizationError("symbol graph bundle is not a list")
    for item in bundle:
        if not isinstance(item, dict) or not isinstance(item.get("graph"), dict):
            raise NormalizationError("symbol graph bundle entry has no graph object")
    return bundle


def collect_symbols(raw: RawResult, args: dict[str, Any]) -> list[dict[str, Any]]:
    floor = access_rank(args.get("minimum_access_level", "public"))
    kinds = {k.lower() for k in args.get("kinds") or []}
    collected = []
    seen: set[str] = set()
    for item in _load_graphs(raw):
        for symbol in extract_symbols(item["graph"], item.get("module", "")):
            if symbol["usr"] in seen:
                continue
            if access_rank(symbol["access_level"]) < floor:
                continue
            if kinds and symbol["kind"] not in kinds:
                continue
            seen.add(symbol["usr"])
            collected.append(symbol)
    return collected


def normalize_symbols(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Symbols across the project's modules. Truncated bundles are rejected."""
    symbols = collect_symbols(raw, args)
    modules = sorted({s["module"] for s in symbols})
    limit = args.get("max_results")
    return {
        "modules": modules,
        "count": len(symbols),
        "symbols": symbols[:limit] if limit else symbols,
    }


def _camel_initials(text: str) -> str:
    return "".join(c for i, c in enumerate(text) if i == 0 or c.isupper()).lower()


def score_match(query: str, target: str) -> tuple[float, str] | None:
    """Relevance of ``target`` for ``query`` (already lower-cased), best first."""
    lowered = target.lower()
    if lowered == query:
        return 1.0, "exact"
    if lowered.startswith(query):
        return 0.9 + 0.09 * len(query) / len(lowered), "prefix"
    if _camel_initials(target).startswith(query):
        return 0.85, "camelCase"
    if query in lowered:
        return 0.6 + 0.2 * len(query) / len(lowered), "contains"
    words = "".join(c if c.isalnum() else " " for c in lowered).split()
    if any(word.startswith(query) for word in words):
        return 0.7, "wordBoundary"
    similarity = difflib.SequenceMatcher(None, query, lowered).ratio()
    if similarity > 0.6:
        return similarity * 0.5, "fuzzy"
    it = iter(lowered)
    if all(char in it for char in query):
        return 0.4 + 0.1 * len(query) / len(lowered), "subsequence"
    return None


def rank_symbols(query: str, symbols: list[dict[str, Any]]) -> list[dict[str, Any]]:
    query = query.strip().lower()
    ranked = []
    for symbol in symbols:
        scored = score_match(query, symbol["name"])
        if scored is not None:
            score, how = scored[0] * 1.1, scored[1]
        else:
            scored = score_match(query, symbol["qualified_name"])
            if scored is not None:
                score, how = scored
            elif query in (symbol.get("documentation") or "").lower():
                score, how = 0.3, "documentation"
            else:
                continue
        ranked.append({**symbol, "score": round(score, 4), "match_type": how})
    ranked.sort(key=lambda s: (-s["score"], len(s["name"]), s["qualified_name"]))
    return ranked


def normalize_search(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    ranked = rank_symbols(args["query"], collect_symbols(raw, args))
    limit = args.get("max_results", 50)
    return {"query": args["query"], "total_matches": len(ranked), "results": ranked[:limit]}


def find_symbol(name: str, symbols: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Qualified name first, then a bare or module-prefixed name."""
    for symbol in symbols:
        if symbol["qualified_name"] == name:
            return symbol
    for symbol in symbols:
        if name in (symbol["name"], f"{symbol['module']}.{symbol['name']}"):
            return symbol
    return None


def normalize_symbol_documentation(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """One symbol's documentation. A miss lists the closest names instead."""
    name = args["symbol_name"].strip()
    symbols = collect_symbols(raw, {"minimum_access_level": "private", **args})
    symbol = find_symbol(name, symbols)
    if symbol is None:
        query = name.rsplit(".", 1)[-1] or name
        return {
            "found": False,
            "symbol_name": name,
            "suggestions": [s["qualified_name"] for s in rank_symbols(query, symbols)[:5]],
        }
    return {"found": True, "symbol_name": name, "symbol": symbol}
