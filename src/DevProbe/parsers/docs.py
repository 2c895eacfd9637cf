"""Apple DocC pages and GitHub repository documentation."""

from __future__ import annotations

from typing import Any

from DevProbe.errors import NormalizationError
from DevProbe.execution.plan import RawResult
from DevProbe.parsers.common import expect_mapping, load_json

APPLE_SITE = "https://developer.apple.com"
README_LIMIT = 15000
DOC_FILE_LIMIT = 10000


def _inline_text(items: Any) -> str:
    parts = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        if item.get("text"):
            parts.append(item["text"])
        elif item.get("code"):
            parts.append(f"`{item['code']}`")
    return "".join(parts)


def content_text(blocks: Any) -> str | None:
    """Flatten DocC content blocks (paragraphs, nested content, lists) to text."""
    paragraphs = []
    for block in blocks or []:
        if not isinstance(block, dict):
            continue
        if block.get("inlineContent"):
            paragraphs.append(_inline_text(block["inlineContent"]))
        nested = content_text(block.get("content"))
        if nested:
            paragraphs.append(nested)
        for item in block.get("items") or []:
            text = content_text(item.get("content")) if isinstance(item, dict) else None
            if text:
                paragraphs.append(f"- {text}")
    paragraphs = [p for p in paragraphs if p.strip()]
    return "\n\n".join(paragraphs) if paragraphs else None


def _reference_url(path: str | None) -> str | None:
    if not path:
        return None
    return path if path.startswith("http") else APPLE_SITE + path


def normalize_apple_doc(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """A developer.apple.com documentation page. Truncated JSON is rejected."""
    page = expect_mapping(load_json(raw, "Apple documentation"), "Apple documentation")
    metadata = page.get("metadata")
    if not isinstance(metadata, dict) or "title" not in metadata:
        raise NormalizationError("Apple documentation page has no title")

    declaration = discussion = None
    parameters = []
    for section in page.get("primaryContentSections") or []:
        kind = section.get("kind")
        if kind == "declarations" and section.get("declarations"):
            tokens = section["declarations"][0].get("tokens") or []
            declaration = "".join(t.get("text", "") for t in tokens)
        elif kind == "content":
            discussion = content_text(section.get("content"))
        elif kind == "parameters":
            parameters = [
                {"name": p.get("name", ""), "discussion": content_text(p.get("content"))}
                for p in section.get("parameters") or []
            ]

    references = page.get("references") or {}
    related = []
    for topic in page.get("topicSections") or []:
        for identifier in topic.get("identifiers") or []:
            ref = references.get(identifier)
            if not isinstance(ref, dict) or not ref.get("title"):
                continue
            related.append(
                {
                    "topic": topic.get("title", ""),
                    "title": ref["title"],
                    "kind": ref.get("kind"),
                    "url": _reference_url(ref.get("url")),
                }
            )

    return {
        "title": metadata["title"],
        "framework": raw.extra.get("framework", ""),
        "kind": metadata.get("symbolKind") or metadata.get("role"),
        "url": raw.extra.get("page_url"),
        "abstract": _inline_text(page.get("abstract")) or None,
        "declaration": declaration,
        "discussion": discussion,
        "parameters": parameters,
        "availability": [
            {
                "platform": p.get("name"),
                "introduced": p.get("introducedAt"),
                "deprecated": p.get("deprecatedAt"),
                "beta": bool(p.get("beta")),
            }
            for p in metadata.get("platforms") or []
            if isinstance(p, dict)
        ],
        "related": related,
    }


def _clip(text: str | None, limit: int) -> tuple[str | None, bool]:
    if text is None or len(text) <= limit:
        return text, False
    return text[:limit], True


def normalize_github_docs(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Repository metadata, README and top-level guides fetched from GitHub."""
    payload = expect_mapping(load_json(raw, "GitHub documentation"), "GitHub documentation")
    repo = payload.get("repository")
    if not isinstance(repo, dict) or not repo.get("name"):
        raise NormalizationError("GitHub response has no repository name")

    readme, readme_clipped = _clip(payload.get("readme"), README_LIMIT)
    files = []
    for name, content in (payload.get("files") or {}).items():
        content, clipped = _clip(content, DOC_FILE_LIMIT)
        files.append({"name": name, "content": content, "truncated": clipped})

    license_info = repo.get("license")
    return {
        "name": repo["name"],
        "full_name": repo.get("full_name"),
        "url": repo.get("html_url"),
        "description": repo.get("description"),
        "topics": list(repo.get("topics") or []),
        "license": license_info.get("name") if isinstance(license_info, dict) else None,
        "stars": repo.get("stargazers_count"),
        "default_branch": repo.get("default_branch"),
        "dependency": raw.extra.get("dependency"),
        "readme": readme,
        "readme_truncated": readme_clipped,
        "documentation_files": files,
    }
