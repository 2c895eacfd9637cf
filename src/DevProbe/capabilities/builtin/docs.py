"""Documentation lookups: Apple framework pages and dependency repositories."""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from DevProbe.capabilities.builtin._shared import PROJECT_PATH, object_schema
from DevProbe.capabilities.schema import CapabilitySpec, PlanContext
from DevProbe.capabilities.validation import require_fields
from DevProbe.errors import InvalidArgumentsError
from DevProbe.execution.plan import ExecutionPlan, RawResult
from DevProbe.parsers import docs, spm

logger = logging.getLogger(__name__)

DOC_FILES = ("DOCUMENTATION.md", "USAGE.md", "GUIDE.md")
_RAW = {"Accept": "application/vnd.github.v3.raw"}
_GITHUB_REPO = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s#?]+?)(?:\.git)?/?$")


def _client(timeout: float, headers: dict[str, str] | None = None) -> httpx.Client:
    return httpx.Client(timeout=timeout, headers=headers, follow_redirects=True)


def fetch_text(url: str, timeout: float) -> str:
    with _client(timeout) as client:
        response = client.get(url)
        response.raise_for_status()
    return response.text


def fetch_github_docs(
    api_url: str, owner: str, repo: str, *, token: str = "", timeout: float = 30.0
) -> dict[str, Any]:
    """Repository metadata plus README and guide files; missing files are skipped."""
    headers = {"Accept": "application/vnd.github.v3+json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    base = f"{api_url.rstrip('/')}/repos/{owner}/{repo}"
    with _client(timeout, headers) as client:
        response = client.get(base)
        response.raise_for_status()
        result: dict[str, Any] = {"repository": response.json(), "readme": None, "files": {}}

        readme = client.get(f"{base}/readme", headers=_RAW)
        if readme.status_code == 200:
            result["readme"] = readme.text
        for name in DOC_FILES:
            found = client.get(f"{base}/contents/{name}", headers=_RAW)
            if found.status_code == 200:
                result["files"][name] = found.text
    logger.debug("Fetched GitHub docs for %s/%s", owner, repo)
    return result


def parse_github_url(url: str) -> tuple[str, str]:
    """``(owner, repo)`` from https, ssh or ``.git`` forms of a GitHub URL."""
    match = _GITHUB_REPO.search(url.strip())
    if not match:
        raise InvalidArgumentsError(f"Not a GitHub repository URL: {url}")
    return match.group(1), match.group(2)


def apple_doc_location(args: dict[str, Any], base: str) -> tuple[str, str, str]:
    """``(json_url, page_url, framework)`` for a framework/symbol pair or a page URL."""
    if args.get("url"):
        try:
            url = httpx.URL(args["url"].strip())
        except httpx.InvalidURL as exc:
            raise InvalidArgumentsError(f"Invalid URL {args['url']!r}: {exc}") from exc
        prefix = "/documentation/"
        if not url.host.endswith("developer.apple.com") or not url.path.startswith(prefix):
            raise InvalidArgumentsError(
                f"Not a developer.apple.com documentation URL: {args['url']}"
            )
        path = url.path[len(prefix):].strip("/")
    else:
        require_fields(args, "framework", when="url is not given")
        path = args["framework"].strip().lower()
        if args.get("symbol"):
            path += "/" + args["symbol"].strip().lower().replace(".", "/")
    if not path:
        raise InvalidArgumentsError("Documentation URL names no page")
    framework = path.split("/", 1)[0]
    return (
        f"{base.rstrip('/')}/{path}.json",
        f"{docs.APPLE_SITE}/documentation/{path}",
        framework,
    )


def _http_timeout(ctx: PlanContext) -> float:
    return min(ctx.settings.http_timeout_seconds, ctx.timeout)


def _apple_plan(args: dict[str, Any], ctx: PlanContext) -> ExecutionPlan:
    json_url, page_url, framework = apple_doc_location(args, ctx.settings.apple_docs_url)
    timeout = _http_timeout(ctx)
    return ctx.call(
        lambda: fetch_text(json_url, timeout),
        label=f"GET {json_url}",
        context={"framework": framework, "page_url": page_url},
    )


def _github_plan(
    url: str, ctx: PlanContext, dependency: str | None = None
) -> ExecutionPlan:
    owner, repo = parse_github_url(url)
    settings = ctx.settings
    timeout = _http_timeout(ctx)
    return ctx.call(
        lambda: fetch_github_docs(
            settings.github_api_url, owner, repo, token=settings.github_token, timeout=timeout
        ),
        label=f"GitHub docs for {owner}/{repo}",
        context={"dependency": dependency, "repository_url": url},
    )


def find_dependency(name: str, dependencies: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Exact identity or name first, then a substring match either way."""
    wanted = name.strip().lower()
    for dep in dependencies:
        if wanted in (dep["identity"].lower(), str(dep["name"]).lower()):
            return dep
    for dep in dependencies:
        known = dep["identity"].lower()
        if wanted in known or known in wanted:
            return dep
    return None


def _dependency_docs_steps(args: dict[str, Any], ctx: PlanContext) -> Any:
    if args.get("github_url"):
        return _github_plan(args["github_url"], ctx)
    require_fields(args, "project_path", "dependency_name", when="github_url is not given")
    listing = ctx.plan(
        ctx.settings.swift_path, "package", "show-dependencies",
        "--format", "json", "--package-path", args["project_path"],
    )

    def fetch(previous: RawResult) -> ExecutionPlan:
        tree = spm.normalize_dependency_tree(previous, {})
        name = args["dependency_name"]
        dep = find_dependency(name, tree["dependencies"])
        if dep is None:
            known = sorted({d["identity"] for d in tree["dependencies"]})
            raise InvalidArgumentsError(
                f"{name} is not a dependency of {tree['package'] or args['project_path']}",
                available=known,
            )
        if not dep.get("url"):
            raise InvalidArgumentsError(f"{dep['identity']} has no repository URL")
        return _github_plan(dep["url"], ctx, dependency=dep["identity"])

    return [listing, fetch]


DOCS_CAPABILITIES: tuple[CapabilitySpec, ...] = (
    CapabilitySpec(
        name="lookup_apple_api",
        description=(
            "Official Apple documentation for a framework or symbol (e.g. SwiftUI / View): "
            "declaration, abstract, discussion, parameters, availability and related symbols."
        ),
        input_schema=object_schema(
            {
                "framework": {"type": "string", "minLength": 1},
                "symbol": {"type": "string", "minLength": 1},
                "url": {"type": "string", "description": "developer.apple.com documentation URL"},
            }
        ),
        build=_apple_plan,
        normalize=docs.normalize_apple_doc,
        category="docs",
        default_timeout=45,
    ),
    CapabilitySpec(
        name="get_dependency_docs",
        description=(
            "README, description and guide files of a dependency's GitHub repository, "
            "by URL or by dependency name within a Swift package."
        ),
        input_schema=object_schema(
            {
                "project_path": PROJECT_PATH,
                "dependency_name": {"type": "string", "minLength": 1},
                "github_url": {"type": "string", "minLength": 1},
            }
        ),
        build=_dependency_docs_steps,
        normalize=docs.normalize_github_docs,
        category="docs",
        default_timeout=300,
    ),
)
