"""Model Context Protocol binding over stdio."""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server

from DevProbe import __version__
from DevProbe.server.dispatch import CallOutcome, CallRequest, DispatchEngine

logger = logging.getLogger(__name__)

SERVER_NAME = "devprobe"


def _request_id(server: Server) -> str | int | None:
    try:
        return server.request_context.request_id
    except LookupError:
        return None


def outcome_to_result(outcome: CallOutcome) -> types.CallToolResult:
    if outcome.error is not None:
        envelope = outcome.error.to_dict()
        text = f"[{outcome.error.kind.value}] {outcome.error.message}"
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=text)],
            structuredContent={"error": envelope},
            isError=True,
        )
    result = outcome.result or {}
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=json.dumps(result, indent=2, default=str))],
        structuredContent=result,
        isError=False,
    )


def build_server(engine: DispatchEngine) -> Server:
    server: Server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name=descriptor["name"],
                description=descriptor["description"],
                inputSchema=descriptor["inputSchema"],
            )
            for descriptor in engine.describe()
        ]

    # Arguments are validated by the engine so failures carry the
    # InvalidArguments envelope rather than a protocol error.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict[str, Any] | None) -> types.CallToolResult:
        outcome = await engine.dispatch(
            CallRequest(capability_name=name, arguments=arguments, request_id=_request_id(server))
        )
        return outcome_to_result(outcome)

    return server


async def run_stdio(engine: DispatchEngine) -> None:
    server = build_server(engine)
    logger.info(
        "DevProbe %s serving %d capabilities (%s profile) on stdio",
        __version__,
        len(engine.describe()),
        engine.profile,
    )
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        # Calls cut off by a closed transport still run to their own timeout.
        await engine.drain()
