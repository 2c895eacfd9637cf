"""Transport boundary and the generic serve loop."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol, Union

from DevProbe.server.dispatch import CallOutcome, CallRequest, DispatchEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveryRequest:
    request_id: str | int | None = None


@dataclass(frozen=True)
class DiscoveryResponse:
    request_id: str | int | None
    capabilities: list[dict[str, Any]]


Inbound = Union[CallRequest, DiscoveryRequest]
Outbound = Union[CallOutcome, DiscoveryResponse]


class TransportClosedError(ConnectionError):
    """Raised by ``send`` once the peer has gone away."""


class Transport(Protocol):
    async def receive(self) -> Inbound | None:
        """Next decoded message, or None once the channel is closed."""
        ...

    async def send(self, response: Outbound) -> None: ...


class QueueTransport:
    """In-memory duplex channel, for embedding the engine in-process."""

    def __init__(self) -> None:
        self._inbound: asyncio.Queue[Inbound | None] = asyncio.Queue()
        self._outbound: asyncio.Queue[Outbound] = asyncio.Queue()
        self._closed = False

    def submit(self, message: Inbound) -> None:
        self._inbound.put_nowait(message)

    def close(self) -> None:
        """Stop receiving and refuse further responses."""
        self._closed = True
        self._inbound.put_nowait(None)

    async def receive(self) -> Inbound | None:
        return await self._inbound.get()

    async def send(self, response: Outbound) -> None:
        if self._closed:
            raise TransportClosedError("transport is closed")
        await self._outbound.put(response)

    async def next_response(self, timeout: float | None = None) -> Outbound:
        return await asyncio.wait_for(self._outbound.get(), timeout)


async def _handle(engine: DispatchEngine, transport: Transport, message: Inbound) -> None:
    if isinstance(message, DiscoveryRequest):
        response: Outbound = DiscoveryResponse(message.request_id, engine.describe())
    else:
        response = await engine.dispatch(message)
    try:
        await transport.send(response)
    except TransportClosedError:
        logger.debug("Dropping response for %s: transport closed", message.request_id)


async def serve(engine: DispatchEngine, transport: Transport) -> None:
    """Handle messages concurrently; responses go out in completion order."""
    handlers: set[asyncio.Task] = set()
    while True:
        message = await transport.receive()
        if message is None:
            break
        task = asyncio.create_task(_handle(engine, transport, message))
        handlers.add(task)
        task.add_done_callback(handlers.discard)

    if handlers or engine.inflight:
        logger.info("Transport closed with %d call(s) in flight", len(handlers))
    await engine.drain()
    if handlers:
        await asyncio.gather(*handlers, return_exceptions=True)
