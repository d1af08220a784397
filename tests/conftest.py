"""Pytest configuration and fixtures for Eventsocket client testing.

Unit tests run the client against an in-memory transport so that inbound
frames can be fed and outbound frames inspected without a server. All async
fixtures register what they create with an AsyncTestContext that shuts
everything down afterwards, so no test leaves a sweeper or listener running.
"""

import asyncio
from collections.abc import AsyncGenerator, Callable
from typing import Any

import orjson
import pytest
import pytest_asyncio
from loguru import logger

from eventsocket.client.client import EventsocketClient
from eventsocket.core.config import ClientSettings
from eventsocket.core.correlator import RequestCorrelator
from eventsocket.core.errors import TransportError
from eventsocket.core.identity import ClientIdentity
from eventsocket.core.model import Message
from eventsocket.core.registry import HandlerRegistry
from eventsocket.core.router import MessageRouter
from eventsocket.core.serialization import FrameCodec
from eventsocket.core.transport import Transport


class InMemoryTransport(Transport):
    """Transport double: inbound frames come from ``feed``, sends are recorded."""

    def __init__(self) -> None:
        self.inbound: asyncio.Queue[bytes | None] = asyncio.Queue()
        self.sent: list[bytes] = []
        self.closed = False
        self.fail_sends = False
        self.codec = FrameCodec()

    def feed(self, frame: Message | dict[str, Any] | bytes | str) -> None:
        if isinstance(frame, Message):
            frame = self.codec.encode(frame)
        elif isinstance(frame, dict):
            frame = orjson.dumps(frame)
        elif isinstance(frame, str):
            frame = frame.encode("utf-8")
        self.inbound.put_nowait(frame)

    def sent_messages(self) -> list[Message]:
        return [self.codec.decode(frame) for frame in self.sent]

    async def send(self, frame: bytes) -> None:
        if self.closed or self.fail_sends:
            raise TransportError("in-memory transport refused the frame")
        self.sent.append(frame)

    async def receive(self) -> bytes | None:
        return self._unwrap(await self.inbound.get())

    def receive_nowait(self) -> bytes | None:
        try:
            item = self.inbound.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return self._unwrap(item)

    async def close(self) -> None:
        self.closed = True
        self.inbound.put_nowait(None)

    @property
    def is_connected(self) -> bool:
        return not self.closed

    def _unwrap(self, item: bytes | None) -> bytes | None:
        if item is None:
            # Keep the end marker queued for later receivers.
            self.inbound.put_nowait(None)
        return item


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class AsyncTestContext:
    """Context manager for async test operations with automatic cleanup."""

    def __init__(self) -> None:
        self.clients: list[EventsocketClient] = []
        self.tasks: list[asyncio.Task[Any]] = []

    async def __aenter__(self) -> "AsyncTestContext":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Ensure all resources are cleaned up properly."""
        for task in self.tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning(f"Task failed during cleanup: {e}")

        for client in self.clients:
            try:
                await client.shutdown()
            except Exception as e:
                logger.warning(f"Error shutting down client: {e}")

        self.clients.clear()
        self.tasks.clear()


@pytest_asyncio.fixture
async def test_context() -> AsyncGenerator[AsyncTestContext, None]:
    """Provides a clean async test context with automatic resource cleanup."""
    async with AsyncTestContext() as ctx:
        yield ctx


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def correlator(registry: HandlerRegistry, clock: FakeClock) -> RequestCorrelator:
    return RequestCorrelator(registry=registry, default_timeout=5.0, clock=clock)


@pytest.fixture
def router(
    registry: HandlerRegistry, correlator: RequestCorrelator
) -> MessageRouter:
    return MessageRouter(registry=registry, correlator=correlator)


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest_asyncio.fixture
async def client_factory(
    test_context: AsyncTestContext,
) -> Callable[..., Any]:
    """Factory for connected clients backed by in-memory transports.

    Example Usage:
        async def test_something(client_factory):
            client = await client_factory(client_id="client-b")
            client.transport.feed(Message.broadcast({"value": 1}))
    """

    async def _create_client(
        client_id: str = "client-a",
        transport: InMemoryTransport | None = None,
        **settings: Any,
    ) -> EventsocketClient:
        client = EventsocketClient(
            server="127.0.0.1:8080",
            settings=ClientSettings(**settings),
            identity=ClientIdentity(id=client_id),
            transport=transport or InMemoryTransport(),
        )
        test_context.clients.append(client)
        await client.connect()
        return client

    return _create_client


@pytest_asyncio.fixture
async def client(
    client_factory: Callable[..., Any], transport: InMemoryTransport
) -> EventsocketClient:
    """A connected client whose transport is the ``transport`` fixture."""
    return await client_factory(transport=transport)
