"""
A small in-process Eventsocket server for live-socket integration tests.

It implements just enough of the server side of the protocol to drive real
clients: identity provisioning over HTTP, one websocket per client, topic
fan-out, request forwarding with server-side error replies, and broadcasts.
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field
from typing import Any

import orjson
import pytest_asyncio
from aiohttp import WSMsgType, web
from loguru import logger

from eventsocket.client.client import EventsocketClient
from eventsocket.core.config import ClientSettings
from eventsocket.core.model import (
    ERROR_REQUEST_CLIENT_NO_EXIST,
    ERROR_REQUEST_CLIENT_NOT_CONNECTED,
    MessageKind,
)


@dataclass(slots=True)
class FakeEventsocketServer:
    """aiohttp based stand-in for an Eventsocket server."""

    host: str = "127.0.0.1"
    port: int = 0

    app: web.Application = field(init=False)
    runner: web.AppRunner | None = field(default=None, init=False)
    site: web.TCPSite | None = field(default=None, init=False)
    known_clients: set[str] = field(default_factory=set, init=False)
    sockets: dict[str, web.WebSocketResponse] = field(default_factory=dict, init=False)
    subscriptions: dict[str, set[str]] = field(default_factory=dict, init=False)
    received: list[dict[str, Any]] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        self.app = web.Application()
        self.app.add_routes(
            [
                web.post("/v1/clients", self._create_client),
                web.get("/v1/clients/{client_id}/ws", self._client_socket),
            ]
        )

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def start(self) -> None:
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        if self.port == 0:
            self.port = self.site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
        logger.debug("Fake Eventsocket server listening on {}", self.address)

    async def stop(self) -> None:
        for ws in list(self.sockets.values()):
            await ws.close()
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None

    async def broadcast(self, payload: dict[str, Any]) -> None:
        frame = {"MessageType": int(MessageKind.BROADCAST), "Payload": payload}
        for ws in list(self.sockets.values()):
            await ws.send_bytes(orjson.dumps(frame))

    def register_offline_client(self) -> str:
        """Provision a client id that never opens its websocket."""
        client_id = str(uuid.uuid4())
        self.known_clients.add(client_id)
        return client_id

    async def wait_for_subscribers(self, topic: str, count: int) -> None:
        while len(self.subscriptions.get(topic, ())) < count:
            await asyncio.sleep(0.01)

    async def _create_client(self, request: web.Request) -> web.Response:
        await request.json()
        client_id = str(uuid.uuid4())
        self.known_clients.add(client_id)
        return web.json_response({"Id": client_id})

    async def _client_socket(self, request: web.Request) -> web.StreamResponse:
        client_id = request.match_info["client_id"]
        if client_id not in self.known_clients:
            raise web.HTTPNotFound()

        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.sockets[client_id] = ws
        try:
            async for msg in ws:
                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    await self._route(client_id, orjson.loads(msg.data))
        finally:
            self.sockets.pop(client_id, None)
            for subscribers in self.subscriptions.values():
                subscribers.discard(client_id)
        return ws

    async def _route(self, sender: str, frame: dict[str, Any]) -> None:
        self.received.append(frame)
        match frame.get("MessageType"):
            case MessageKind.SUBSCRIBE:
                for topic in frame["Payload"]["Events"]:
                    self.subscriptions.setdefault(topic, set()).add(sender)
            case MessageKind.UNSUBSCRIBE:
                for topic in frame["Payload"]["Events"]:
                    self.subscriptions.get(topic, set()).discard(sender)
            case MessageKind.STANDARD:
                for subscriber in list(self.subscriptions.get(frame["Event"], ())):
                    await self._send(subscriber, frame)
            case MessageKind.REQUEST:
                await self._forward_request(sender, frame)
            case MessageKind.REPLY:
                await self._send(frame["ReplyClientId"], frame)
            case other:
                logger.warning("Fake server ignoring frame kind {}", other)

    async def _forward_request(self, sender: str, frame: dict[str, Any]) -> None:
        target = frame["RequestClientId"]
        error_type = None
        if target not in self.known_clients:
            error_type = ERROR_REQUEST_CLIENT_NO_EXIST
        elif target not in self.sockets:
            error_type = ERROR_REQUEST_CLIENT_NOT_CONNECTED

        if error_type is not None:
            await self._send(
                sender,
                {
                    "MessageType": int(MessageKind.REPLY),
                    "RequestId": frame["RequestId"],
                    "ReplyClientId": sender,
                    "Payload": None,
                    "Error": {"Type": error_type},
                },
            )
            return

        await self._send(target, {**frame, "ReplyClientId": sender})

    async def _send(self, client_id: str, frame: dict[str, Any]) -> None:
        ws = self.sockets.get(client_id)
        if ws is not None:
            await ws.send_str(orjson.dumps(frame).decode("utf-8"))


@pytest_asyncio.fixture
async def eventsocket_server() -> AsyncGenerator[FakeEventsocketServer, None]:
    server = FakeEventsocketServer()
    await server.start()
    try:
        yield server
    finally:
        await server.stop()


@pytest_asyncio.fixture
async def live_client_factory(
    eventsocket_server: FakeEventsocketServer,
) -> AsyncGenerator[Callable[..., Any], None]:
    """Connected clients talking to the fake server over real sockets.

    Each client gets its receive loop running in a background task.
    """
    clients: list[EventsocketClient] = []
    loops: list[asyncio.Task[None]] = []

    async def _create(**settings: Any) -> EventsocketClient:
        client = EventsocketClient(
            settings=ClientSettings(server=eventsocket_server.address, **settings)
        )
        await client.connect()
        clients.append(client)
        loops.append(asyncio.create_task(client.run_forever()))
        return client

    yield _create

    for client in clients:
        await client.shutdown()
    for task in loops:
        try:
            await asyncio.wait_for(task, timeout=2.0)
        except (asyncio.CancelledError, TimeoutError):
            pass
        except Exception as e:
            logger.warning(f"Receive loop ended with error: {e}")
