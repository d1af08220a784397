"""Eventsocket client: pub/sub and request/reply over one websocket.

Usage:

    async with EventsocketClient("127.0.0.1:8080") as client:
        await client.subscribe("foo", on_foo)
        await client.run_forever()

Inbound frames are processed one at a time by whoever drives ``receive_once``
(or ``run_forever``); every handler for a frame finishes before the next frame
is read, so a slow handler delays everything behind it, replies included.
"""

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from ..core.config import ClientSettings
from ..core.correlator import RequestCorrelator
from ..core.errors import (
    EventsocketError,
    HandlerError,
    RemoteError,
    RequestCancelledError,
    RequestTimeoutError,
    TransportError,
)
from ..core.identity import ClientIdentity, IdentityBootstrap, websocket_url
from ..core.model import (
    ERROR_REQUEST_CANCELLED,
    ERROR_REQUEST_TIMEOUT,
    Message,
    MessageError,
)
from ..core.registry import HandlerRegistry
from ..core.router import MessageRouter
from ..core.serialization import FrameCodec
from ..core.transport import Transport, WebSocketTransport
from ..core.type_aliases import (
    ClientId,
    DurationSeconds,
    MessageHandler,
    ReplyCallback,
    RequestId,
    ServerAddress,
    TopicName,
)


@dataclass(slots=True)
class EventsocketClient:
    """A single connection to an Eventsocket server.

    ``identity`` and ``transport`` may be supplied up front (the transport
    already connected), in which case ``connect`` skips the bootstrap call and
    the websocket handshake respectively.
    """

    server: ServerAddress | None = None
    settings: ClientSettings = field(default_factory=ClientSettings)
    identity: ClientIdentity | None = None
    transport: Transport | None = None
    codec: FrameCodec = field(default_factory=FrameCodec)

    # Fields assigned in __post_init__
    registry: HandlerRegistry = field(init=False)
    correlator: RequestCorrelator = field(init=False)
    router: MessageRouter = field(init=False)
    _connected: bool = field(default=False, init=False)
    _closed: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if self.server is None:
            self.server = self.settings.server
        if not self.server:
            raise ValueError("Server URL cannot be empty")

        self.registry = HandlerRegistry()
        self.correlator = RequestCorrelator(
            registry=self.registry,
            default_timeout=self.settings.request_timeout,
            retired_capacity=self.settings.retired_id_capacity,
        )
        self.router = MessageRouter(
            registry=self.registry,
            correlator=self.correlator,
            strict_replies=self.settings.strict_replies,
        )

    async def connect(self) -> None:
        """Obtain a client id, open the websocket and start the reply sweeper."""
        if self._connected:
            return
        if self._closed:
            raise EventsocketError("Client has been shut down")

        assert self.server is not None
        if self.identity is None:
            self.identity = await IdentityBootstrap(
                self.server, timeout=self.settings.bootstrap_timeout
            ).fetch()

        if self.transport is None:
            transport = WebSocketTransport(
                url=websocket_url(self.server, self.identity.id),
                open_timeout=self.settings.open_timeout,
                close_timeout=self.settings.close_timeout,
                max_message_size=self.settings.max_message_size,
            )
            await transport.connect()
            self.transport = transport

        self.correlator.start()
        self._connected = True
        logger.info(
            "Connected to Eventsocket server {} as {}", self.server, self.get_id()
        )

    async def shutdown(self) -> None:
        """Cancel pending requests and close the connection.

        Every pending reply callback receives an ``ErrorRequestCancelled``
        reply, and a ``receive_once`` blocked on the transport returns None.
        """
        if self._closed:
            return
        self._closed = True
        self._connected = False

        await self.correlator.stop()
        cancelled = await self.correlator.cancel_all()
        if self.transport is not None:
            await self.transport.close()
        logger.info(
            "Client shut down ({} pending requests cancelled)", len(cancelled)
        )

    async def __aenter__(self) -> "EventsocketClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    def get_id(self) -> ClientId:
        if self.identity is None:
            raise EventsocketError("Client id is not known until connect()")
        return self.identity.id

    @property
    def is_connected(self) -> bool:
        return self._connected

    def register_broadcast_handler(self, handler: MessageHandler) -> None:
        self.registry.register_broadcast(handler)

    def register_request_handler(self, handler: MessageHandler) -> None:
        """Register a handler for requests addressed to this client.

        Every registered handler sees every request. The protocol does not
        stop more than one of them replying; handlers must agree among
        themselves who answers.
        """
        self.registry.register_request_handler(handler)

    async def subscribe(
        self, topics: TopicName | Iterable[TopicName], handler: MessageHandler
    ) -> tuple[TopicName, ...]:
        """Subscribe ``handler`` to one or more topics.

        The handler is recorded locally before the server is told, and the
        server sends no acknowledgment.
        """
        normalized = self.registry.subscribe(topics, handler)
        await self._send(Message.subscribe(normalized))
        return normalized

    async def unsubscribe(
        self,
        topics: TopicName | Iterable[TopicName],
        handler: MessageHandler | None = None,
    ) -> tuple[TopicName, ...]:
        """Remove ``handler`` (or every handler) from topics.

        The server is only told about topics left with no local handlers;
        those are returned.
        """
        emptied = self.registry.unsubscribe(topics, handler)
        if emptied:
            await self._send(Message.unsubscribe(emptied))
        return emptied

    async def emit(
        self, topic: TopicName, payload: Mapping[str, Any] | None = None
    ) -> None:
        await self._send(Message.standard(topic, payload))

    async def request(
        self,
        target_client_id: ClientId,
        payload: Mapping[str, Any] | None,
        on_reply: ReplyCallback,
        timeout: DurationSeconds | None = None,
    ) -> RequestId:
        """Send a request and return its correlation id immediately.

        ``on_reply`` is called exactly once: by the receive loop with the
        matching reply, or by the deadline sweeper (or shutdown) with a
        locally made error reply whose ``error.type`` is
        ``ErrorRequestTimeout`` or ``ErrorRequestCancelled``. Server errors
        (unknown or disconnected target) also arrive as error replies; the
        callback must check ``message.error``.
        """
        pending = self.correlator.register(target_client_id, on_reply, timeout)
        try:
            await self._send(
                Message.request(target_client_id, pending.request_id, payload)
            )
        except Exception:
            self.correlator.withdraw(pending.request_id)
            raise
        return pending.request_id

    async def call(
        self,
        target_client_id: ClientId,
        payload: Mapping[str, Any] | None = None,
        timeout: DurationSeconds | None = None,
    ) -> Message:
        """Send a request and wait for its reply.

        Needs the receive loop running in another task. Do not await this
        from inside a handler: the reply cannot be read until the handler
        returns, so the call would only end by timing out.

        Raises:
            RequestTimeoutError: no reply before the deadline.
            RequestCancelledError: the client shut down first.
            RemoteError: the server or peer answered with an error.
        """
        future: asyncio.Future[Message] = asyncio.get_running_loop().create_future()

        def on_reply(message: Message) -> None:
            if not future.done():
                future.set_result(message)

        request_id = await self.request(target_client_id, payload, on_reply, timeout)
        reply = await future

        if reply.error is not None:
            raise _reply_exception(request_id, reply.error)
        return reply

    async def reply(
        self,
        request_id: RequestId,
        reply_client_id: ClientId | None,
        payload: Mapping[str, Any] | None = None,
        error: MessageError | None = None,
    ) -> None:
        """Answer a request. Pending-reply bookkeeping belongs to the requester."""
        await self._send(Message.reply(request_id, reply_client_id, payload, error))

    async def receive_once(self) -> Message | None:
        """Read one frame and dispatch it.

        Returns the dispatched message, or None for an empty frame or once the
        client has been shut down.

        Raises:
            TransportError: the connection was lost or the frame is undecodable.
            ProtocolError: the frame is invalid in context.
            HandlerError: an application handler raised.
        """
        frame = await self._require_transport().receive()
        return await self._ingest(frame)

    async def poll(self) -> Message | None:
        """Dispatch one frame if one is already buffered; never waits."""
        return await self._ingest(self._require_transport().receive_nowait())

    async def run_forever(self) -> None:
        """Pump frames until shutdown.

        Handler failures are logged and the loop goes on; transport and
        protocol errors end it.
        """
        transport = self._require_transport()
        while not self._closed:
            try:
                message = await self.receive_once()
            except HandlerError as e:
                logger.error("{}: {!r}", e, e.__cause__)
                continue
            except EventsocketError as e:
                logger.error("Receive loop stopped: {}", e)
                raise

            if message is None and not transport.is_connected:
                break

    async def _ingest(self, frame: bytes | None) -> Message | None:
        if not frame:
            return None
        message = self.codec.decode(frame)
        logger.debug(
            "Received {} event={} request_id={}",
            message.kind.name,
            message.event,
            message.request_id,
        )
        await self.router.dispatch(message)
        return message

    async def _send(self, message: Message) -> None:
        frame = self.codec.encode(message)
        logger.debug(
            "Sending {} event={} request_id={}",
            message.kind.name,
            message.event,
            message.request_id,
        )
        await self._require_transport().send(frame)

    def _require_transport(self) -> Transport:
        if self.transport is None:
            raise TransportError("Client is not connected")
        return self.transport


def _reply_exception(request_id: RequestId, error: MessageError) -> RemoteError:
    if error.type == ERROR_REQUEST_TIMEOUT:
        return RequestTimeoutError(request_id=request_id, error=error)
    if error.type == ERROR_REQUEST_CANCELLED:
        return RequestCancelledError(request_id=request_id, error=error)
    return RemoteError(request_id=request_id, error=error)
