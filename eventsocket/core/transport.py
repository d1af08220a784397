import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import websockets
from loguru import logger
from websockets.asyncio.client import ClientConnection
from websockets.protocol import State

from .errors import TransportError

# Queue marker meaning "the connection is gone"; re-queued so every later
# receive sees it too.
_EOF = object()


class Transport(ABC):
    """An ordered, reliable, message-oriented channel to the server."""

    @abstractmethod
    async def send(self, frame: bytes) -> None:
        """Send one frame. Raises TransportError if the channel is unusable."""

    @abstractmethod
    async def receive(self) -> bytes | None:
        """Wait for the next frame.

        Returns None once the channel was closed locally; raises
        TransportError if it was lost any other way.
        """

    @abstractmethod
    def receive_nowait(self) -> bytes | None:
        """Return the next frame if one is already buffered, else None."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel and unblock any pending ``receive``."""

    @property
    @abstractmethod
    def is_connected(self) -> bool: ...


@dataclass(slots=True)
class WebSocketTransport(Transport):
    """Websocket channel to an Eventsocket server.

    A listener task drains the websocket into a queue so that frames can be
    taken either blocking or non-blocking.
    """

    url: str
    open_timeout: float = field(default=10.0, repr=False)
    close_timeout: float = field(default=2.0, repr=False)
    max_message_size: int = field(default=2**20, repr=False)
    websocket: ClientConnection | None = field(default=None, init=False)
    _receive_queue: asyncio.Queue[object] = field(
        default_factory=asyncio.Queue, init=False
    )
    _listener_task: asyncio.Task[None] | None = field(default=None, init=False)
    _close_error: TransportError | None = field(default=None, init=False)
    _closing: bool = field(default=False, init=False)

    async def connect(self) -> None:
        if self.is_connected:
            logger.debug("[{}] Connection already open.", self.url)
            return

        logger.info("[{}] Connecting...", self.url)
        try:
            self.websocket = await websockets.connect(
                self.url,
                user_agent_header=None,
                open_timeout=self.open_timeout,
                close_timeout=self.close_timeout,
                max_size=self.max_message_size,
            )
        except (OSError, TimeoutError, websockets.WebSocketException) as e:
            logger.error("[{}] Failed to connect: {}", self.url, e)
            raise TransportError(f"Failed to connect to {self.url}: {e}") from e

        self._closing = False
        self._close_error = None
        self._listener_task = asyncio.create_task(
            self._listen_for_messages(), name=f"eventsocket-listener[{self.url}]"
        )
        logger.info("[{}] Connected.", self.url)

    async def send(self, frame: bytes) -> None:
        if not self.is_connected:
            raise TransportError(f"Connection to {self.url} is not open.")
        assert self.websocket is not None
        try:
            # The server speaks JSON in text frames.
            await self.websocket.send(frame.decode("utf-8"))
        except websockets.ConnectionClosed as e:
            logger.error("[{}] Failed to send message: {}", self.url, e)
            raise TransportError(f"Connection to {self.url} closed: {e}") from e

    async def receive(self) -> bytes | None:
        return self._unwrap(await self._receive_queue.get())

    def receive_nowait(self) -> bytes | None:
        try:
            item = self._receive_queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return self._unwrap(item)

    async def close(self) -> None:
        self._closing = True

        if self.websocket is not None:
            logger.debug("[{}] Disconnecting...", self.url)
            try:
                await asyncio.wait_for(
                    self.websocket.close(), timeout=self.close_timeout
                )
            except TimeoutError:
                logger.warning("[{}] Websocket close timed out", self.url)
            finally:
                self.websocket = None

        if self._listener_task is not None and not self._listener_task.done():
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
        self._listener_task = None

        self._receive_queue.put_nowait(_EOF)
        logger.debug("[{}] Disconnected", self.url)

    @property
    def is_connected(self) -> bool:
        return self.websocket is not None and self.websocket.state is State.OPEN

    def _unwrap(self, item: object) -> bytes | None:
        if item is _EOF:
            self._receive_queue.put_nowait(_EOF)
            if self._closing:
                return None
            raise self._close_error or TransportError(
                f"Connection to {self.url} closed by server"
            )
        assert isinstance(item, bytes)
        return item

    async def _listen_for_messages(self) -> None:
        assert self.websocket is not None
        try:
            async for message in self.websocket:
                if isinstance(message, str):
                    message = message.encode("utf-8")
                await self._receive_queue.put(message)
        except websockets.ConnectionClosedOK:
            logger.info("[{}] Connection closed gracefully.", self.url)
        except websockets.ConnectionClosedError as e:
            logger.error("[{}] Connection closed with error: {}", self.url, e)
            self._close_error = TransportError(
                f"Connection to {self.url} lost: {e}"
            )
        finally:
            self._receive_queue.put_nowait(_EOF)
