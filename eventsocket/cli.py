import asyncio
import pprint as pp
import secrets
from dataclasses import dataclass
from typing import Any

from jsonargparse import CLI
from loguru import logger

from eventsocket.client.client import EventsocketClient
from eventsocket.core.config import ClientSettings
from eventsocket.core.logging import configure_logging
from eventsocket.core.model import Message


@dataclass(slots=True)
class EventsocketCLI:
    """Eventsocket command line client.

    Options left unset fall back to ``EVENTSOCKET_*`` environment variables,
    then to a ``.env`` file, then to the ClientSettings defaults.

    Args:
        server: host:port of the Eventsocket server.
        log_level: Log level for console output.
        debug_scopes: Modules to log at DEBUG, e.g. core.router.
    """

    server: str | None = None
    log_level: str | None = None
    debug_scopes: list[str] | None = None

    def _settings(self) -> ClientSettings:
        overrides: dict[str, Any] = {}
        if self.server is not None:
            overrides["server"] = self.server
        if self.log_level is not None:
            overrides["log_level"] = self.log_level
        if self.debug_scopes is not None:
            overrides["log_debug_scopes"] = self.debug_scopes
        return ClientSettings(**overrides)

    def _client(self) -> EventsocketClient:
        settings = self._settings()
        configure_logging(settings)
        return EventsocketClient(settings=settings)

    def listen(
        self,
        topics: list[str] | None = None,
        request_client_id: str | None = None,
    ) -> None:
        """Print broadcasts and topic events, answer requests, optionally send one.

        Args:
            topics: Topics to subscribe to.
            request_client_id: If set, send one request to this client.
        """
        asyncio.run(self._listen(topics or ["foo"], request_client_id))

    def emit(self, topic: str, payload: dict[str, Any] | None = None) -> None:
        """Emit one event on a topic.

        Args:
            topic: Topic to emit on.
            payload: JSON object to send.
        """
        asyncio.run(self._emit(topic, payload or {}))

    def request(
        self,
        client_id: str,
        payload: dict[str, Any] | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Send a request to another client and print the reply.

        Args:
            client_id: Id of the client to ask.
            payload: JSON object to send.
            timeout: Seconds to wait for the reply.
        """
        asyncio.run(self._request(client_id, payload or {}, timeout))

    async def _listen(self, topics: list[str], request_client_id: str | None) -> None:
        async with self._client() as client:
            logger.info("ClientId: {}", client.get_id())

            def on_broadcast(message: Message) -> None:
                logger.info("BROADCAST: {}", pp.pformat(message.payload))

            def on_event(message: Message) -> None:
                logger.info("{}: {}", message.event, pp.pformat(message.payload))

            async def on_request(message: Message) -> None:
                logger.info(
                    "REQUEST: requestId:{} replyingTo:{}",
                    message.request_id,
                    message.reply_client_id,
                )
                assert message.request_id is not None
                await client.reply(
                    message.request_id,
                    message.reply_client_id,
                    {"I_SEE_YOU": secrets.token_hex(4)},
                )

            def on_reply(message: Message) -> None:
                if message.error is not None:
                    logger.error(
                        "REPLY: requestId:{} error:{}",
                        message.request_id,
                        message.error.type,
                    )
                    return
                logger.info(
                    "REPLY: requestId:{} payload:{}",
                    message.request_id,
                    pp.pformat(message.payload),
                )

            client.register_broadcast_handler(on_broadcast)
            await client.subscribe(topics, on_event)
            client.register_request_handler(on_request)

            if request_client_id:
                await client.request(
                    request_client_id, {"PEEK_ABOO": "hello"}, on_reply
                )

            await client.run_forever()

    async def _emit(self, topic: str, payload: dict[str, Any]) -> None:
        async with self._client() as client:
            await client.emit(topic, payload)
            logger.info("Emitted {} as {}", topic, client.get_id())

    async def _request(
        self, client_id: str, payload: dict[str, Any], timeout: float
    ) -> None:
        async with self._client() as client:
            receiver = asyncio.create_task(client.run_forever())
            try:
                reply = await client.call(client_id, payload, timeout=timeout)
                logger.info("Reply: {}", pp.pformat(reply.payload))
            finally:
                receiver.cancel()
                try:
                    await receiver
                except asyncio.CancelledError:
                    pass


@logger.catch
def main() -> None:
    CLI(EventsocketCLI, as_dict=False)  # type: ignore[no-untyped-call]


if __name__ == "__main__":
    main()
