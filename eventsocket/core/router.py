"""
Inbound message routing.

The router classifies one decoded Message by kind and runs the matching
handlers to completion, in registration order, before returning. Callers
must not dispatch the next frame until the previous ``dispatch`` has
returned; that is what gives handlers arrival-order delivery.

Request handlers are all invoked for every inbound request. Nothing stops
several of them from replying to the same request; answering once is the
application's responsibility.
"""

from dataclasses import dataclass

from loguru import logger

from .correlator import RequestCorrelator
from .errors import HandlerError, ProtocolError
from .model import Message, MessageKind
from .registry import HandlerRegistry, invoke_handler
from .type_aliases import MessageHandler


@dataclass(slots=True)
class MessageRouter:
    """Dispatches inbound messages to the handlers held by a registry."""

    registry: HandlerRegistry
    correlator: RequestCorrelator
    strict_replies: bool = True

    async def dispatch(self, message: Message) -> None:
        """Route one message.

        Raises:
            ProtocolError: unknown kind, or a reply with no pending request
                (unless the request timed out or ``strict_replies`` is off).
            HandlerError: a handler raised; the remaining handlers for this
                message are skipped.
        """
        match message.kind:
            case MessageKind.BROADCAST:
                await self._run(message, self.registry.broadcast_handlers())
            case MessageKind.STANDARD:
                await self._dispatch_standard(message)
            case MessageKind.REQUEST:
                await self._run(message, self.registry.request_handlers())
            case MessageKind.REPLY:
                await self._dispatch_reply(message)
            case _:
                # SUBSCRIBE and UNSUBSCRIBE only ever travel client to server.
                raise ProtocolError(f"unknown message kind: {message.kind!r}")

    async def _dispatch_standard(self, message: Message) -> None:
        handlers = (
            self.registry.standard_handlers(message.event)
            if message.event is not None
            else ()
        )
        if not handlers:
            logger.debug("No handlers for event {!r}, dropping", message.event)
            return
        await self._run(message, handlers)

    async def _dispatch_reply(self, message: Message) -> None:
        request_id = message.request_id
        pending = (
            self.registry.consume_pending_reply(request_id)
            if request_id is not None
            else None
        )

        if pending is None:
            if request_id is not None and self.correlator.is_retired(request_id):
                logger.warning(
                    "Dropping late reply for request {} (already timed out or cancelled)",
                    request_id,
                )
                return
            if not self.strict_replies:
                logger.warning("Dropping reply for unknown request {}", request_id)
                return
            raise ProtocolError(f"no pending request for this id: {request_id!r}")

        # The entry is gone before the callback runs, so a failing callback
        # or a duplicate reply can never fire it twice.
        await self._run(message, (pending.callback,))

    async def _run(
        self, message: Message, handlers: tuple[MessageHandler, ...]
    ) -> None:
        for handler in handlers:
            try:
                await invoke_handler(handler, message)
            except Exception as e:
                raise HandlerError(message.kind, handler) from e
