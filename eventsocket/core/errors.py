"""Exception taxonomy for the Eventsocket client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .model import MessageError, MessageKind


class EventsocketError(Exception):
    """Base class for every error raised by this package."""


class TransportError(EventsocketError):
    """The underlying channel failed (closed connection, failed send)."""


class FrameDecodeError(TransportError):
    """Inbound bytes could not be decoded into a Message."""


class ProtocolError(EventsocketError):
    """A well-formed frame that is invalid in context.

    Raised for unknown message kinds and for replies that do not match a
    pending request.
    """


class InvariantViolation(EventsocketError):
    """Internal bookkeeping was asked to do something that must never happen."""


class BootstrapError(EventsocketError):
    """The identity bootstrap call did not yield a client id."""


class HandlerError(EventsocketError):
    """An application handler raised while a frame was being dispatched."""

    def __init__(self, kind: MessageKind, handler: object) -> None:
        self.kind = kind
        self.handler = handler
        super().__init__(f"{kind.name} handler {handler!r} failed")


@dataclass(eq=False)
class RemoteError(EventsocketError):
    """A request completed with an error reply.

    Only raised by the awaitable request API; callback-style requests get the
    error reply delivered as ordinary data.
    """

    request_id: str
    error: MessageError

    def __str__(self) -> str:
        return f"request {self.request_id} failed: {self.error.type}"


@dataclass(eq=False)
class RequestTimeoutError(RemoteError):
    """No reply arrived before the request deadline."""


@dataclass(eq=False)
class RequestCancelledError(RemoteError):
    """The client shut down while the request was in flight."""
