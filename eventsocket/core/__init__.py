"""
Eventsocket Core Module

Message model, frame codec, transport, and the routing/correlation layer
shared by the client facade.
"""

from .config import ClientSettings
from .correlator import RequestCorrelator, new_request_id
from .errors import (
    BootstrapError,
    EventsocketError,
    FrameDecodeError,
    HandlerError,
    InvariantViolation,
    ProtocolError,
    RemoteError,
    RequestCancelledError,
    RequestTimeoutError,
    TransportError,
)
from .identity import ClientIdentity, IdentityBootstrap, websocket_url
from .logging import configure_logging
from .model import (
    ERROR_REQUEST_CANCELLED,
    ERROR_REQUEST_CLIENT_NO_EXIST,
    ERROR_REQUEST_CLIENT_NOT_CONNECTED,
    ERROR_REQUEST_TIMEOUT,
    Message,
    MessageError,
    MessageKind,
)
from .registry import HandlerRegistry, PendingReply
from .router import MessageRouter
from .serialization import FrameCodec, JsonSerializer, Serializer
from .transport import Transport, WebSocketTransport

__all__ = [
    # Config
    "ClientSettings",
    "configure_logging",
    # Model
    "Message",
    "MessageError",
    "MessageKind",
    "ERROR_REQUEST_CLIENT_NO_EXIST",
    "ERROR_REQUEST_CLIENT_NOT_CONNECTED",
    "ERROR_REQUEST_TIMEOUT",
    "ERROR_REQUEST_CANCELLED",
    # Errors
    "EventsocketError",
    "TransportError",
    "FrameDecodeError",
    "ProtocolError",
    "InvariantViolation",
    "BootstrapError",
    "HandlerError",
    "RemoteError",
    "RequestTimeoutError",
    "RequestCancelledError",
    # Codec and transport
    "Serializer",
    "JsonSerializer",
    "FrameCodec",
    "Transport",
    "WebSocketTransport",
    # Identity
    "ClientIdentity",
    "IdentityBootstrap",
    "websocket_url",
    # Routing and correlation
    "HandlerRegistry",
    "PendingReply",
    "RequestCorrelator",
    "MessageRouter",
    "new_request_id",
]
