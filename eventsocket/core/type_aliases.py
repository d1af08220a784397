"""
Semantic type aliases for the Eventsocket client.

Aliases keep signatures self-documenting where the underlying type is a
plain str or float.
"""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .model import Message

# Identifiers
type ClientId = str
type RequestId = str
type TopicName = str
type ErrorType = str

# Network
type ServerAddress = str  # host:port of the Eventsocket server
type UrlString = str

# Time
type Timestamp = float
type DurationSeconds = float

# Handlers may be plain callables or coroutine functions.
type MessageHandler = Callable[["Message"], Awaitable[Any] | Any]
type ReplyCallback = Callable[["Message"], Awaitable[Any] | Any]
