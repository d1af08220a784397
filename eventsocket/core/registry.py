"""
Handler storage for one Eventsocket client connection.

The registry is a plain data structure: it performs no I/O and never invokes
a handler. Every public method takes the registry lock for exactly one
lookup/insert/remove, so registration is safe from handler bodies and from
threads other than the one pumping the receive loop. Dispatch works on
snapshots, so the lock is never held while application code runs.
"""

import inspect
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from .errors import InvariantViolation
from .type_aliases import (
    ClientId,
    MessageHandler,
    ReplyCallback,
    RequestId,
    Timestamp,
    TopicName,
)

if TYPE_CHECKING:
    from .model import Message


async def invoke_handler(handler: MessageHandler, message: "Message") -> Any:
    """Call a handler, awaiting the result when it is a coroutine."""
    result = handler(message)
    if inspect.isawaitable(result):
        return await result
    return result


@dataclass(slots=True)
class PendingReply:
    """One-shot reply callback for an in-flight request."""

    request_id: RequestId
    callback: ReplyCallback
    target_client_id: ClientId
    deadline: Timestamp
    created_at: Timestamp


def normalize_topics(topics: TopicName | Iterable[TopicName]) -> tuple[TopicName, ...]:
    """Accept a single topic or an iterable of topics, keeping first-seen order."""
    if isinstance(topics, str):
        topics = (topics,)
    normalized = tuple(dict.fromkeys(topics))
    if not normalized:
        raise ValueError("At least one topic is required")
    for topic in normalized:
        if not isinstance(topic, str) or not topic:
            raise ValueError(f"Invalid topic name: {topic!r}")
    return normalized


@dataclass(slots=True)
class HandlerRegistry:
    """Broadcast, topic, request and pending-reply handlers for one client."""

    _broadcast: list[MessageHandler] = field(default_factory=list)
    _standard: dict[TopicName, list[MessageHandler]] = field(default_factory=dict)
    _request: list[MessageHandler] = field(default_factory=list)
    _pending: dict[RequestId, PendingReply] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def register_broadcast(self, handler: MessageHandler) -> None:
        with self._lock:
            self._broadcast.append(handler)

    def register_request_handler(self, handler: MessageHandler) -> None:
        with self._lock:
            self._request.append(handler)

    def subscribe(
        self, topics: TopicName | Iterable[TopicName], handler: MessageHandler
    ) -> tuple[TopicName, ...]:
        """Append ``handler`` to every topic and return the normalized topics."""
        normalized = normalize_topics(topics)
        with self._lock:
            for topic in normalized:
                self._standard.setdefault(topic, []).append(handler)
        logger.debug("Subscribed {!r} to {}", handler, normalized)
        return normalized

    def unsubscribe(
        self,
        topics: TopicName | Iterable[TopicName],
        handler: MessageHandler | None = None,
    ) -> tuple[TopicName, ...]:
        """Remove handlers from topics.

        With a ``handler`` every registration of that exact object (identity,
        not equality) is removed; without one the whole topic is cleared.
        Returns the topics that have no handlers left afterwards.
        """
        normalized = normalize_topics(topics)
        emptied: list[TopicName] = []
        with self._lock:
            for topic in normalized:
                handlers = self._standard.get(topic)
                if handlers is None:
                    continue
                if handler is None:
                    handlers.clear()
                else:
                    handlers[:] = [h for h in handlers if h is not handler]
                if not handlers:
                    del self._standard[topic]
                    emptied.append(topic)
        return tuple(emptied)

    def register_pending_reply(self, pending: PendingReply) -> None:
        with self._lock:
            if pending.request_id in self._pending:
                raise InvariantViolation(
                    f"Duplicate correlation id registered: {pending.request_id}"
                )
            self._pending[pending.request_id] = pending

    def consume_pending_reply(self, request_id: RequestId) -> PendingReply | None:
        """Atomically look up and remove a pending reply. None if absent."""
        with self._lock:
            return self._pending.pop(request_id, None)

    def drain_pending_replies(self) -> list[PendingReply]:
        """Remove and return every pending reply, oldest first."""
        with self._lock:
            drained = list(self._pending.values())
            self._pending.clear()
        return drained

    def broadcast_handlers(self) -> tuple[MessageHandler, ...]:
        with self._lock:
            return tuple(self._broadcast)

    def standard_handlers(self, topic: TopicName) -> tuple[MessageHandler, ...]:
        with self._lock:
            return tuple(self._standard.get(topic, ()))

    def request_handlers(self) -> tuple[MessageHandler, ...]:
        with self._lock:
            return tuple(self._request)

    def topics(self) -> tuple[TopicName, ...]:
        with self._lock:
            return tuple(self._standard)

    def pending_request_ids(self) -> tuple[RequestId, ...]:
        with self._lock:
            return tuple(self._pending)

    def has_pending(self, request_id: RequestId) -> bool:
        with self._lock:
            return request_id in self._pending
