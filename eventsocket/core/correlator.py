"""
Request/reply correlation.

Each outgoing request gets a random 128-bit correlation id and a deadline.
Pending replies live in the HandlerRegistry; this module keeps a min-heap of
deadlines next to them and a background sweeper that expires overdue
requests. Completed requests are not removed from the heap: their entries
are discarded when they come due and the registry no longer knows the id.
"""

import asyncio
import heapq
import itertools
import secrets
import threading
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger

from .model import (
    ERROR_REQUEST_CANCELLED,
    ERROR_REQUEST_TIMEOUT,
    Message,
    MessageError,
    MessageKind,
)
from .registry import HandlerRegistry, PendingReply, invoke_handler
from .type_aliases import (
    ClientId,
    DurationSeconds,
    ErrorType,
    ReplyCallback,
    RequestId,
    Timestamp,
)


def new_request_id() -> RequestId:
    """Return a UUID-shaped id carrying 128 bits from the OS CSPRNG."""
    return str(uuid.UUID(bytes=secrets.token_bytes(16)))


@dataclass(slots=True)
class RequestCorrelator:
    """Issues correlation ids and retires requests that never get a reply."""

    registry: HandlerRegistry
    default_timeout: DurationSeconds = 30.0
    retired_capacity: int = 1024
    clock: Callable[[], Timestamp] = time.monotonic

    _deadlines: list[tuple[Timestamp, int, RequestId]] = field(
        default_factory=list, init=False
    )
    _sequence: itertools.count = field(default_factory=itertools.count, init=False)
    _heap_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )
    _retired: OrderedDict[RequestId, ErrorType] = field(
        default_factory=OrderedDict, init=False
    )
    _wakeup: asyncio.Event | None = field(default=None, init=False)
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False)
    _sweeper: asyncio.Task[None] | None = field(default=None, init=False)
    _stopping: bool = field(default=False, init=False)

    def register(
        self,
        target_client_id: ClientId,
        callback: ReplyCallback,
        timeout: DurationSeconds | None = None,
    ) -> PendingReply:
        """Create and record a pending reply for a request about to be sent."""
        if timeout is not None and timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {timeout}")

        now = self.clock()
        pending = PendingReply(
            request_id=new_request_id(),
            callback=callback,
            target_client_id=target_client_id,
            deadline=now + (timeout if timeout is not None else self.default_timeout),
            created_at=now,
        )
        self.registry.register_pending_reply(pending)

        with self._heap_lock:
            heapq.heappush(
                self._deadlines,
                (pending.deadline, next(self._sequence), pending.request_id),
            )
            is_earliest = self._deadlines[0][2] == pending.request_id

        if is_earliest:
            self._wake()
        return pending

    def withdraw(self, request_id: RequestId) -> PendingReply | None:
        """Forget a request that could not be sent. Its heap entry goes stale."""
        return self.registry.consume_pending_reply(request_id)

    def is_retired(self, request_id: RequestId) -> bool:
        """True if the id was removed by a timeout or cancellation."""
        with self._heap_lock:
            return request_id in self._retired

    def next_deadline(self) -> Timestamp | None:
        with self._heap_lock:
            return self._deadlines[0][0] if self._deadlines else None

    async def expire_due(self, now: Timestamp | None = None) -> list[RequestId]:
        """Time out every pending request whose deadline is at or before ``now``.

        Each expired callback is invoked exactly once with a synthesized error
        reply. Returns the ids that actually expired.
        """
        if now is None:
            now = self.clock()

        due: list[RequestId] = []
        with self._heap_lock:
            while self._deadlines and self._deadlines[0][0] <= now:
                due.append(heapq.heappop(self._deadlines)[2])

        expired: list[RequestId] = []
        for request_id in due:
            pending = self.registry.consume_pending_reply(request_id)
            if pending is None:
                continue
            expired.append(request_id)
            logger.warning(
                "Request {} to client {} timed out after {:.3f}s",
                request_id,
                pending.target_client_id,
                now - pending.created_at,
            )
            await self._fail(pending, ERROR_REQUEST_TIMEOUT)
        return expired

    async def cancel_all(self) -> list[RequestId]:
        """Fail every pending request with a cancellation error."""
        drained = self.registry.drain_pending_replies()
        with self._heap_lock:
            self._deadlines.clear()

        for pending in drained:
            logger.info("Cancelling pending request {}", pending.request_id)
            await self._fail(pending, ERROR_REQUEST_CANCELLED)
        return [pending.request_id for pending in drained]

    def start(self) -> None:
        """Start the deadline sweeper on the running event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._stopping = False
        self._sweeper = asyncio.create_task(
            self._sweep_loop(), name="eventsocket-reply-sweeper"
        )

    async def stop(self) -> None:
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is None:
            return
        self._stopping = True
        if sweeper is asyncio.current_task():
            # Called from a reply callback running on the sweeper; the loop
            # exits once that callback returns.
            return
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass

    async def _sweep_loop(self) -> None:
        assert self._wakeup is not None
        logger.debug("Reply sweeper started")
        while not self._stopping:
            self._wakeup.clear()
            deadline = self.next_deadline()
            if deadline is None:
                await self._wakeup.wait()
            else:
                delay = deadline - self.clock()
                if delay > 0:
                    try:
                        await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
                    except TimeoutError:
                        pass
            await self.expire_due()
        logger.debug("Reply sweeper stopped")

    def _wake(self) -> None:
        if self._wakeup is None or self._loop is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._wakeup.set()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._wakeup.set)

    def _retire(self, request_id: RequestId, error_type: ErrorType) -> None:
        if self.retired_capacity <= 0:
            return
        with self._heap_lock:
            self._retired[request_id] = error_type
            while len(self._retired) > self.retired_capacity:
                self._retired.popitem(last=False)

    async def _fail(self, pending: PendingReply, error_type: ErrorType) -> None:
        self._retire(pending.request_id, error_type)
        message = Message(
            kind=MessageKind.REPLY,
            request_id=pending.request_id,
            request_client_id=pending.target_client_id,
            error=MessageError(type=error_type),
        )
        try:
            await invoke_handler(pending.callback, message)
        except Exception as e:
            # The sweeper must keep running for the other pending requests.
            logger.error(
                "Reply callback for {} failed on {}: {}",
                pending.request_id,
                error_type,
                e,
            )
