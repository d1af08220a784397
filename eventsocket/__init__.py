"""
Eventsocket - client library for the Eventsocket messaging server

Eventsocket clients share one websocket connection to a central server and
exchange four kinds of traffic over it: broadcasts, topic events, and
correlated request/reply pairs addressed to individual clients.

## Quick Start

```python
from eventsocket import EventsocketClient

async with EventsocketClient("127.0.0.1:8080") as client:
    await client.subscribe("foo", lambda m: print(m.payload))
    await client.emit("foo", {"awesomeValue": 42})
    await client.run_forever()
```
"""

from .client import EventsocketClient
from .core import (
    ERROR_REQUEST_CANCELLED,
    ERROR_REQUEST_CLIENT_NO_EXIST,
    ERROR_REQUEST_CLIENT_NOT_CONNECTED,
    ERROR_REQUEST_TIMEOUT,
    ClientSettings,
    EventsocketError,
    Message,
    MessageError,
    MessageKind,
    ProtocolError,
    RemoteError,
    RequestCancelledError,
    RequestTimeoutError,
    TransportError,
    configure_logging,
)

__version__ = "1.0.0"
__license__ = "MIT"

__all__ = [
    "EventsocketClient",
    "ClientSettings",
    "configure_logging",
    "Message",
    "MessageError",
    "MessageKind",
    "ERROR_REQUEST_CLIENT_NO_EXIST",
    "ERROR_REQUEST_CLIENT_NOT_CONNECTED",
    "ERROR_REQUEST_TIMEOUT",
    "ERROR_REQUEST_CANCELLED",
    "EventsocketError",
    "TransportError",
    "ProtocolError",
    "RemoteError",
    "RequestTimeoutError",
    "RequestCancelledError",
]
