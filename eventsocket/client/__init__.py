"""
Eventsocket Client Module

Client-side connection facade for Eventsocket servers.
"""

from __future__ import annotations

from .client import EventsocketClient

__all__ = [
    "EventsocketClient",
]
