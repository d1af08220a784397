from collections.abc import Iterable, Mapping
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator

# Error types produced by the server when a request cannot be forwarded.
ERROR_REQUEST_CLIENT_NO_EXIST = "ErrorRequestClientNoExist"
ERROR_REQUEST_CLIENT_NOT_CONNECTED = "ErrorRequestClientNotConnected"

# Error types synthesized locally when a pending request never gets a reply.
ERROR_REQUEST_TIMEOUT = "ErrorRequestTimeout"
ERROR_REQUEST_CANCELLED = "ErrorRequestCancelled"


class MessageKind(IntEnum):
    """Wire values of the ``MessageType`` field."""

    BROADCAST = 1
    STANDARD = 2
    REQUEST = 3
    REPLY = 4
    SUBSCRIBE = 5
    UNSUBSCRIBE = 6


class MessageError(BaseModel):
    """
    Structured failure descriptor carried by error replies.

    Only ``Type`` is defined by the protocol; any additional keys the server
    sends are preserved as extra fields.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    type: str = Field(alias="Type", description="Machine readable error type.")


class Message(BaseModel):
    """
    The unit of communication between a client and the Eventsocket server.

    Field names are pythonic; the wire names (``MessageType``, ``Event``, ...)
    are the aliases, so ``model_dump(by_alias=True)`` yields the frame shape.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: MessageKind = Field(alias="MessageType", description="Message kind.")
    event: str | None = Field(
        default=None, alias="Event", description="Topic name for standard messages."
    )
    request_id: str | None = Field(
        default=None,
        alias="RequestId",
        description="Correlation id linking a request to its reply.",
    )
    reply_client_id: str | None = Field(
        default=None,
        alias="ReplyClientId",
        description="Client that should receive the reply to a request.",
    )
    request_client_id: str | None = Field(
        default=None,
        alias="RequestClientId",
        description="Client a request is addressed to.",
    )
    payload: dict[str, JsonValue] = Field(
        default_factory=dict,
        alias="Payload",
        description="Application defined document.",
    )
    error: MessageError | None = Field(
        default=None, alias="Error", description="Failure descriptor on replies."
    )

    @field_validator("payload", mode="before")
    @classmethod
    def _empty_payload(cls, value: Any) -> Any:
        # Servers and older clients send null or an empty JSON array for "no payload".
        if value is None or value == []:
            return {}
        return value

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def events(self) -> tuple[str, ...]:
        """Topics listed by a subscribe/unsubscribe control message."""
        events = self.payload.get("Events")
        if not isinstance(events, list):
            return ()
        return tuple(str(event) for event in events)

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready frame, with every wire key present."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def broadcast(cls, payload: Mapping[str, Any] | None = None) -> "Message":
        return cls(kind=MessageKind.BROADCAST, payload=dict(payload or {}))

    @classmethod
    def standard(
        cls, event: str, payload: Mapping[str, Any] | None = None
    ) -> "Message":
        return cls(kind=MessageKind.STANDARD, event=event, payload=dict(payload or {}))

    @classmethod
    def request(
        cls,
        request_client_id: str,
        request_id: str,
        payload: Mapping[str, Any] | None = None,
    ) -> "Message":
        return cls(
            kind=MessageKind.REQUEST,
            request_client_id=request_client_id,
            request_id=request_id,
            payload=dict(payload or {}),
        )

    @classmethod
    def reply(
        cls,
        request_id: str,
        reply_client_id: str | None,
        payload: Mapping[str, Any] | None = None,
        error: MessageError | None = None,
    ) -> "Message":
        return cls(
            kind=MessageKind.REPLY,
            request_id=request_id,
            reply_client_id=reply_client_id,
            payload=dict(payload or {}),
            error=error,
        )

    @classmethod
    def subscribe(cls, events: Iterable[str]) -> "Message":
        return cls(kind=MessageKind.SUBSCRIBE, payload={"Events": list(events)})

    @classmethod
    def unsubscribe(cls, events: Iterable[str]) -> "Message":
        return cls(kind=MessageKind.UNSUBSCRIBE, payload={"Events": list(events)})
