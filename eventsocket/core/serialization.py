from abc import ABC, abstractmethod
from typing import Any

import orjson
from pydantic import ValidationError

from .errors import FrameDecodeError, ProtocolError
from .model import Message, MessageKind

_KNOWN_KINDS = frozenset(kind.value for kind in MessageKind)


class Serializer(ABC):
    """Abstract base class for data serialization."""

    @abstractmethod
    def serialize(self, data: Any) -> bytes:
        """Serializes data into bytes."""
        pass

    @abstractmethod
    def deserialize(self, data: bytes) -> Any:
        """Deserializes bytes into data."""
        pass


class JsonSerializer(Serializer):
    """Serializer implementation using orjson for JSON serialization."""

    def serialize(self, data: Any) -> bytes:
        """Serializes data to JSON bytes using orjson."""
        return orjson.dumps(data)

    def deserialize(self, data: bytes) -> Any:
        """Deserializes JSON bytes to data using orjson."""
        return orjson.loads(data)


class FrameCodec:
    """Encodes Messages to frame bytes and decodes frame bytes to Messages."""

    def __init__(self, serializer: Serializer | None = None) -> None:
        self.serializer = serializer or JsonSerializer()

    def encode(self, message: Message) -> bytes:
        return self.serializer.serialize(message.to_wire())

    def decode(self, frame: bytes | str) -> Message:
        """Decode one frame.

        Raises:
            FrameDecodeError: the bytes are not a JSON object or fail validation.
            ProtocolError: the frame names a ``MessageType`` this client does
                not know.
        """
        if isinstance(frame, str):
            frame = frame.encode("utf-8")

        try:
            data = self.serializer.deserialize(frame)
        except orjson.JSONDecodeError as e:
            raise FrameDecodeError(f"Frame is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise FrameDecodeError(
                f"Frame must be a JSON object, got {type(data).__name__}"
            )

        kind = data.get("MessageType")
        # bool is an int subclass but never a valid kind
        if (
            not isinstance(kind, int)
            or isinstance(kind, bool)
            or kind not in _KNOWN_KINDS
        ):
            raise ProtocolError(f"unknown message kind: {kind!r}")

        try:
            return Message.model_validate(data)
        except ValidationError as e:
            raise FrameDecodeError(f"Frame failed validation: {e}") from e
