"""Message envelopes returned by the gateway history stream."""

from dataclasses import dataclass
from typing import Any


@dataclass
class RawMessage:
    """A single key-value message from a peer's append-only log."""

    key: str
    author: str
    sequence: int
    timestamp: float  # milliseconds, as assigned by the author
    content: dict[str, Any] | str  # str when the content is encrypted

    @property
    def message_type(self) -> str | None:
        """The content type ("post", "contact", ...), if readable."""
        if isinstance(self.content, dict):
            return self.content.get("type")
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RawMessage":
        """Parse a `{key, value: {author, sequence, timestamp, content}}` item.

        Raises:
            ValueError: If the envelope is missing fields or has wrong types.
        """
        try:
            value = data["value"]
            message = cls(
                key=data["key"],
                author=value.get("author", ""),
                sequence=value["sequence"],
                timestamp=value.get("timestamp", 0),
                content=value.get("content", {}),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed message envelope: {e!r}") from e

        if not isinstance(message.key, str) or not message.key:
            raise ValueError("Message key must be a non-empty string")
        try:
            message.key.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValueError(f"Message key is not valid UTF-8: {e}") from e
        if isinstance(message.sequence, bool) or not isinstance(message.sequence, int):
            raise ValueError(f"Invalid sequence number: {message.sequence!r}")
        if isinstance(message.timestamp, bool) or not isinstance(
            message.timestamp, (int, float)
        ):
            raise ValueError(f"Invalid timestamp: {message.timestamp!r}")
        if not isinstance(message.content, (dict, str)):
            raise ValueError("Message content must be an object or a string")

        return message
