"""Peer and post records, and the binary codec used to persist them.

Each stored value is a single version byte followed by compact UTF-8 JSON.
The version byte is bumped whenever the field layout changes; decoding a
value with an unknown version is an error, never a silent best effort.
"""

import json
from dataclasses import asdict, dataclass, replace
from typing import Any, TypeVar

from ..errors import RecordEncodingError

RECORD_VERSION = 1

_Record = TypeVar("_Record", "Peer", "Post")


@dataclass
class Peer:
    """A remote peer we are subscribed to."""

    public_key: str
    name: str = ""
    latest_sequence: int = 0  # highest sequence number already ingested

    def with_name(self, name: str) -> "Peer":
        return replace(self, name=name)

    def with_latest_sequence(self, sequence: int) -> "Peer":
        """Return a copy with the watermark raised to sequence.

        The watermark never moves backwards.
        """
        return replace(self, latest_sequence=max(self.latest_sequence, sequence))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Peer":
        return cls(
            public_key=data["public_key"],
            name=data.get("name", ""),
            latest_sequence=data.get("latest_sequence", 0),
        )


@dataclass
class Post:
    """The text and metadata of a root post."""

    key: str  # message reference
    text: str
    date: str  # e.g. "17 May 2021"
    sequence: int
    timestamp: int  # milliseconds since the epoch
    subject: str | None = None
    read: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Post":
        return cls(
            key=data["key"],
            text=data["text"],
            date=data["date"],
            sequence=data["sequence"],
            timestamp=data["timestamp"],
            subject=data.get("subject"),
            read=data.get("read", False),
        )


def encode_record(record: Peer | Post) -> bytes:
    """Serialize a record to its stored byte form."""
    try:
        body = json.dumps(
            record.to_dict(), separators=(",", ":"), sort_keys=True
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise RecordEncodingError(
            f"Failed to encode {type(record).__name__}: {e}"
        ) from e
    return bytes([RECORD_VERSION]) + body


def decode_record(data: bytes, record_type: type[_Record]) -> _Record:
    """Deserialize a stored value into a record of the given type."""
    if not data:
        raise RecordEncodingError(f"Empty {record_type.__name__} record")

    version = data[0]
    if version != RECORD_VERSION:
        raise RecordEncodingError(
            f"Unsupported {record_type.__name__} record version {version}"
        )

    try:
        return record_type.from_dict(json.loads(data[1:].decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
        raise RecordEncodingError(
            f"Failed to decode {record_type.__name__}: {e}"
        ) from e
