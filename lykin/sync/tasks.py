"""Tasks accepted by the background task loop.

The set of variants is closed: new work is added as a new variant here and a
matching branch in TaskLoop._execute().
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FetchAllPosts:
    """Fetch every root post authored by a peer."""

    peer_id: str


@dataclass(frozen=True)
class FetchLatestPosts:
    """Fetch root posts newer than the peer's stored watermark."""

    peer_id: str


@dataclass(frozen=True)
class FetchLatestName:
    """Refresh the stored display name of a peer."""

    peer_id: str


@dataclass(frozen=True)
class Cancel:
    """Stop the task loop. Tasks still queued behind it are abandoned."""


Task = FetchAllPosts | FetchLatestPosts | FetchLatestName | Cancel
