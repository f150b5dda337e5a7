"""Local SQLite key-value storage for peers and posts."""

import logging
import sqlite3
from pathlib import Path
from typing import Any

from ..errors import StoreError
from .records import Peer, Post, decode_record, encode_record

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Two record families, each a plain key -> encoded value table.
SCHEMA = """
-- Peers we are subscribed to, keyed by public key
CREATE TABLE IF NOT EXISTS peers (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL
);

-- Root posts, keyed by author public key, separator and message key
CREATE TABLE IF NOT EXISTS posts (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL
);
"""

POST_KEY_SEPARATOR = "_"


def post_key(author_public_key: str, message_key: str) -> str:
    """Build the composite key for a post."""
    return f"{author_public_key}{POST_KEY_SEPARATOR}{message_key}"


def _prefix_bounds(author_public_key: str) -> tuple[str, str]:
    """Return the half-open key range holding all posts of one author."""
    prefix = f"{author_public_key}{POST_KEY_SEPARATOR}"
    upper = prefix[:-1] + chr(ord(prefix[-1]) + 1)
    return prefix, upper


class FeedStore:
    """SQLite-backed store for the peers and posts record families.

    Single record upserts are atomic per key. Batch upserts are applied in
    one transaction: either every record becomes visible or none does.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(str(self.db_path))
            version = conn.execute("PRAGMA user_version").fetchone()[0]
            if version > SCHEMA_VERSION:
                conn.close()
                raise StoreError(
                    f"Database schema version {version} is newer than "
                    f"supported version {SCHEMA_VERSION}"
                )

            conn.executescript(SCHEMA)
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Failed to open database {self.db_path}: {e}") from e

        self._conn = conn
        logger.info(f"FeedStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("FeedStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
        if self._conn is None:
            self.connect()
        return self._conn

    def _execute(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        conn = self._ensure_connected()
        try:
            with conn:
                return conn.execute(sql, params).fetchall()
        except (sqlite3.Error, UnicodeError) as e:
            raise StoreError(str(e)) from e

    # ==================== Peer Operations ====================

    def put_peer(self, peer: Peer) -> None:
        """Insert or replace a peer record."""
        value = encode_record(peer)
        logger.debug(f"Inserting peer {peer.public_key} into 'peers' table")
        self._execute(
            "INSERT OR REPLACE INTO peers (key, value) VALUES (?, ?)",
            (peer.public_key, value),
        )

    def get_peer(self, public_key: str) -> Peer | None:
        rows = self._execute("SELECT value FROM peers WHERE key = ?", (public_key,))
        if not rows:
            return None
        return decode_record(rows[0][0], Peer)

    def list_peers(self) -> list[Peer]:
        """Return all peers, ordered by public key."""
        rows = self._execute("SELECT value FROM peers ORDER BY key")
        return [decode_record(row[0], Peer) for row in rows]

    def delete_peer(self, public_key: str) -> None:
        """Remove a peer record. Posts authored by the peer are kept."""
        logger.debug(f"Removing peer {public_key} from 'peers' table")
        self._execute("DELETE FROM peers WHERE key = ?", (public_key,))

    # ==================== Post Operations ====================

    def put_post(self, author_public_key: str, post: Post) -> None:
        """Insert or replace a single post."""
        value = encode_record(post)
        self._execute(
            "INSERT OR REPLACE INTO posts (key, value) VALUES (?, ?)",
            (post_key(author_public_key, post.key), value),
        )

    def put_post_batch(self, author_public_key: str, posts: list[Post]) -> None:
        """Insert or replace multiple posts in a single transaction.

        Every record is encoded before anything is written, so an encoding
        fault leaves the table untouched. A storage failure rolls the whole
        batch back.
        """
        if not posts:
            return

        rows = [
            (post_key(author_public_key, post.key), encode_record(post))
            for post in posts
        ]

        conn = self._ensure_connected()
        try:
            with conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO posts (key, value) VALUES (?, ?)",
                    rows,
                )
        except (sqlite3.Error, UnicodeError) as e:
            raise StoreError(
                f"Failed to insert batch of {len(rows)} posts for {author_public_key}: {e}"
            ) from e

        logger.debug(f"Applied batch of {len(rows)} posts for {author_public_key}")

    def get_post(self, author_public_key: str, key: str) -> Post | None:
        rows = self._execute(
            "SELECT value FROM posts WHERE key = ?",
            (post_key(author_public_key, key),),
        )
        if not rows:
            return None
        return decode_record(rows[0][0], Post)

    def list_posts(self, author_public_key: str) -> list[Post]:
        """Return all posts by one author, ordered by message key."""
        lower, upper = _prefix_bounds(author_public_key)
        rows = self._execute(
            "SELECT value FROM posts WHERE key >= ? AND key < ? ORDER BY key",
            (lower, upper),
        )
        return [decode_record(row[0], Post) for row in rows]

    def delete_post(self, author_public_key: str, key: str) -> None:
        self._execute(
            "DELETE FROM posts WHERE key = ?",
            (post_key(author_public_key, key),),
        )

    def count_unread(self, author_public_key: str) -> int:
        """Count posts by one author that have not been read."""
        return sum(1 for post in self.list_posts(author_public_key) if not post.read)

    # ==================== Maintenance ====================

    def get_stats(self) -> dict[str, Any]:
        """Get record counts.

        Returns:
            Dictionary with peer and post counts.
        """
        peers = self._execute("SELECT COUNT(*) FROM peers")[0][0]
        posts = self._execute("SELECT COUNT(*) FROM posts")[0][0]
        return {
            "db_path": str(self.db_path),
            "peers_count": peers,
            "posts_count": posts,
        }
