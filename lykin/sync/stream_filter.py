"""Reduce a raw history stream to root posts."""

import logging
from datetime import datetime, timezone
from typing import AsyncIterable

from ..errors import GatewayError
from ..gateway.messages import RawMessage
from ..store.records import Post

logger = logging.getLogger(__name__)

SUBJECT_LENGTH = 52
DATE_FORMAT = "%d %b %Y"


def is_root_post(message: RawMessage) -> bool:
    """A post-type message that does not reply to another message."""
    return message.message_type == "post" and "root" not in message.content


def format_date(timestamp_millis: int) -> str:
    """Render a millisecond timestamp as e.g. "17 May 2021" (UTC)."""
    seconds = timestamp_millis // 1000
    return datetime.fromtimestamp(seconds, tz=timezone.utc).strftime(DATE_FORMAT)


def make_subject(text: str) -> str | None:
    return text[:SUBJECT_LENGTH] if text else None


def post_from_message(message: RawMessage) -> Post:
    """Build a Post from a root post message."""
    text = message.content.get("text", "")
    if not isinstance(text, str):
        text = str(text)

    timestamp = int(round(message.timestamp))

    return Post(
        key=message.key,
        text=text,
        date=format_date(timestamp),
        sequence=message.sequence,
        timestamp=timestamp,
        subject=make_subject(text),
    )


async def extract_root_posts(
    stream: AsyncIterable[RawMessage | GatewayError],
    after_sequence: int = 0,
) -> tuple[int, list[Post]]:
    """Filter a message stream down to root posts.

    Args:
        stream: Items from GatewayClient.history_stream().
        after_sequence: Messages at or below this sequence are ignored.

    Returns:
        Tuple of (highest sequence among the returned posts, posts in
        arrival order). The sequence is 0 when no post was found.
    """
    latest_sequence = 0
    posts: list[Post] = []
    skipped = 0

    async for item in stream:
        if isinstance(item, GatewayError):
            logger.warning(f"Skipping stream item: {item}")
            continue

        if not is_root_post(item):
            skipped += 1
            continue

        if item.sequence <= after_sequence:
            logger.debug(
                f"Ignoring message {item.key} with sequence {item.sequence} "
                f"at or below resume point {after_sequence}"
            )
            continue

        try:
            post = post_from_message(item)
        except (ValueError, OverflowError, OSError) as e:
            logger.warning(f"Skipping message {item.key}: {e}")
            continue

        latest_sequence = max(latest_sequence, item.sequence)
        posts.append(post)

    logger.debug(f"Extracted {len(posts)} root posts, skipped {skipped} other messages")
    return latest_sequence, posts
