"""Persistent storage for subscribed peers and their root posts."""

from .feed_store import FeedStore, post_key
from .records import Peer, Post, decode_record, encode_record

__all__ = [
    "FeedStore",
    "Peer",
    "Post",
    "decode_record",
    "encode_record",
    "post_key",
]
