"""Feed operations performed on behalf of the user."""

import logging

from .errors import GatewayError
from .gateway import GatewayClient
from .store import FeedStore, Peer, Post
from .sync import FetchAllPosts, FetchLatestName, FetchLatestPosts, TaskLoop
from .validation import validate_public_key

logger = logging.getLogger(__name__)


class FeedService:
    """Subscribe, unsubscribe, refresh and read-state operations.

    Follow checks run inline so their failures reach the caller; fetching
    is handed to the task loop.
    """

    def __init__(self, store: FeedStore, gateway: GatewayClient, task_loop: TaskLoop):
        self.store = store
        self.gateway = gateway
        self.task_loop = task_loop

    async def subscribe(self, public_key: str) -> Peer:
        """Follow a peer, store it and queue a fetch of all its posts.

        Raises:
            ValidationError: If the public key is malformed.
            FollowCheckFailed: If the follow status could not be determined.
            GatewayError: If the follow RPC failed.
            StoreError: If the peer could not be stored.
            WorkerError: If the fetch could not be queued.
        """
        validate_public_key(public_key)
        logger.info(f"Public key {public_key} is valid")

        try:
            name = await self.gateway.get_name(public_key)
        except GatewayError as e:
            logger.warning(f"Failed to fetch name for peer {public_key}: {e}")
            name = ""

        await self.gateway.follow_if_not_following(public_key)

        existing = self.store.get_peer(public_key)
        peer = existing.with_name(name) if existing else Peer(public_key, name=name)
        self.store.put_peer(peer)
        logger.info(f"Added {public_key} to 'peers' table")

        self.task_loop.enqueue(FetchAllPosts(public_key))
        return peer

    async def unsubscribe(self, public_key: str) -> None:
        """Unfollow a peer and remove it. Its stored posts are kept."""
        validate_public_key(public_key)
        logger.info(f"Public key {public_key} is valid")

        await self.gateway.unfollow_if_following(public_key)

        self.store.delete_peer(public_key)
        logger.info(f"Removed peer {public_key} from 'peers' table")

    def refresh(self) -> int:
        """Queue a fetch of the latest posts and name of every peer.

        Returns:
            Number of peers queued.
        """
        peers = self.store.list_peers()
        for peer in peers:
            self.task_loop.enqueue(FetchLatestPosts(peer.public_key))
            self.task_loop.enqueue(FetchLatestName(peer.public_key))
        return len(peers)

    def peers_with_unread(self) -> list[tuple[Peer, int]]:
        return [
            (peer, self.store.count_unread(peer.public_key))
            for peer in self.store.list_peers()
        ]

    def posts(self, public_key: str) -> list[Post]:
        return self.store.list_posts(public_key)

    def post(self, public_key: str, key: str) -> Post | None:
        return self.store.get_post(public_key, key)

    def mark_read(self, public_key: str, key: str) -> bool:
        return self._set_read(public_key, key, True)

    def mark_unread(self, public_key: str, key: str) -> bool:
        return self._set_read(public_key, key, False)

    def _set_read(self, public_key: str, key: str, read: bool) -> bool:
        post = self.store.get_post(public_key, key)
        if post is None:
            logger.warning(
                f"Failed to find post {key} authored by {public_key} in 'posts' table"
            )
            return False

        post.read = read
        self.store.put_post(public_key, post)
        return True

    def delete_post(self, public_key: str, key: str) -> None:
        self.store.delete_post(public_key, key)
        logger.info(f"Removed post {key} by {public_key} from 'posts' table")
