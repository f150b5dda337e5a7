"""Background task loop that serializes fetches against the gateway and store."""

import asyncio
import logging
from dataclasses import replace
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import (
    GatewayError,
    RecordEncodingError,
    StoreError,
    TaskQueueFull,
    WorkerTerminated,
)
from ..store.records import Post
from .stream_filter import extract_root_posts
from .tasks import Cancel, FetchAllPosts, FetchLatestName, FetchLatestPosts, Task

if TYPE_CHECKING:
    from ..gateway.client import GatewayClient
    from ..store.feed_store import FeedStore

logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """Lifecycle state of the task loop."""

    RUNNING = "running"
    STOPPED = "stopped"


class TaskLoop:
    """Single consumer of a FIFO queue of synchronization tasks.

    Tasks run one at a time in submission order, so two fetches for the same
    peer can never race on its watermark. A failing task is logged and
    dropped; only a Cancel task stops the loop.
    """

    def __init__(
        self,
        store: "FeedStore",
        gateway: "GatewayClient",
        max_queue_size: int = 0,
    ):
        """Initialize the task loop.

        Args:
            store: FeedStore the loop writes posts and peers to.
            gateway: GatewayClient used for every RPC.
            max_queue_size: Queue bound; 0 for unbounded. A full queue
                rejects submissions with TaskQueueFull.
        """
        self._store = store
        self._gateway = gateway
        self._queue: asyncio.Queue[Task] = asyncio.Queue(maxsize=max_queue_size)
        self._task: asyncio.Task | None = None
        self._accepting = True
        self._state = WorkerState.RUNNING

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def pending(self) -> int:
        """Number of tasks waiting in the queue."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start the task loop as a background task."""
        if self._task is not None or self._state is WorkerState.STOPPED:
            return

        self._task = asyncio.create_task(self._run_loop())
        logger.info("Task loop started")

    def enqueue(self, task: Task) -> None:
        """Submit a task without waiting for it to run.

        Raises:
            WorkerTerminated: If Cancel was already submitted or the loop
                has exited.
            TaskQueueFull: If the queue is bounded and full.
        """
        if not self._accepting or self._state is WorkerState.STOPPED:
            raise WorkerTerminated(f"Task loop is not accepting tasks: {task!r}")

        try:
            self._queue.put_nowait(task)
        except asyncio.QueueFull:
            raise TaskQueueFull(f"Task queue is full, rejected {task!r}") from None

        if isinstance(task, Cancel):
            self._accepting = False

    async def cancel(self) -> None:
        """Submit Cancel and wait for the loop to exit.

        Work queued ahead of the Cancel is completed first.
        """
        if self._accepting:
            self.enqueue(Cancel())
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """Wait until the loop has exited."""
        if self._task is not None:
            await self._task

    async def _run_loop(self) -> None:
        """Main task loop."""
        try:
            while True:
                task = await self._queue.get()
                if isinstance(task, Cancel):
                    logger.info("Exiting task loop...")
                    break
                await self.run_once(task)
        finally:
            self._accepting = False
            self._state = WorkerState.STOPPED
            abandoned = self._queue.qsize()
            if abandoned:
                logger.info(f"Abandoned {abandoned} queued tasks")
            logger.info("Task loop stopped")

    async def run_once(self, task: Task) -> None:
        """Execute a single task, logging and dropping any failure."""
        try:
            await self._execute(task)
        except (GatewayError, StoreError) as e:
            if isinstance(e, RecordEncodingError):
                logger.error(f"Record encoding fault during {task!r}: {e}", exc_info=True)
            else:
                logger.warning(f"Task {task!r} failed: {e}")
        except Exception as e:
            logger.error(f"Task {task!r} crashed: {e}", exc_info=True)

    async def _execute(self, task: Task) -> None:
        if isinstance(task, FetchAllPosts):
            logger.info(f"Fetching all posts for peer: {task.peer_id}")
            await self._fetch_posts_and_update_db(task.peer_id, 0)

        elif isinstance(task, FetchLatestPosts):
            peer = self._store.get_peer(task.peer_id)
            if peer is None:
                logger.debug(f"Peer {task.peer_id} is no longer subscribed, skipping fetch")
                return
            logger.info(
                f"Fetching latest posts for peer: {task.peer_id} "
                f"(after sequence {peer.latest_sequence})"
            )
            await self._fetch_posts_and_update_db(task.peer_id, peer.latest_sequence)

        elif isinstance(task, FetchLatestName):
            logger.info(f"Fetching latest name for peer: {task.peer_id}")
            await self._fetch_name_and_update_db(task.peer_id)

        elif isinstance(task, Cancel):
            # Only reachable through run_once(); the loop handles Cancel itself
            return

        else:
            raise TypeError(f"Unknown task: {task!r}")

    async def _fetch_posts_and_update_db(self, peer_id: str, after_sequence: int) -> None:
        """Fetch, filter and store root posts, then raise the peer's watermark.

        Posts are committed before the watermark, so a failure in between
        can only under-report progress.
        """
        stream = self._gateway.history_stream(peer_id, after_sequence)
        latest_sequence, root_posts = await extract_root_posts(stream, after_sequence)

        root_posts = self._carry_read_state(peer_id, root_posts)
        self._store.put_post_batch(peer_id, root_posts)
        logger.info(f"Inserted batch of {len(root_posts)} posts for peer: {peer_id}")

        peer = self._store.get_peer(peer_id)
        if peer is None:
            logger.debug(f"Peer {peer_id} was unsubscribed, watermark not updated")
            return

        updated = peer.with_latest_sequence(latest_sequence)
        if updated != peer:
            self._store.put_peer(updated)
            logger.debug(
                f"Latest sequence for {peer_id}: "
                f"{peer.latest_sequence} -> {updated.latest_sequence}"
            )

    def _carry_read_state(self, peer_id: str, posts: list[Post]) -> list[Post]:
        """Keep the stored read flag of posts that are fetched again."""
        carried = []
        for post in posts:
            existing = self._store.get_post(peer_id, post.key)
            if existing is not None and existing.read != post.read:
                post = replace(post, read=existing.read)
            carried.append(post)
        return carried

    async def _fetch_name_and_update_db(self, peer_id: str) -> None:
        """Request the latest name of a peer and update its stored entry."""
        try:
            name = await self._gateway.get_name(peer_id)
        except GatewayError as e:
            logger.warning(f"Failed to fetch name for {peer_id}: {e}")
            return

        peer = self._store.get_peer(peer_id)
        if peer is None:
            return

        self._store.put_peer(peer.with_name(name))
        logger.info(f"Updated name for peer: {peer_id}")
