"""Synchronization core.

A single background task loop fetches peer history through the gateway,
filters it down to root posts and persists the results.
"""

from .stream_filter import extract_root_posts
from .task_loop import TaskLoop, WorkerState
from .tasks import Cancel, FetchAllPosts, FetchLatestName, FetchLatestPosts, Task

__all__ = [
    "Cancel",
    "FetchAllPosts",
    "FetchLatestName",
    "FetchLatestPosts",
    "Task",
    "TaskLoop",
    "WorkerState",
    "extract_root_posts",
]
