"""CLI entry point for lykin."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
import traceback
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator

from .config import Config, load_config
from .errors import LykinError
from .feed import FeedService
from .gateway import GatewayClient
from .store import FeedStore
from .sync import TaskLoop


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


@asynccontextmanager
async def open_feed(config: Config) -> AsyncIterator[FeedService]:
    """Open the store and gateway, run the task loop, and drain it on exit.

    On exit the loop is sent Cancel and awaited, so every task queued inside
    the block runs before the store is closed.
    """
    store = FeedStore(config.store.db_path)
    store.connect()
    gateway = GatewayClient(
        config.gateway.base_url, timeout=config.gateway.timeout_seconds
    )
    task_loop = TaskLoop(store, gateway, max_queue_size=config.worker.max_queue_size)
    task_loop.start()

    try:
        yield FeedService(store, gateway, task_loop)
    finally:
        await task_loop.cancel()
        await gateway.close()
        store.close()


async def cmd_status(args: argparse.Namespace) -> int:
    """Check gateway connectivity."""
    config = load_config(args.config)
    gateway = GatewayClient(
        config.gateway.base_url, timeout=config.gateway.timeout_seconds
    )

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "gateway": {"base_url": config.gateway.base_url},
        "store": {"db_path": config.store.db_path},
    }

    try:
        status_data["gateway"]["whoami"] = await gateway.whoami()
        status_data["gateway"]["connected"] = True
    except LykinError as e:
        status_data["gateway"]["connected"] = False
        status_data["gateway"]["error"] = str(e)
    finally:
        await gateway.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
    else:
        gw = status_data["gateway"]
        if gw["connected"]:
            print(f"Gateway: {gw['base_url']} (connected as {gw['whoami']})")
        else:
            print(f"Gateway: {gw['base_url']} (unreachable: {gw['error']})")
        print(f"Database: {config.store.db_path}")

    return 0 if status_data["gateway"]["connected"] else 1


async def cmd_subscribe(args: argparse.Namespace) -> int:
    """Subscribe to a peer and download its posts."""
    config = load_config(args.config)
    async with open_feed(config) as feed:
        peer = await feed.subscribe(args.public_key)
    print(f"Subscribed to {peer.name or peer.public_key}")
    return 0


async def cmd_unsubscribe(args: argparse.Namespace) -> int:
    """Unsubscribe from a peer."""
    config = load_config(args.config)
    async with open_feed(config) as feed:
        await feed.unsubscribe(args.public_key)
    print(f"Unsubscribed from {args.public_key}")
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Download the latest posts and names of all peers."""
    config = load_config(args.config)
    async with open_feed(config) as feed:
        count = feed.refresh()
    print(f"Refreshed {count} peers")
    return 0


async def cmd_peers(args: argparse.Namespace) -> int:
    """List subscribed peers with their unread counts."""
    config = load_config(args.config)
    async with open_feed(config) as feed:
        peers = feed.peers_with_unread()

    if not peers:
        print("No subscriptions")
        return 0

    for peer, unread in peers:
        print(f"{peer.public_key}  {peer.name or '-':<24} unread={unread}")
    return 0


async def cmd_posts(args: argparse.Namespace) -> int:
    """List the stored posts of a peer."""
    config = load_config(args.config)
    async with open_feed(config) as feed:
        posts = feed.posts(args.public_key)

    for post in posts:
        marker = " " if post.read else "*"
        print(f"{marker} {post.date:>11}  {post.key}  {post.subject or ''}")
    return 0


async def _set_read(args: argparse.Namespace, read: bool) -> int:
    config = load_config(args.config)
    async with open_feed(config) as feed:
        if read:
            found = feed.mark_read(args.public_key, args.key)
        else:
            found = feed.mark_unread(args.public_key, args.key)
    if not found:
        print(f"Post {args.key} not found", file=sys.stderr)
        return 1
    return 0


async def cmd_read(args: argparse.Namespace) -> int:
    """Mark a post as read."""
    return await _set_read(args, True)


async def cmd_unread(args: argparse.Namespace) -> int:
    """Mark a post as unread."""
    return await _set_read(args, False)


async def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a stored post."""
    config = load_config(args.config)
    async with open_feed(config) as feed:
        feed.delete_post(args.public_key, args.key)
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="lykin",
        description="A personal feed reader for Secure Scuttlebutt",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    status_parser = subparsers.add_parser("status", help="Check gateway connectivity")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    subscribe_parser = subparsers.add_parser("subscribe", help="Subscribe to a peer")
    subscribe_parser.add_argument("public_key", help="Peer public key (@...=.ed25519)")
    subscribe_parser.set_defaults(func=cmd_subscribe)

    unsubscribe_parser = subparsers.add_parser("unsubscribe", help="Unsubscribe from a peer")
    unsubscribe_parser.add_argument("public_key", help="Peer public key (@...=.ed25519)")
    unsubscribe_parser.set_defaults(func=cmd_unsubscribe)

    sync_parser = subparsers.add_parser("sync", help="Download the latest posts of all peers")
    sync_parser.set_defaults(func=cmd_sync)

    peers_parser = subparsers.add_parser("peers", help="List subscribed peers")
    peers_parser.set_defaults(func=cmd_peers)

    posts_parser = subparsers.add_parser("posts", help="List the posts of a peer")
    posts_parser.add_argument("public_key", help="Peer public key")
    posts_parser.set_defaults(func=cmd_posts)

    for name, func, help_text in (
        ("read", cmd_read, "Mark a post as read"),
        ("unread", cmd_unread, "Mark a post as unread"),
        ("delete", cmd_delete, "Delete a post"),
    ):
        post_parser = subparsers.add_parser(name, help=help_text)
        post_parser.add_argument("public_key", help="Author public key")
        post_parser.add_argument("key", help="Message key (%%...sha256)")
        post_parser.set_defaults(func=func)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    try:
        if inspect.iscoroutinefunction(func):
            return asyncio.run(func(args))
        return func(args)
    except LykinError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 130


if __name__ == "__main__":
    sys.exit(main())
