"""Tests for the command line entry point."""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from lykin.__main__ import JSONFormatter, main
from lykin.feed import FeedService
from lykin.store import FeedStore, Peer, Post

from builders import PEER_A


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "database.db"
    monkeypatch.setenv("LYKIN_DB_PATH", str(path))
    return path


def run_cli(*argv: str) -> int:
    with patch.object(sys, "argv", ["lykin", *argv]):
        return main()


class TestJSONFormatter:
    """Tests for JSON log output."""

    def test_format(self):
        record = logging.LogRecord(
            "lykin.sync.task_loop", logging.WARNING, __file__, 1,
            "Failed to fetch %s", ("posts",), None,
        )

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["component"] == "lykin.sync.task_loop"
        assert data["message"] == "Failed to fetch posts"
        assert "exception" not in data


class TestCommands:
    """Tests for CLI commands that only touch the local store."""

    def test_no_command_prints_help(self, capsys):
        assert run_cli() == 1
        assert "usage" in capsys.readouterr().out

    def test_peers_empty(self, db_path, capsys):
        assert run_cli("peers") == 0
        assert "No subscriptions" in capsys.readouterr().out

    def test_peers_lists_unread(self, db_path, capsys):
        store = FeedStore(str(db_path))
        store.connect()
        store.put_peer(Peer(PEER_A, name="alice"))
        store.put_post(
            PEER_A,
            Post("%one.sha256", "hi", "17 May 2021", 1, 1621252800000, "hi"),
        )
        store.close()

        assert run_cli("peers") == 0

        out = capsys.readouterr().out
        assert "alice" in out
        assert "unread=1" in out

    def test_invalid_key_reports_error(self, db_path, capsys):
        assert run_cli("subscribe", "not-a-key") == 1
        assert "sigil" in capsys.readouterr().err

    def test_read_missing_post(self, db_path, capsys):
        assert run_cli("read", PEER_A, "%missing.sha256") == 1
        assert "not found" in capsys.readouterr().err

    def test_posts_lists_through_feed_service(self, db_path, capsys):
        store = FeedStore(str(db_path))
        store.connect()
        store.put_post(
            PEER_A,
            Post("%one.sha256", "hi", "17 May 2021", 1, 1621252800000, "hi"),
        )
        store.close()

        with patch.object(
            FeedService, "posts", autospec=True, side_effect=FeedService.posts
        ) as posts:
            assert run_cli("posts", PEER_A) == 0

        posts.assert_called_once()
        assert "* 17 May 2021  %one.sha256  hi" in capsys.readouterr().out
