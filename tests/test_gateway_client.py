"""Tests for the gateway client and follow policy."""

import json

import httpx
import pytest

from lykin.errors import FollowCheckFailed, GatewayError, UnrecognizedResponse
from lykin.gateway import FollowStatus, GatewayClient, RawMessage

from builders import ME, PEER_A, message_dict


class ScriptedGateway:
    """httpx handler answering RPCs from a dict of method -> result."""

    def __init__(self, results: dict, stream_lines: list[str] | None = None):
        self.results = results
        self.stream_lines = stream_lines or []
        self.requests: list[tuple[str, list]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.removeprefix("/rpc/")
        args = json.loads(request.content)["args"]
        self.requests.append((method, args))

        if method == "createHistoryStream":
            body = "\n".join(self.stream_lines) + "\n"
            return httpx.Response(200, content=body.encode("utf-8"))

        result = self.results.get(method)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json={"result": result})

    def methods(self) -> list[str]:
        return [method for method, _ in self.requests]


def make_client(handler) -> GatewayClient:
    return GatewayClient("http://127.0.0.1:8021", transport=httpx.MockTransport(handler))


class TestGatewayClient:
    """Tests for single RPC calls."""

    def test_base_url_trailing_slash_stripped(self):
        client = GatewayClient("http://127.0.0.1:8021/")
        assert client.base_url == "http://127.0.0.1:8021"

    @pytest.mark.asyncio
    async def test_whoami(self):
        gateway = ScriptedGateway({"whoami": {"id": ME}})
        client = make_client(gateway)

        assert await client.whoami() == ME
        await client.close()

    @pytest.mark.asyncio
    async def test_client_is_reused(self):
        gateway = ScriptedGateway({"whoami": {"id": ME}})
        client = make_client(gateway)

        await client.whoami()
        first = client._client
        await client.whoami()

        assert client._client is first
        await client.close()
        assert client._client is None

    @pytest.mark.asyncio
    async def test_get_name(self):
        gateway = ScriptedGateway({"getName": "alice"})
        client = make_client(gateway)

        assert await client.get_name(PEER_A) == "alice"
        assert gateway.requests == [("getName", [PEER_A])]

    @pytest.mark.asyncio
    async def test_error_reply_raises(self):
        gateway = ScriptedGateway(
            {"getName": httpx.Response(500, json={"error": "no such feed"})}
        )
        client = make_client(gateway)

        with pytest.raises(GatewayError, match="no such feed"):
            await client.get_name(PEER_A)

    @pytest.mark.asyncio
    async def test_connection_failure_raises(self):
        gateway = ScriptedGateway({"whoami": httpx.ConnectError("Connection refused")})
        client = make_client(gateway)

        with pytest.raises(GatewayError, match="whoami RPC failed"):
            await client.whoami()

    @pytest.mark.asyncio
    async def test_undecodable_body_raises(self):
        gateway = ScriptedGateway({"whoami": httpx.Response(200, content=b"<html>")})
        client = make_client(gateway)

        with pytest.raises(GatewayError, match="undecodable"):
            await client.whoami()

    @pytest.mark.asyncio
    async def test_follow_sends_public_key(self):
        gateway = ScriptedGateway({"follow": None})
        client = make_client(gateway)

        await client.follow(PEER_A)

        assert gateway.requests == [("follow", [PEER_A])]


class TestFollowStatus:
    """Tests for decoding friends.isFollowing replies."""

    def test_from_response(self):
        assert FollowStatus.from_response("true") is FollowStatus.FOLLOWING
        assert FollowStatus.from_response("false") is FollowStatus.NOT_FOLLOWING
        assert FollowStatus.from_response("maybe") is FollowStatus.UNKNOWN
        assert FollowStatus.from_response(None) is FollowStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_is_following(self):
        gateway = ScriptedGateway({"friends.isFollowing": "true"})
        client = make_client(gateway)

        assert await client.is_following(ME, PEER_A) is True
        assert gateway.requests == [
            ("friends.isFollowing", [{"source": ME, "dest": PEER_A}])
        ]

    @pytest.mark.asyncio
    async def test_is_not_following(self):
        client = make_client(ScriptedGateway({"friends.isFollowing": "false"}))

        assert await client.is_following(ME, PEER_A) is False

    @pytest.mark.asyncio
    async def test_unrecognized_status_raises(self):
        client = make_client(ScriptedGateway({"friends.isFollowing": "yes"}))

        with pytest.raises(UnrecognizedResponse) as exc_info:
            await client.is_following(ME, PEER_A)

        assert exc_info.value.raw == "yes"


class TestFollowPolicy:
    """Tests for follow_if_not_following() and unfollow_if_following()."""

    @pytest.mark.asyncio
    async def test_follow_when_not_following(self):
        gateway = ScriptedGateway({
            "whoami": {"id": ME},
            "friends.isFollowing": "false",
            "follow": None,
        })
        client = make_client(gateway)

        await client.follow_if_not_following(PEER_A)

        assert gateway.methods() == ["whoami", "friends.isFollowing", "follow"]

    @pytest.mark.asyncio
    async def test_follow_twice_follows_once(self):
        """Test the second call is a no-op once the gateway reports following."""
        gateway = ScriptedGateway({
            "whoami": {"id": ME},
            "friends.isFollowing": "false",
            "follow": None,
        })
        client = make_client(gateway)

        await client.follow_if_not_following(PEER_A)
        gateway.results["friends.isFollowing"] = "true"
        await client.follow_if_not_following(PEER_A)

        assert gateway.methods().count("follow") == 1

    @pytest.mark.asyncio
    async def test_unfollow_twice_unfollows_once(self):
        gateway = ScriptedGateway({
            "whoami": {"id": ME},
            "friends.isFollowing": "true",
            "unfollow": None,
        })
        client = make_client(gateway)

        await client.unfollow_if_following(PEER_A)
        gateway.results["friends.isFollowing"] = "false"
        await client.unfollow_if_following(PEER_A)

        assert gateway.methods().count("unfollow") == 1

    @pytest.mark.asyncio
    async def test_whoami_failure_is_follow_check_failure(self):
        gateway = ScriptedGateway({"whoami": httpx.ConnectError("Connection refused")})
        client = make_client(gateway)

        with pytest.raises(FollowCheckFailed, match="go-sbot is running"):
            await client.follow_if_not_following(PEER_A)

        assert "follow" not in gateway.methods()

    @pytest.mark.asyncio
    async def test_unrecognized_status_never_follows_blindly(self):
        gateway = ScriptedGateway({
            "whoami": {"id": ME},
            "friends.isFollowing": "perhaps",
            "follow": None,
        })
        client = make_client(gateway)

        with pytest.raises(FollowCheckFailed, match="unrecognised response"):
            await client.follow_if_not_following(PEER_A)

        assert "follow" not in gateway.methods()

    @pytest.mark.asyncio
    async def test_follow_rpc_failure_raises_gateway_error(self):
        gateway = ScriptedGateway({
            "whoami": {"id": ME},
            "friends.isFollowing": "false",
            "follow": httpx.Response(200, json={"error": "blocked"}),
        })
        client = make_client(gateway)

        with pytest.raises(GatewayError, match="blocked") as exc_info:
            await client.follow_if_not_following(PEER_A)

        assert not isinstance(exc_info.value, FollowCheckFailed)


class TestHistoryStream:
    """Tests for createHistoryStream."""

    @pytest.mark.asyncio
    async def test_stream_yields_messages(self):
        lines = [json.dumps(message_dict(1)), json.dumps(message_dict(2))]
        gateway = ScriptedGateway({}, stream_lines=lines)
        client = make_client(gateway)

        items = [item async for item in client.history_stream(PEER_A, 0)]

        assert all(isinstance(item, RawMessage) for item in items)
        assert [item.sequence for item in items] == [1, 2]

    @pytest.mark.asyncio
    async def test_stream_query(self):
        gateway = ScriptedGateway({})
        client = make_client(gateway)

        _ = [item async for item in client.history_stream(PEER_A, 7)]

        assert gateway.requests == [(
            "createHistoryStream",
            [{"id": PEER_A, "seq": 7, "keys": True, "values": True}],
        )]

    @pytest.mark.asyncio
    async def test_bad_items_yielded_as_errors(self):
        """Test malformed lines become error items instead of aborting."""
        lines = [
            "{not json",
            json.dumps({"error": "decrypt failed"}),
            json.dumps({"key": "%x.sha256", "value": {"content": {}}}),
            "",
            json.dumps(message_dict(3)),
        ]
        client = make_client(ScriptedGateway({}, stream_lines=lines))

        items = [item async for item in client.history_stream(PEER_A, 0)]

        assert len(items) == 4
        assert all(isinstance(item, GatewayError) for item in items[:3])
        assert isinstance(items[3], RawMessage)

    @pytest.mark.asyncio
    async def test_unencodable_key_yielded_as_error(self):
        lines = [
            json.dumps(message_dict(1)),
            json.dumps(message_dict(2, key="%bad\ud800.sha256")),
            json.dumps(message_dict(3)),
        ]
        client = make_client(ScriptedGateway({}, stream_lines=lines))

        items = [item async for item in client.history_stream(PEER_A, 0)]

        assert isinstance(items[1], GatewayError)
        assert [item.sequence for item in items if isinstance(item, RawMessage)] == [1, 3]

    @pytest.mark.asyncio
    async def test_stream_open_failure_raises(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused")

        client = make_client(handler)

        with pytest.raises(GatewayError):
            async for _ in client.history_stream(PEER_A, 0):
                pass

    @pytest.mark.asyncio
    async def test_stream_http_error_raises(self):
        client = make_client(lambda request: httpx.Response(503))

        with pytest.raises(GatewayError, match="503"):
            async for _ in client.history_stream(PEER_A, 0):
                pass
