"""Client for the local Scuttlebutt gateway.

The gateway exposes its muxrpc methods over a loopback HTTP bridge:
``POST /rpc/<method>`` with a JSON body ``{"args": [...]}``. Async methods
answer with ``{"result": ...}`` or ``{"error": "..."}``; source methods answer
with newline-delimited JSON, one item per line.
"""

import json
import logging
from enum import Enum
from typing import Any, AsyncIterator

import httpx

from ..errors import FollowCheckFailed, GatewayError, UnrecognizedResponse
from .messages import RawMessage

logger = logging.getLogger(__name__)


class FollowStatus(Enum):
    """Decoded reply of ``friends.isFollowing``."""

    FOLLOWING = "true"
    NOT_FOLLOWING = "false"
    UNKNOWN = "unknown"

    @classmethod
    def from_response(cls, raw: Any) -> "FollowStatus":
        if raw == "true":
            return cls.FOLLOWING
        if raw == "false":
            return cls.NOT_FOLLOWING
        return cls.UNKNOWN


class GatewayClient:
    """Client for the gateway RPC surface.

    The underlying HTTP client is created on first use and reused for every
    call until close() is called; a later call reconnects.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8021",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the gateway client.

        Args:
            base_url: Base URL of the gateway bridge.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _call(self, method: str, *args: Any) -> Any:
        """Issue one async RPC and return its result.

        Raises:
            GatewayError: On transport failure, HTTP error status, an
                undecodable body or an error reply.
        """
        client = await self._get_client()

        try:
            response = await client.post(f"/rpc/{method}", json={"args": list(args)})
        except httpx.HTTPError as e:
            raise GatewayError(f"{method} RPC failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError(
                f"{method} RPC returned an undecodable body "
                f"(HTTP {response.status_code})"
            ) from e

        if isinstance(body, dict) and body.get("error"):
            raise GatewayError(f"{method} RPC error: {body['error']}")
        if response.status_code >= 400:
            raise GatewayError(f"{method} RPC failed: HTTP {response.status_code}")
        if not isinstance(body, dict) or "result" not in body:
            raise UnrecognizedResponse(f"{method} RPC returned no result", raw=body)

        return body["result"]

    # ==================== RPC Methods ====================

    async def whoami(self) -> str:
        """Return the public key of the local gateway identity."""
        result = await self._call("whoami")
        if isinstance(result, dict):
            result = result.get("id")
        if not isinstance(result, str) or not result:
            raise UnrecognizedResponse("whoami returned no identity", raw=result)
        return result

    async def follow_status(self, source: str, dest: str) -> FollowStatus:
        """Check whether source follows dest."""
        result = await self._call("friends.isFollowing", {"source": source, "dest": dest})
        return FollowStatus.from_response(result)

    async def is_following(self, source: str, dest: str) -> bool:
        """Check whether source follows dest.

        Raises:
            UnrecognizedResponse: If the reply is neither "true" nor "false".
        """
        result = await self._call("friends.isFollowing", {"source": source, "dest": dest})
        status = FollowStatus.from_response(result)
        if status is FollowStatus.UNKNOWN:
            raise UnrecognizedResponse(
                f"Unrecognised follow status: {result!r}", raw=result
            )
        return status is FollowStatus.FOLLOWING

    async def follow(self, public_key: str) -> None:
        await self._call("follow", public_key)

    async def unfollow(self, public_key: str) -> None:
        await self._call("unfollow", public_key)

    async def get_name(self, public_key: str) -> str:
        """Return the self-assigned name of a peer.

        The gateway returns the public key itself when no name is known.
        """
        result = await self._call("getName", public_key)
        if not isinstance(result, str):
            raise UnrecognizedResponse("getName returned a non-string", raw=result)
        return result

    async def history_stream(
        self, public_key: str, after_sequence: int = 0
    ) -> AsyncIterator[RawMessage | GatewayError]:
        """Stream the messages authored by a peer.

        Malformed or errored items are yielded as GatewayError instances so
        the consumer can skip them. Failing to open the stream, or losing the
        connection mid-stream, raises GatewayError.
        """
        client = await self._get_client()
        query = {
            "id": public_key,
            "seq": after_sequence,
            "keys": True,
            "values": True,
        }

        try:
            async with client.stream(
                "POST", "/rpc/createHistoryStream", json={"args": [query]}
            ) as response:
                if response.status_code >= 400:
                    raise GatewayError(
                        f"createHistoryStream failed: HTTP {response.status_code}"
                    )

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    yield _parse_stream_item(line)
        except httpx.HTTPError as e:
            raise GatewayError(f"createHistoryStream failed: {e}") from e

    # ==================== Follow Policy ====================

    async def _relationship_to(self, public_key: str) -> FollowStatus:
        try:
            whoami = await self.whoami()
        except GatewayError as e:
            raise FollowCheckFailed(
                "Received an error during `whoami` RPC call. "
                "Please ensure the go-sbot is running and try again"
            ) from e

        try:
            status = await self.follow_status(whoami, public_key)
        except GatewayError as e:
            raise FollowCheckFailed(
                f"Failed to determine follow status: {e}"
            ) from e

        if status is FollowStatus.UNKNOWN:
            raise FollowCheckFailed(
                "Failed to determine follow status: "
                "received unrecognised response from local sbot"
            )
        return status

    async def follow_if_not_following(self, public_key: str) -> None:
        """Follow a peer unless the local identity already follows it.

        Raises:
            FollowCheckFailed: If the follow status could not be determined.
            GatewayError: If the follow RPC itself failed.
        """
        status = await self._relationship_to(public_key)
        if status is FollowStatus.FOLLOWING:
            logger.info(f"Already following peer {public_key}. No further action taken")
            return

        try:
            await self.follow(public_key)
        except GatewayError as e:
            logger.warning(f"Failed to follow peer {public_key}: {e}")
            raise
        logger.info(f"Followed peer {public_key}")

    async def unfollow_if_following(self, public_key: str) -> None:
        """Unfollow a peer if the local identity follows it.

        Raises:
            FollowCheckFailed: If the follow status could not be determined.
            GatewayError: If the unfollow RPC itself failed.
        """
        status = await self._relationship_to(public_key)
        if status is FollowStatus.NOT_FOLLOWING:
            logger.info(f"Not following peer {public_key}. No further action taken")
            return

        try:
            await self.unfollow(public_key)
        except GatewayError as e:
            logger.warning(f"Failed to unfollow peer {public_key}: {e}")
            raise
        logger.info(f"Unfollowed peer {public_key}")


def _parse_stream_item(line: str) -> RawMessage | GatewayError:
    """Decode one line of a history stream."""
    try:
        item = json.loads(line)
    except json.JSONDecodeError as e:
        return GatewayError(f"Undecodable stream item: {e}")

    if isinstance(item, dict) and "error" in item:
        return GatewayError(f"Stream item error: {item['error']}")

    try:
        return RawMessage.from_dict(item)
    except ValueError as e:
        return GatewayError(str(e))
