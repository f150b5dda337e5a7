"""Adapter for the local Scuttlebutt gateway (go-sbot).

Translates synchronization intents into RPC calls and normalizes every
transport or protocol failure into GatewayError.
"""

from .client import FollowStatus, GatewayClient
from .messages import RawMessage

__all__ = ["FollowStatus", "GatewayClient", "RawMessage"]
