"""WebSocket server and protocol implementation.

This module provides the WebSocket server for statebridge that enables:
- Token-gated client admission
- Initial snapshot (or structure document) on connect
- Live state change broadcasts filtered by whitelist patterns
- get, subscribe and setState requests
"""

from statebridge.server.broadcast import BroadcastEngine
from statebridge.server.protocol import (
    ClientMessage,
    RequestType,
    ServerMessage,
    ServerMessageType,
    make_error,
    make_get_result,
    make_hello,
    make_set_result,
    make_snapshot,
    make_state,
    make_structure,
    make_subscribed,
    parse_client_message,
)
from statebridge.server.router import RequestRouter
from statebridge.server.session import Session, SessionRegistry
from statebridge.server.snapshot import SnapshotBuilder
from statebridge.server.websocket import BridgeServer, ServerConfig

__all__ = [
    # Protocol
    "ClientMessage",
    "RequestType",
    "ServerMessage",
    "ServerMessageType",
    "parse_client_message",
    "make_error",
    "make_get_result",
    "make_hello",
    "make_set_result",
    "make_snapshot",
    "make_state",
    "make_structure",
    "make_subscribed",
    # Components
    "BroadcastEngine",
    "RequestRouter",
    "Session",
    "SessionRegistry",
    "SnapshotBuilder",
    # WebSocket
    "BridgeServer",
    "ServerConfig",
]
