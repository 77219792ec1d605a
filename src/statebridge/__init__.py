"""statebridge - WebSocket bridge for home-automation state stores.

Exposes a whitelisted part of a key/value state tree to any number of
WebSocket clients: a snapshot on connect, live change broadcasts, and a
small request protocol for on-demand reads and writes.
"""

__version__ = "0.1.0"

# Configuration
from statebridge.core.config import BridgeConfig

# Patterns and state
from statebridge.core.patterns import Whitelist, compile_pattern
from statebridge.core.state import StateChange, StateGateway, StateRecord
from statebridge.core.store import InMemoryStateStore

# Errors
from statebridge.errors import (
    AuthError,
    BridgeError,
    DeliveryError,
    GatewayError,
    ProtocolError,
    StartupError,
)

# Server
from statebridge.server.websocket import BridgeServer, ServerConfig

__all__ = [
    # Version
    "__version__",
    # Configuration
    "BridgeConfig",
    # Patterns and state
    "Whitelist",
    "compile_pattern",
    "StateRecord",
    "StateChange",
    "StateGateway",
    "InMemoryStateStore",
    # Errors
    "BridgeError",
    "AuthError",
    "ProtocolError",
    "GatewayError",
    "DeliveryError",
    "StartupError",
    # Server
    "BridgeServer",
    "ServerConfig",
]
