"""Core configuration, pattern matching and state store for statebridge."""

from statebridge.core.config import (
    BridgeConfig,
    BridgeSettings,
    ServerConfig,
    StructureConfig,
    SubscriptionScope,
    UnknownRequestPolicy,
)
from statebridge.core.patterns import PatternMatcher, Whitelist, compile_pattern, id_matches_pattern
from statebridge.core.state import StateChange, StateGateway, StateRecord
from statebridge.core.store import ChangeFeed, InMemoryStateStore
from statebridge.core.structure import StructureDocument, StructureSource

__all__ = [
    # Configuration
    "BridgeConfig",
    "BridgeSettings",
    "ServerConfig",
    "StructureConfig",
    "SubscriptionScope",
    "UnknownRequestPolicy",
    # Patterns
    "PatternMatcher",
    "Whitelist",
    "compile_pattern",
    "id_matches_pattern",
    # State
    "StateRecord",
    "StateChange",
    "StateGateway",
    "InMemoryStateStore",
    "ChangeFeed",
    # Structure
    "StructureDocument",
    "StructureSource",
]
