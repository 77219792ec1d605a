"""State records and the state gateway interface."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class StateRecord:
    """Point-in-time value of one state.

    A change produces a new record; records are never mutated in place.

    Attributes:
        id: State id
        value: Current value (any JSON-serializable data)
        timestamp: Time of the last write in ms since epoch
        last_change: Time the value last changed in ms since epoch
        acknowledged: Whether the owning device confirmed the value
    """

    id: str
    value: Any = None
    timestamp: int | None = None
    last_change: int | None = None
    acknowledged: bool | None = None

    @classmethod
    def missing(cls, state_id: str) -> StateRecord:
        """Record for an id with no known state; every field null."""
        return cls(id=state_id)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the client-facing field names."""
        return {
            "id": self.id,
            "val": self.value,
            "ts": self.timestamp,
            "lc": self.last_change,
            "ack": self.acknowledged,
        }


@dataclass(frozen=True, slots=True)
class StateChange:
    """Change notification; ``record`` is None when the state was deleted."""

    id: str
    record: StateRecord | None


@runtime_checkable
class StateGateway(Protocol):
    """Interface to the server-side state store.

    Implementations raise GatewayError for store failures. All calls may
    suspend; the change feed is delivered asynchronously.
    """

    async def resolve_ids(self, pattern: str) -> list[str]:
        """Return all known state ids matching a whitelist pattern."""
        ...

    async def read_state(self, state_id: str) -> StateRecord | None:
        """Return the current record for an id, or None if unknown."""
        ...

    async def write_state(self, state_id: str, value: Any, ack: bool = False) -> None:
        """Write a value and acknowledgement flag to an id."""
        ...

    async def subscribe(self, pattern: str) -> None:
        """Register interest in changes to ids matching a pattern."""
        ...

    def changes(self) -> AsyncIterator[StateChange]:
        """Open a feed of change notifications for subscribed ids."""
        ...
