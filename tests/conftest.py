"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import MagicMock

import pytest

from statebridge.core.state import StateRecord
from statebridge.core.store import InMemoryStateStore
from statebridge.errors import GatewayError
from statebridge.server.session import Session


SEED_STATES: dict[str, Any] = {
    "light.kitchen": False,
    "light.hall": {"val": True, "ack": True},
    "sensor.temp": 21.5,
    "sensor.humidity": {"val": 48, "ack": False},
    "system.uptime": 0,
}


class FlakyStateStore(InMemoryStateStore):
    """State store whose calls fail or hang for configured ids and patterns.

    Failures raise ``error`` (GatewayError unless given); calls for a
    hanging id or pattern never return.
    """

    def __init__(
        self,
        states: dict[str, Any] | None = None,
        *,
        bad_ids: set[str] | None = None,
        bad_patterns: set[str] | None = None,
        hang_ids: set[str] | None = None,
        hang_patterns: set[str] | None = None,
        error: type[Exception] = GatewayError,
    ) -> None:
        super().__init__(states)
        self.bad_ids = bad_ids or set()
        self.bad_patterns = bad_patterns or set()
        self.hang_ids = hang_ids or set()
        self.hang_patterns = hang_patterns or set()
        self.error = error
        self.hanging = 0

    async def _hang(self) -> None:
        self.hanging += 1
        await asyncio.Event().wait()

    async def resolve_ids(self, pattern: str) -> list[str]:
        if pattern in self.bad_patterns:
            raise self.error(f"Cannot resolve {pattern}")
        if pattern in self.hang_patterns:
            await self._hang()
        return await super().resolve_ids(pattern)

    async def read_state(self, state_id: str) -> StateRecord | None:
        if state_id in self.bad_ids:
            raise self.error(f"Cannot read {state_id}")
        if state_id in self.hang_ids:
            await self._hang()
        return await super().read_state(state_id)

    async def write_state(self, state_id: str, value: Any, ack: bool = False) -> None:
        if state_id in self.bad_ids:
            raise self.error(f"Cannot write {state_id}")
        await super().write_state(state_id, value, ack)

    async def subscribe(self, pattern: str) -> None:
        if pattern in self.bad_patterns:
            raise self.error(f"Cannot subscribe {pattern}")
        await super().subscribe(pattern)


def drain(session: Session) -> list[dict[str, Any]]:
    """Pop every queued message from an unstarted session, decoded."""
    messages = []
    while True:
        try:
            text = session._queue.get_nowait()
        except asyncio.QueueEmpty:
            return messages
        if text is not None:
            messages.append(json.loads(text))


@pytest.fixture
def store() -> InMemoryStateStore:
    """Create a state store with test states."""
    return InMemoryStateStore(SEED_STATES)


@pytest.fixture
def flaky_store() -> FlakyStateStore:
    """Create a state store that fails for some ids and patterns."""
    return FlakyStateStore(
        SEED_STATES,
        bad_ids={"sensor.humidity"},
        bad_patterns={"broken.*"},
    )


@pytest.fixture
def session() -> Session:
    """Create a session over a mock connection (writer not started)."""
    return Session(MagicMock(), remote="test")
