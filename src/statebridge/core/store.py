"""In-process state store implementing the StateGateway interface.

Holds a flat tree of states keyed by id and publishes changes to any
number of change feeds. Only ids matching a subscribed pattern are
published, mirroring how a home-automation host delivers state changes
to an adapter.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from typing import Any

import structlog

from statebridge.core.patterns import PatternMatcher, compile_pattern
from statebridge.core.state import StateChange, StateRecord
from statebridge.errors import GatewayError

log = structlog.get_logger()

DEFAULT_MAX_SUBSCRIPTIONS = 1000


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class ChangeFeed:
    """Async iterator over state changes published by a store.

    The feed is registered as soon as it is created, so no change
    published after ``changes()`` returns is missed.
    """

    def __init__(self, store: InMemoryStateStore) -> None:
        self._store = store
        self._queue: asyncio.Queue[StateChange | None] = asyncio.Queue()
        self._closed = False

    def publish(self, change: StateChange) -> None:
        if not self._closed:
            self._queue.put_nowait(change)

    def close(self) -> None:
        """Stop the feed; pending iteration ends after queued changes."""
        if self._closed:
            return
        self._closed = True
        self._store._detach(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> ChangeFeed:
        return self

    async def __anext__(self) -> StateChange:
        change = await self._queue.get()
        if change is None:
            raise StopAsyncIteration
        return change


class InMemoryStateStore:
    """State store kept in process memory.

    Example:
        store = InMemoryStateStore({"light.kitchen": True})
        await store.subscribe("light.*")
        feed = store.changes()
        await store.write_state("light.kitchen", False, ack=True)
        change = await anext(feed)
    """

    def __init__(
        self,
        states: Mapping[str, Any] | None = None,
        *,
        create_missing: bool = False,
        max_subscriptions: int = DEFAULT_MAX_SUBSCRIPTIONS,
    ) -> None:
        """Initialize the store.

        Args:
            states: Seed values keyed by id. A mapping with a ``val`` key
                is read as ``{val, ack}``; anything else is a bare value.
            create_missing: Allow writes to ids that do not exist yet
            max_subscriptions: Upper bound on distinct subscribed patterns
        """
        self._states: dict[str, StateRecord] = {}
        self._subscriptions: dict[str, PatternMatcher] = {}
        self._feeds: list[ChangeFeed] = []
        self._create_missing = create_missing
        self._max_subscriptions = max_subscriptions

        now = _now_ms()
        for state_id, seed in (states or {}).items():
            if isinstance(seed, Mapping) and "val" in seed:
                value, ack = seed["val"], bool(seed.get("ack", True))
            else:
                value, ack = seed, True
            self._states[state_id] = StateRecord(state_id, value, now, now, ack)

    @property
    def subscriptions(self) -> list[str]:
        """Subscribed patterns in registration order."""
        return list(self._subscriptions)

    def __contains__(self, state_id: object) -> bool:
        return state_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    async def resolve_ids(self, pattern: str) -> list[str]:
        matcher = compile_pattern(pattern)
        return sorted(state_id for state_id in self._states if matcher.matches(state_id))

    async def read_state(self, state_id: str) -> StateRecord | None:
        return self._states.get(state_id)

    async def write_state(self, state_id: str, value: Any, ack: bool = False) -> None:
        self.set_state(state_id, value, ack)

    async def subscribe(self, pattern: str) -> None:
        if not isinstance(pattern, str):
            raise GatewayError(f"Invalid pattern: {pattern!r}")
        if pattern in self._subscriptions:
            return
        if len(self._subscriptions) >= self._max_subscriptions:
            raise GatewayError(f"Subscription limit reached: {self._max_subscriptions}")
        self._subscriptions[pattern] = compile_pattern(pattern)

    def changes(self) -> ChangeFeed:
        feed = ChangeFeed(self)
        self._feeds.append(feed)
        return feed

    def set_state(self, state_id: str, value: Any, ack: bool = False) -> StateRecord:
        """Write a state synchronously and publish the change.

        Raises:
            GatewayError: If the id is unknown and creation is disabled
        """
        previous = self._states.get(state_id)
        if previous is None and not self._create_missing:
            raise GatewayError(f"State not found: {state_id}")

        now = _now_ms()
        if previous is not None and previous.value == value:
            last_change = previous.last_change
        else:
            last_change = now

        record = StateRecord(state_id, value, now, last_change, ack)
        self._states[state_id] = record
        self._publish(StateChange(state_id, record))
        return record

    def delete_state(self, state_id: str) -> None:
        """Remove a state and publish a deletion."""
        if self._states.pop(state_id, None) is not None:
            self._publish(StateChange(state_id, None))

    def close(self) -> None:
        """End every open change feed."""
        for feed in list(self._feeds):
            feed.close()

    def _publish(self, change: StateChange) -> None:
        if not any(m.matches(change.id) for m in self._subscriptions.values()):
            return
        log.debug("State changed", id=change.id, feeds=len(self._feeds))
        for feed in self._feeds:
            feed.publish(change)

    def _detach(self, feed: ChangeFeed) -> None:
        if feed in self._feeds:
            self._feeds.remove(feed)
