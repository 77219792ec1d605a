"""Fan-out of state changes to connected sessions."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog

from statebridge.core.config import SubscriptionScope
from statebridge.errors import DeliveryError
from statebridge.server.protocol import make_state

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from statebridge.core.patterns import Whitelist
    from statebridge.core.state import StateChange, StateGateway
    from statebridge.server.session import SessionRegistry


log = structlog.get_logger()


class BroadcastEngine:
    """Consumes the gateway change feed and pushes changes to sessions.

    Deleted states are never broadcast. When a whitelist is configured a
    change must match one of its patterns. Each surviving change is
    serialized once and queued on every eligible session; a failure to
    queue on one session never affects the others.

    Example:
        engine = BroadcastEngine(gateway, whitelist, registry)
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        gateway: StateGateway,
        whitelist: Whitelist,
        registry: SessionRegistry,
        scope: SubscriptionScope = SubscriptionScope.GLOBAL,
    ) -> None:
        self._gateway = gateway
        self._whitelist = whitelist
        self._registry = registry
        self._scope = scope
        self._task: asyncio.Task[None] | None = None
        self._feed: AsyncIterator[StateChange] | None = None

        self.delivered = 0
        self.dropped = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def subscribe_whitelist(self) -> list[str]:
        """Subscribe the gateway to every whitelist pattern.

        Returns:
            Patterns that were subscribed successfully
        """
        subscribed: list[str] = []
        for pattern in self._whitelist.subscription_patterns():
            try:
                await self._gateway.subscribe(pattern)
            except Exception as e:
                log.warning("Subscribe failed", pattern=pattern, error=str(e))
                continue
            log.info("Subscribed", pattern=pattern)
            subscribed.append(pattern)
        return subscribed

    async def start(self) -> None:
        """Subscribe the whitelist and start consuming changes."""
        if self.is_running:
            return
        await self.subscribe_whitelist()
        self._feed = self._gateway.changes()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop consuming changes."""
        if self._feed is not None and hasattr(self._feed, "close"):
            with contextlib.suppress(Exception):
                self._feed.close()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._feed = None

    async def _run(self) -> None:
        feed = self._feed
        if feed is None:
            return
        try:
            async for change in feed:
                try:
                    self.publish(change)
                except Exception as e:
                    log.error("Broadcast failed", id=change.id, error=str(e))
        except Exception as e:
            log.error("Change feed failed", error=str(e))

    def publish(self, change: StateChange) -> int:
        """Deliver one change to every eligible session.

        Returns:
            Number of sessions the change was queued on
        """
        if change.record is None:
            return 0
        if not self._whitelist.allows(change.id):
            return 0

        text = make_state(change.record).to_json()

        count = 0
        for session in self._registry.snapshot():
            if self._scope is SubscriptionScope.SESSION and not session.wants(change.id):
                continue
            try:
                session.push_update(text)
            except DeliveryError as e:
                self.dropped += 1
                log.debug("Delivery dropped", remote=session.remote, id=change.id, error=str(e))
                continue
            count += 1

        self.delivered += count
        return count
