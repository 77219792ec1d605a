"""Point-in-time snapshots of exposed states."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from statebridge.core.state import StateRecord

if TYPE_CHECKING:
    from statebridge.core.patterns import Whitelist
    from statebridge.core.state import StateGateway


log = structlog.get_logger()


class SnapshotBuilder:
    """Collects the current records of every whitelisted state.

    Patterns are resolved in whitelist order; an id matched by several
    patterns appears once, at its first position. A pattern that fails
    to resolve is skipped and an id that fails to read is reported with
    null fields, so one bad entry never aborts the snapshot.
    """

    def __init__(self, gateway: StateGateway, whitelist: Whitelist) -> None:
        self._gateway = gateway
        self._whitelist = whitelist

    async def resolve(self) -> list[str]:
        """Resolve whitelist patterns to unique ids in resolution order."""
        seen: dict[str, None] = {}
        for pattern in self._whitelist.subscription_patterns():
            try:
                ids = await self._gateway.resolve_ids(pattern)
            except Exception as e:
                log.warning("Pattern resolve failed", pattern=pattern, error=str(e))
                continue
            for state_id in ids:
                seen.setdefault(state_id, None)
        return list(seen)

    async def build(self) -> list[StateRecord]:
        """Build the snapshot records."""
        return [await read_record(self._gateway, state_id) for state_id in await self.resolve()]


async def read_record(gateway: StateGateway, state_id: str) -> StateRecord:
    """Read one record, substituting an all-null record when unavailable."""
    try:
        record = await gateway.read_state(state_id)
    except Exception as e:
        log.warning("State read failed", id=state_id, error=str(e))
        record = None
    return record if record is not None else StateRecord.missing(state_id)
