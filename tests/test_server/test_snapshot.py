"""Tests for snapshot construction."""

from __future__ import annotations

import pytest

from statebridge.core.patterns import Whitelist
from statebridge.core.store import InMemoryStateStore
from statebridge.server.snapshot import SnapshotBuilder, read_record
from tests.conftest import SEED_STATES, FlakyStateStore


class TestSnapshotBuilder:
    """Tests for SnapshotBuilder."""

    @pytest.mark.asyncio
    async def test_resolves_in_whitelist_order(self, store: InMemoryStateStore) -> None:
        builder = SnapshotBuilder(store, Whitelist(["sensor.*", "light.*"]))

        ids = await builder.resolve()

        assert ids == ["sensor.humidity", "sensor.temp", "light.hall", "light.kitchen"]

    @pytest.mark.asyncio
    async def test_duplicates_removed_first_wins(self, store: InMemoryStateStore) -> None:
        builder = SnapshotBuilder(store, Whitelist(["light.kitchen", "light.*"]))

        records = await builder.build()

        assert [r.id for r in records] == ["light.kitchen", "light.hall"]

    @pytest.mark.asyncio
    async def test_records_hold_current_values(self, store: InMemoryStateStore) -> None:
        store.set_state("light.kitchen", True, ack=False)
        builder = SnapshotBuilder(store, Whitelist(["light.kitchen"]))

        (record,) = await builder.build()

        assert record.value is True
        assert record.acknowledged is False

    @pytest.mark.asyncio
    async def test_empty_whitelist_snapshots_everything(self, store: InMemoryStateStore) -> None:
        builder = SnapshotBuilder(store, Whitelist())

        records = await builder.build()

        assert len(records) == len(store)

    @pytest.mark.asyncio
    async def test_no_matches_gives_empty_snapshot(self, store: InMemoryStateStore) -> None:
        builder = SnapshotBuilder(store, Whitelist(["nothing.*"]))

        assert await builder.build() == []

    @pytest.mark.asyncio
    async def test_failed_pattern_skipped(self, flaky_store: FlakyStateStore) -> None:
        builder = SnapshotBuilder(flaky_store, Whitelist(["broken.*", "light.*"]))

        records = await builder.build()

        assert [r.id for r in records] == ["light.hall", "light.kitchen"]

    @pytest.mark.asyncio
    async def test_failed_read_gives_null_record(self, flaky_store: FlakyStateStore) -> None:
        builder = SnapshotBuilder(flaky_store, Whitelist(["sensor.*"]))

        records = await builder.build()

        assert [r.id for r in records] == ["sensor.humidity", "sensor.temp"]
        assert records[0].value is None
        assert records[0].timestamp is None
        assert records[1].value == 21.5

    @pytest.mark.asyncio
    async def test_unexpected_read_error_gives_null_record(self) -> None:
        store = FlakyStateStore(SEED_STATES, bad_ids={"sensor.temp"}, error=TimeoutError)
        builder = SnapshotBuilder(store, Whitelist(["sensor.*", "light.kitchen"]))

        records = await builder.build()

        assert [r.id for r in records] == ["sensor.humidity", "sensor.temp", "light.kitchen"]
        assert records[1].value is None
        assert records[2].value is False

    @pytest.mark.asyncio
    async def test_unexpected_resolve_error_skips_pattern(self) -> None:
        store = FlakyStateStore(SEED_STATES, bad_patterns={"sensor.*"}, error=ConnectionError)
        builder = SnapshotBuilder(store, Whitelist(["sensor.*", "light.*"]))

        records = await builder.build()

        assert [r.id for r in records] == ["light.hall", "light.kitchen"]


class TestReadRecord:
    """Tests for read_record."""

    @pytest.mark.asyncio
    async def test_missing_id_gives_null_record(self, store: InMemoryStateStore) -> None:
        record = await read_record(store, "missing")

        assert record.id == "missing"
        assert record.to_wire()["val"] is None
        assert record.acknowledged is None
