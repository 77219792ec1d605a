"""Tests for request routing."""

from __future__ import annotations

import json

import pytest

from statebridge.core.config import SubscriptionScope, UnknownRequestPolicy
from statebridge.core.store import InMemoryStateStore
from statebridge.core.structure import StructureSource
from statebridge.server.protocol import GetStructureRequest, ServerMessageType
from statebridge.server.router import RequestRouter
from statebridge.server.session import Session
from tests.conftest import SEED_STATES, FlakyStateStore, drain


def request(**fields: object) -> str:
    return json.dumps(fields)


class TestGet:
    """Tests for get requests."""

    @pytest.mark.asyncio
    async def test_items_in_request_order(
        self, store: InMemoryStateStore, session: Session
    ) -> None:
        router = RequestRouter(store)

        await router.handle(session, request(type="get", ids=["sensor.temp", "light.kitchen"]))

        (msg,) = drain(session)
        assert msg["type"] == "getResult"
        assert [item["id"] for item in msg["items"]] == ["sensor.temp", "light.kitchen"]
        assert msg["items"][0]["val"] == 21.5

    @pytest.mark.asyncio
    async def test_missing_id_reported_with_nulls(
        self, store: InMemoryStateStore, session: Session
    ) -> None:
        router = RequestRouter(store)

        await router.handle(session, request(type="get", ids=["light.kitchen", "missing"]))

        (msg,) = drain(session)
        assert len(msg["items"]) == 2
        assert msg["items"][1] == {"id": "missing", "val": None, "ts": None, "lc": None, "ack": None}

    @pytest.mark.asyncio
    async def test_read_failure_reported_with_nulls(
        self, flaky_store: FlakyStateStore, session: Session
    ) -> None:
        router = RequestRouter(flaky_store)

        await router.handle(session, request(type="get", ids=["sensor.humidity"]))

        (msg,) = drain(session)
        assert msg["items"][0]["val"] is None

    @pytest.mark.asyncio
    async def test_unexpected_read_error_still_answered(self, session: Session) -> None:
        store = FlakyStateStore(SEED_STATES, bad_ids={"sensor.temp"}, error=TimeoutError)
        router = RequestRouter(store)

        await router.handle(session, request(type="get", ids=["sensor.temp", "light.hall"]))

        (msg,) = drain(session)
        assert msg["type"] == "getResult"
        assert msg["items"][0] == {"id": "sensor.temp", "val": None, "ts": None, "lc": None, "ack": None}
        assert msg["items"][1]["val"] is True

    @pytest.mark.asyncio
    async def test_empty_ids(self, store: InMemoryStateStore, session: Session) -> None:
        router = RequestRouter(store)

        response = await router.handle(session, request(type="get", ids=[]))

        assert response is not None
        assert response.payload == {"items": []}


class TestSubscribe:
    """Tests for subscribe requests."""

    @pytest.mark.asyncio
    async def test_subscribes_and_confirms(
        self, store: InMemoryStateStore, session: Session
    ) -> None:
        router = RequestRouter(store)

        await router.handle(session, request(type="subscribe", ids=["light.*", "sensor.temp"]))

        assert drain(session) == [{"type": "subscribed", "ids": ["light.*", "sensor.temp"]}]
        assert store.subscriptions == ["light.*", "sensor.temp"]

    @pytest.mark.asyncio
    async def test_failures_swallowed(
        self, flaky_store: FlakyStateStore, session: Session
    ) -> None:
        router = RequestRouter(flaky_store)

        await router.handle(session, request(type="subscribe", ids=["broken.*", "light.*"]))

        assert drain(session) == [{"type": "subscribed", "ids": ["broken.*", "light.*"]}]
        assert flaky_store.subscriptions == ["light.*"]

    @pytest.mark.asyncio
    async def test_unexpected_failure_still_confirmed(self, session: Session) -> None:
        store = FlakyStateStore(SEED_STATES, bad_patterns={"broken.*"}, error=RuntimeError)
        router = RequestRouter(store)

        await router.handle(session, request(type="subscribe", ids=["broken.*", "light.*"]))

        assert drain(session) == [{"type": "subscribed", "ids": ["broken.*", "light.*"]}]
        assert store.subscriptions == ["light.*"]

    @pytest.mark.asyncio
    async def test_limit_reached_still_confirmed(self, session: Session) -> None:
        store = InMemoryStateStore(SEED_STATES, max_subscriptions=1)
        router = RequestRouter(store)

        await router.handle(session, request(type="subscribe", ids=["light.*", "sensor.*"]))

        assert drain(session) == [{"type": "subscribed", "ids": ["light.*", "sensor.*"]}]
        assert store.subscriptions == ["light.*"]

    @pytest.mark.asyncio
    async def test_global_scope_leaves_session_untouched(
        self, store: InMemoryStateStore, session: Session
    ) -> None:
        router = RequestRouter(store)

        await router.handle(session, request(type="subscribe", ids=["light.*"]))

        assert session.subscribed_ids == set()

    @pytest.mark.asyncio
    async def test_session_scope_records_subscriptions(
        self, store: InMemoryStateStore, session: Session
    ) -> None:
        router = RequestRouter(store, scope=SubscriptionScope.SESSION)

        await router.handle(session, request(type="subscribe", ids=["light.*"]))

        assert session.subscribed_ids == {"light.*"}
        assert session.wants("light.kitchen")


class TestSetState:
    """Tests for setState requests."""

    @pytest.mark.asyncio
    async def test_ignored_when_writes_disabled(
        self, store: InMemoryStateStore, session: Session
    ) -> None:
        router = RequestRouter(store, allow_write=False)

        response = await router.handle(
            session, request(type="setState", id="light.kitchen", value=True)
        )

        assert response is None
        assert drain(session) == []
        record = await store.read_state("light.kitchen")
        assert record is not None and record.value is False

    @pytest.mark.asyncio
    async def test_successful_write(self, store: InMemoryStateStore, session: Session) -> None:
        router = RequestRouter(store, allow_write=True)

        await router.handle(
            session, request(type="setState", id="light.kitchen", value=True, ack=True)
        )

        assert drain(session) == [{"type": "setResult", "ok": True, "id": "light.kitchen"}]
        record = await store.read_state("light.kitchen")
        assert record is not None
        assert record.value is True
        assert record.acknowledged is True

    @pytest.mark.asyncio
    async def test_failed_write(self, store: InMemoryStateStore, session: Session) -> None:
        router = RequestRouter(store, allow_write=True)

        await router.handle(session, request(type="setState", id="missing", value=1))

        (msg,) = drain(session)
        assert msg["type"] == "setResult"
        assert msg["ok"] is False
        assert msg["id"] == "missing"
        assert "State not found" in msg["error"]


class TestGetStructure:
    """Tests for getStructure requests."""

    @pytest.mark.asyncio
    async def test_returns_document(self, store: InMemoryStateStore, session: Session) -> None:
        source = StructureSource(document={"floors": [{"name": "Ground"}]})
        router = RequestRouter(store, structure=source)

        await router.handle(session, request(type="getStructure"))

        assert drain(session) == [
            {"type": "structure", "structure": {"floors": [{"name": "Ground"}]}}
        ]

    @pytest.mark.asyncio
    async def test_unknown_without_structure(
        self, store: InMemoryStateStore, session: Session
    ) -> None:
        router = RequestRouter(store)

        await router.handle(session, request(type="getStructure"))

        assert drain(session) == [{"type": "error", "message": "unknown request"}]

    @pytest.mark.asyncio
    async def test_handler_without_source_follows_unknown_policy(
        self, store: InMemoryStateStore, session: Session
    ) -> None:
        router = RequestRouter(store, unknown_requests=UnknownRequestPolicy.IGNORE)

        assert await router._handle_get_structure(session, GetStructureRequest()) is None


class TestMalformedAndUnknown:
    """Tests for malformed and unrecognized requests."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", "", "null"])
    async def test_malformed_dropped_silently(
        self, store: InMemoryStateStore, session: Session, raw: str
    ) -> None:
        router = RequestRouter(store)

        assert await router.handle(session, raw) is None
        assert drain(session) == []

    @pytest.mark.asyncio
    async def test_unknown_gets_error(self, store: InMemoryStateStore, session: Session) -> None:
        router = RequestRouter(store)

        response = await router.handle(session, request(type="reboot"))

        assert response is not None
        assert response.type is ServerMessageType.ERROR
        assert drain(session) == [{"type": "error", "message": "unknown request"}]

    @pytest.mark.asyncio
    async def test_wrong_shape_gets_error(
        self, store: InMemoryStateStore, session: Session
    ) -> None:
        router = RequestRouter(store)

        await router.handle(session, request(type="get", ids="light.kitchen"))

        assert drain(session) == [{"type": "error", "message": "unknown request"}]

    @pytest.mark.asyncio
    async def test_unknown_ignored_by_policy(
        self, store: InMemoryStateStore, session: Session
    ) -> None:
        router = RequestRouter(store, unknown_requests=UnknownRequestPolicy.IGNORE)

        assert await router.handle(session, request(type="reboot")) is None
        assert drain(session) == []
