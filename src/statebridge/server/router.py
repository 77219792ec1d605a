"""Dispatch of client requests to their handlers."""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any

import structlog

from statebridge.core.config import SubscriptionScope, UnknownRequestPolicy
from statebridge.errors import ProtocolError
from statebridge.server.protocol import (
    GetRequest,
    GetStructureRequest,
    ServerMessage,
    SetStateRequest,
    SubscribeRequest,
    UnknownRequest,
    make_error,
    make_get_result,
    make_set_result,
    make_structure,
    make_subscribed,
    parse_client_message,
)
from statebridge.server.snapshot import read_record

if TYPE_CHECKING:
    from statebridge.core.state import StateGateway
    from statebridge.core.structure import StructureSource
    from statebridge.server.session import Session


log = structlog.get_logger()

UNKNOWN_REQUEST = "unknown request"

RequestHandler = Callable[[Any, Any], Coroutine[Any, Any, ServerMessage | None]]


class RequestRouter:
    """Parses client frames and answers them.

    Replies go only to the session that sent the request. Frames that are
    not JSON objects are dropped without reply; objects of unknown shape
    get an error reply unless the policy says to ignore them.
    """

    def __init__(
        self,
        gateway: StateGateway,
        *,
        allow_write: bool = False,
        structure: StructureSource | None = None,
        unknown_requests: UnknownRequestPolicy = UnknownRequestPolicy.ERROR,
        scope: SubscriptionScope = SubscriptionScope.GLOBAL,
    ) -> None:
        self._gateway = gateway
        self._allow_write = allow_write
        self._structure = structure
        self._unknown_requests = unknown_requests
        self._scope = scope

        # Handlers registered by request variant
        self._handlers: dict[type, RequestHandler] = {
            GetRequest: self._handle_get,
            SubscribeRequest: self._handle_subscribe,
            SetStateRequest: self._handle_set_state,
            UnknownRequest: self._handle_unknown,
        }
        if structure is not None:
            self._handlers[GetStructureRequest] = self._handle_get_structure

    async def handle(self, session: Session, message: str | bytes) -> ServerMessage | None:
        """Handle one inbound frame.

        Returns:
            The reply that was queued for the session, or None
        """
        try:
            request = parse_client_message(message)
        except ProtocolError as e:
            log.debug("Dropped malformed message", remote=session.remote, error=str(e))
            return None

        handler = self._handlers.get(type(request), self._handle_unknown)
        response = await handler(session, request)
        if response is not None:
            session.enqueue(response.to_json())
        return response

    # Request handlers

    async def _handle_get(self, _session: Session, request: GetRequest) -> ServerMessage:
        """Read each id in order; unknown ids come back with null fields."""
        records = [await read_record(self._gateway, state_id) for state_id in request.ids]
        return make_get_result(records)

    async def _handle_subscribe(
        self, session: Session, request: SubscribeRequest
    ) -> ServerMessage:
        """Subscribe each id best-effort and confirm the request."""
        for state_id in request.ids:
            try:
                await self._gateway.subscribe(state_id)
            except Exception as e:
                log.debug("Client subscribe failed", remote=session.remote, id=state_id, error=str(e))

        if self._scope is SubscriptionScope.SESSION:
            session.add_subscriptions(request.ids)

        log.info("Client subscribed", remote=session.remote, ids=len(request.ids))
        return make_subscribed(request.ids)

    async def _handle_set_state(
        self, session: Session, request: SetStateRequest
    ) -> ServerMessage | None:
        """Write a state when writes are enabled; otherwise ignore silently."""
        if not self._allow_write:
            log.debug("Write rejected, writes disabled", remote=session.remote, id=request.id)
            return None

        try:
            await self._gateway.write_state(request.id, request.value, request.ack)
        except Exception as e:
            log.warning("Write failed", remote=session.remote, id=request.id, error=str(e))
            return make_set_result(request.id, ok=False, error=str(e))

        log.debug("State written", remote=session.remote, id=request.id)
        return make_set_result(request.id, ok=True)

    async def _handle_get_structure(
        self, session: Session, request: GetStructureRequest
    ) -> ServerMessage | None:
        if self._structure is None:
            return await self._handle_unknown(session, request)
        return make_structure(self._structure.current())

    async def _handle_unknown(self, session: Session, request: Any) -> ServerMessage | None:
        reason = getattr(request, "reason", "unsupported request")
        log.debug("Unknown request", remote=session.remote, reason=reason)
        if self._unknown_requests is UnknownRequestPolicy.IGNORE:
            return None
        return make_error(UNKNOWN_REQUEST)
