"""WebSocket protocol messages for client-server communication.

This module defines the JSON message protocol used between the bridge
and connected clients. Every frame is a UTF-8 JSON object with a
``type`` field.

Message Types:
    Server → Client:
        - hello: Greeting with adapter name and time, first frame
        - snapshot: Current states of all exposed ids, second frame
        - structure: Structure document, second frame in structure mode
        - state: Live state change
        - getResult: Reply to get
        - subscribed: Reply to subscribe
        - setResult: Reply to setState
        - error: Error responses

    Client → Server:
        - get: Read states by id
        - subscribe: Subscribe to ids or patterns
        - setState: Write a state (when writes are enabled)
        - getStructure: Request the structure document
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from statebridge.errors import ProtocolError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from statebridge.core.state import StateRecord


class ServerMessageType(str, Enum):
    """Types of messages sent from server to client."""

    HELLO = "hello"
    SNAPSHOT = "snapshot"
    STRUCTURE = "structure"
    STATE = "state"
    GET_RESULT = "getResult"
    SUBSCRIBED = "subscribed"
    SET_RESULT = "setResult"
    ERROR = "error"


class RequestType(str, Enum):
    """Valid request types from client."""

    GET = "get"
    SUBSCRIBE = "subscribe"
    SET_STATE = "setState"
    GET_STRUCTURE = "getStructure"


@dataclass
class ServerMessage:
    """Message sent from server to client.

    Attributes:
        type: Message type
        payload: Message-specific data, flattened next to ``type``
    """

    type: ServerMessageType
    payload: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize message to JSON string."""
        return json.dumps({"type": self.type.value, **self.payload}, default=str)


# Client requests


@dataclass(frozen=True)
class GetRequest:
    """Read the current state of each id."""

    ids: list[str]


@dataclass(frozen=True)
class SubscribeRequest:
    """Subscribe to ids or wildcard patterns."""

    ids: list[str]


@dataclass(frozen=True)
class SetStateRequest:
    """Write a value to one id."""

    id: str
    value: Any = None
    ack: bool = False


@dataclass(frozen=True)
class GetStructureRequest:
    """Ask for the structure document."""


@dataclass(frozen=True)
class UnknownRequest:
    """Well-formed JSON object that matches no request shape."""

    type: str | None
    reason: str


ClientMessage = (
    GetRequest | SubscribeRequest | SetStateRequest | GetStructureRequest | UnknownRequest
)


def _string_list(value: Any) -> list[str] | None:
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    return None


def parse_client_message(data: str | bytes) -> ClientMessage:
    """Parse a client frame into a request variant.

    Args:
        data: Raw text (or UTF-8 bytes) of one frame

    Returns:
        The matching request, or UnknownRequest if the object has no
        recognized shape

    Raises:
        ProtocolError: If the frame is not a JSON object
    """
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        parsed = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise ProtocolError("Request must be a JSON object")

    msg_type = parsed.get("type")
    if not isinstance(msg_type, str):
        return UnknownRequest(type=None, reason="missing 'type'")

    match msg_type:
        case RequestType.GET.value:
            ids = _string_list(parsed.get("ids"))
            if ids is None:
                return UnknownRequest(type=msg_type, reason="'ids' must be a list of strings")
            return GetRequest(ids=ids)

        case RequestType.SUBSCRIBE.value:
            ids = _string_list(parsed.get("ids"))
            if ids is None:
                return UnknownRequest(type=msg_type, reason="'ids' must be a list of strings")
            return SubscribeRequest(ids=ids)

        case RequestType.SET_STATE.value:
            state_id = parsed.get("id")
            if not isinstance(state_id, str):
                return UnknownRequest(type=msg_type, reason="'id' must be a string")
            return SetStateRequest(
                id=state_id,
                value=parsed.get("value"),
                ack=parsed.get("ack") is True,
            )

        case RequestType.GET_STRUCTURE.value:
            return GetStructureRequest()

    return UnknownRequest(type=msg_type, reason=f"unknown type '{msg_type}'")


# Factory functions for creating server messages


def make_hello(adapter: str, now: datetime | None = None) -> ServerMessage:
    """Create the greeting sent first on every accepted connection.

    Args:
        adapter: Adapter name to announce
        now: Timestamp to send (defaults to current UTC time)
    """
    now = now or datetime.now(timezone.utc)
    return ServerMessage(
        type=ServerMessageType.HELLO,
        payload={"adapter": adapter, "time": now.isoformat()},
    )


def make_snapshot(records: Iterable[StateRecord]) -> ServerMessage:
    """Create snapshot message with the current exposed states."""
    return ServerMessage(
        type=ServerMessageType.SNAPSHOT,
        payload={"items": [r.to_wire() for r in records]},
    )


def make_state(record: StateRecord) -> ServerMessage:
    """Create live state change message."""
    return ServerMessage(type=ServerMessageType.STATE, payload=record.to_wire())


def make_get_result(records: Iterable[StateRecord]) -> ServerMessage:
    """Create reply to a get request, items in request order."""
    return ServerMessage(
        type=ServerMessageType.GET_RESULT,
        payload={"items": [r.to_wire() for r in records]},
    )


def make_subscribed(ids: list[str]) -> ServerMessage:
    """Create confirmation that a subscribe request was processed."""
    return ServerMessage(type=ServerMessageType.SUBSCRIBED, payload={"ids": list(ids)})


def make_set_result(state_id: str, ok: bool, error: str | None = None) -> ServerMessage:
    """Create reply to a setState request.

    Args:
        state_id: Id that was written
        ok: Whether the write succeeded
        error: Error description when the write failed
    """
    payload: dict[str, Any] = {"ok": ok, "id": state_id}
    if not ok:
        payload["error"] = error or "unknown error"
    return ServerMessage(type=ServerMessageType.SET_RESULT, payload=payload)


def make_structure(document: dict[str, Any]) -> ServerMessage:
    """Create structure message carrying the document verbatim."""
    return ServerMessage(type=ServerMessageType.STRUCTURE, payload={"structure": document})


def make_error(message: str) -> ServerMessage:
    """Create error response message."""
    return ServerMessage(type=ServerMessageType.ERROR, payload={"message": message})
