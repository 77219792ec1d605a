"""Error taxonomy for the bridge.

Every error raised inside the bridge derives from BridgeError so callers
can tell bridge faults apart from programming errors. Errors that end a
connection carry the WebSocket close code and reason to send.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge errors."""


class AuthError(BridgeError):
    """Connection presented a missing or wrong token."""

    close_code: int = 1008  # policy violation
    close_reason: str = "invalid token"


class ProtocolError(BridgeError, ValueError):
    """Request URL or client message could not be parsed."""

    close_code: int = 1002  # protocol error
    close_reason: str = "bad request"


class GatewayError(BridgeError):
    """A read, write, subscribe or resolve call against the state store failed."""


class DeliveryError(BridgeError):
    """A message could not be queued for a session."""


class StartupError(BridgeError):
    """The bridge could not start, e.g. the listening port is unavailable."""
