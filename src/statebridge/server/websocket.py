"""WebSocket server bridging the state store to clients.

This module provides the BridgeServer class: it admits connections that
present the shared token, greets them with a hello and the initial
snapshot (or structure document), answers their requests, and streams
live state changes to them.

Architecture:
    ┌──────────────────────────────────────────────┐
    │                 BridgeServer                 │
    ├──────────────────────────────────────────────┤
    │  ┌──────────────┐        ┌────────────────┐  │
    │  │   Session    │◄───────│   Broadcast    │  │
    │  │   Registry   │        │    Engine      │  │
    │  └──────────────┘        └────────────────┘  │
    │         │  ┌──────────┐  ┌──────────┐  ▲     │
    │         │  │ Request  │  │ Snapshot │  │     │
    │         │  │  Router  │  │ Builder  │  │     │
    │         ▼  └──────────┘  └──────────┘  │     │
    │  ┌─────────────────────────────────────────┐ │
    │  │              State Gateway              │ │
    │  └─────────────────────────────────────────┘ │
    └──────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlsplit

import structlog
import websockets
from websockets.asyncio.server import Server, ServerConnection, serve

from statebridge.core.config import (
    DEFAULT_ADAPTER_NAME,
    DEFAULT_PORT,
    SubscriptionScope,
    UnknownRequestPolicy,
)
from statebridge.core.patterns import Whitelist
from statebridge.errors import AuthError, DeliveryError, ProtocolError, StartupError
from statebridge.server.broadcast import BroadcastEngine
from statebridge.server.protocol import make_hello, make_snapshot, make_structure
from statebridge.server.router import RequestRouter
from statebridge.server.session import Session, SessionRegistry
from statebridge.server.snapshot import SnapshotBuilder

if TYPE_CHECKING:
    from statebridge.core.config import BridgeConfig
    from statebridge.core.state import StateGateway
    from statebridge.core.structure import StructureSource


log = structlog.get_logger()


@dataclass
class ServerConfig:
    """Configuration for BridgeServer.

    Attributes:
        host: Host to bind to
        port: Port to listen on
        token: Shared token required as ``?token=``; empty disables auth
        adapter_name: Name announced in the hello message
        expose_states: Whitelist patterns; empty exposes everything
        allow_write: Whether setState requests are processed
        unknown_requests: Reply policy for unrecognized requests
        subscription_scope: Broadcast delivery policy
        send_queue_size: Outbound queue bound per session
    """

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    token: str = ""
    adapter_name: str = DEFAULT_ADAPTER_NAME
    expose_states: list[str] = field(default_factory=list)
    allow_write: bool = False
    unknown_requests: UnknownRequestPolicy = UnknownRequestPolicy.ERROR
    subscription_scope: SubscriptionScope = SubscriptionScope.GLOBAL
    send_queue_size: int = 1000

    @classmethod
    def from_bridge_config(cls, config: BridgeConfig, port: int | None = None) -> ServerConfig:
        """Build server settings from a loaded configuration file.

        Args:
            config: Parsed configuration
            port: Optional port overriding the configured one
        """
        return cls(
            host=config.server.host,
            port=port if port is not None else config.server.port,
            token=config.server.token,
            adapter_name=config.server.adapter_name,
            expose_states=list(config.bridge.expose_states),
            allow_write=config.bridge.allow_write,
            unknown_requests=config.bridge.unknown_requests,
            subscription_scope=config.bridge.subscription_scope,
            send_queue_size=config.server.send_queue_size,
        )


def parse_token(path: str | None) -> str:
    """Extract the ``token`` query parameter from a request path.

    Raises:
        ProtocolError: If the path cannot be parsed
    """
    if path is None:
        raise ProtocolError("Missing request path")
    try:
        query = urlsplit(path).query
        params = parse_qs(query, keep_blank_values=True, errors="strict")
    except ValueError as e:
        raise ProtocolError(f"Invalid request URL: {e}") from e
    values = params.get("token")
    return values[0] if values else ""


def check_admission(path: str | None, token: str) -> None:
    """Admit or reject a connection by its request path.

    Raises:
        ProtocolError: If the path cannot be parsed
        AuthError: If a token is configured and the supplied one differs
    """
    supplied = parse_token(path)
    if token and supplied != token:
        raise AuthError("Token mismatch")


class BridgeServer:
    """WebSocket server exposing state store contents to clients.

    Example:
        server = BridgeServer(store, ServerConfig(expose_states=["light.*"]))
        await server.start_background()
        ...
        await server.stop()
    """

    def __init__(
        self,
        gateway: StateGateway,
        config: ServerConfig | None = None,
        structure: StructureSource | None = None,
    ) -> None:
        """Initialize the bridge server.

        Args:
            gateway: State store to read, write and watch
            config: Server configuration
            structure: Structure source; when given, clients receive the
                structure document instead of a snapshot on connect
        """
        self._gateway = gateway
        self._config = config or ServerConfig()
        self._structure = structure

        self._whitelist = Whitelist(self._config.expose_states)
        self._registry = SessionRegistry()
        self._snapshots = SnapshotBuilder(gateway, self._whitelist)
        self._broadcast = BroadcastEngine(
            gateway,
            self._whitelist,
            self._registry,
            scope=self._config.subscription_scope,
        )
        self._router = RequestRouter(
            gateway,
            allow_write=self._config.allow_write,
            structure=structure,
            unknown_requests=self._config.unknown_requests,
            scope=self._config.subscription_scope,
        )

        self._server: Server | None = None
        self._running = False

    @property
    def client_count(self) -> int:
        """Number of connected clients."""
        return len(self._registry)

    @property
    def is_running(self) -> bool:
        """Whether the server is currently running."""
        return self._running

    @property
    def port(self) -> int | None:
        """Port actually bound, or None when not listening."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def broadcast(self) -> BroadcastEngine:
        return self._broadcast

    async def start(self) -> None:
        """Start the server and run until it is closed."""
        await self.start_background()
        if self._server is not None:
            await self._server.serve_forever()

    async def start_background(self) -> None:
        """Subscribe the whitelist, start broadcasting and listen.

        Returns immediately; use stop() to shut down.

        Raises:
            StartupError: If the listening port cannot be bound
        """
        await self._broadcast.start()

        try:
            self._server = await serve(
                self._handle_client,
                self._config.host,
                self._config.port,
            )
        except OSError as e:
            log.error(
                "Cannot bind listening socket",
                host=self._config.host,
                port=self._config.port,
                error=str(e),
            )
            await self._broadcast.stop()
            raise StartupError(
                f"Cannot listen on {self._config.host}:{self._config.port}: {e}"
            ) from e

        self._running = True
        log.info(
            "WebSocket server listening",
            host=self._config.host,
            port=self.port,
            whitelist=list(self._whitelist.patterns),
        )

    async def stop(self) -> None:
        """Terminate every client connection and close the listener.

        Never raises; teardown always completes.
        """
        log.info("Stopping server", clients=len(self._registry))
        self._running = False

        with contextlib.suppress(Exception):
            await self._broadcast.stop()

        for session in self._registry.clear():
            with contextlib.suppress(Exception):
                session.terminate()

        if self._server is not None:
            with contextlib.suppress(Exception):
                self._server.close()
                await self._server.wait_closed()
            self._server = None

    async def _handle_client(self, ws: ServerConnection) -> None:
        """Handle a new client connection."""
        remote = str(ws.remote_address) if ws.remote_address else "unknown"
        path = ws.request.path if ws.request is not None else None

        try:
            check_admission(path, self._config.token)
        except (AuthError, ProtocolError) as e:
            log.warning("Connection rejected", remote=remote, reason=e.close_reason)
            with contextlib.suppress(Exception):
                await ws.close(e.close_code, e.close_reason)
            return

        session = Session(ws, remote=remote, queue_size=self._config.send_queue_size)
        session.authenticated = True
        self._registry.add(session)
        session.start()

        log.info("Client connected", remote=remote, clients=len(self._registry))

        try:
            session.enqueue(make_hello(self._config.adapter_name).to_json())
            initial = session.spawn(self._send_initial(session))
            await asyncio.wait({initial})
            if initial.cancelled():
                return
            initial.result()
            session.release()

            # Process messages; each request runs as its own session task
            async for message in ws:
                session.spawn(self._dispatch(session, message))

        except websockets.exceptions.ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else None
            log.info("Client connection closed", remote=remote, code=code)
        except DeliveryError as e:
            log.debug("Initial data dropped", remote=remote, error=str(e))
        except Exception as e:
            log.error("Client handler error", remote=remote, error=str(e))
        finally:
            self._registry.discard(session)
            await session.close()
            log.info("Client disconnected", remote=remote, clients=len(self._registry))

    async def _dispatch(self, session: Session, message: str | bytes) -> None:
        """Route one request, logging any failure."""
        try:
            await self._router.handle(session, message)
        except DeliveryError as e:
            log.debug("Reply dropped", remote=session.remote, error=str(e))
        except Exception as e:
            log.error("Request handling failed", remote=session.remote, error=str(e))

    async def _send_initial(self, session: Session) -> None:
        """Queue the snapshot, or the structure document in structure mode."""
        if self._structure is not None:
            session.enqueue(make_structure(self._structure.current()).to_json())
            return

        try:
            records = await self._snapshots.build()
        except Exception as e:
            log.warning("Snapshot failed", remote=session.remote, error=str(e))
            return
        session.enqueue(make_snapshot(records).to_json())
        log.debug("Sent snapshot", remote=session.remote, items=len(records))
