"""Per-client sessions and the registry of live sessions.

Each Session owns an outbound queue drained by its own writer task, so
everything sent to one client goes out in the order it was queued and
no other task ever writes to the socket directly. Requests run as tasks
owned by the session, so a slow gateway call holds up only its own reply
and dies with the session.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

import structlog
import websockets

from statebridge.core.patterns import PatternMatcher, compile_pattern
from statebridge.errors import DeliveryError

if TYPE_CHECKING:
    from websockets.asyncio.server import ServerConnection


log = structlog.get_logger()


class Session:
    """State of one connected client.

    Live updates pushed before the session is primed (initial snapshot
    or structure queued) are held back and released right after it, so
    the client always sees hello and its initial data first.

    Attributes:
        ws: WebSocket connection
        remote: Remote address for logging
        authenticated: Whether the connection passed admission
    """

    def __init__(
        self,
        ws: ServerConnection,
        remote: str = "",
        queue_size: int = 1000,
    ) -> None:
        self.ws = ws
        self.remote = remote
        self.authenticated = False

        self._subscriptions: dict[str, PatternMatcher] = {}
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=queue_size)
        self._held: list[str] | None = []
        self._writer: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of request tasks still running."""
        return len(self._tasks)

    @property
    def primed(self) -> bool:
        """Whether initial data has been queued."""
        return self._held is None

    @property
    def subscribed_ids(self) -> set[str]:
        """Ids and patterns this client subscribed to."""
        return set(self._subscriptions)

    def add_subscriptions(self, ids: list[str]) -> None:
        """Record subscribed ids, compiling each once."""
        for state_id in ids:
            self._subscriptions.setdefault(state_id, compile_pattern(state_id))

    def wants(self, state_id: str) -> bool:
        """Whether a subscription of this session covers the id."""
        return any(m.matches(state_id) for m in self._subscriptions.values())

    def start(self) -> None:
        """Start the writer task."""
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Run work for this client as a task cancelled with the session."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def cancel_tasks(self) -> None:
        """Cancel every request task still running."""
        for task in list(self._tasks):
            task.cancel()

    def enqueue(self, text: str) -> None:
        """Queue a serialized message for this client.

        Raises:
            DeliveryError: If the session is closed or its queue is full
        """
        if self._closed:
            raise DeliveryError(f"Session closed: {self.remote}")
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            raise DeliveryError(f"Send queue full: {self.remote}") from None

    def push_update(self, text: str) -> None:
        """Queue a live update, holding it until the session is primed.

        Raises:
            DeliveryError: If the session is closed or its queue is full
        """
        if self._held is not None:
            if self._closed:
                raise DeliveryError(f"Session closed: {self.remote}")
            self._held.append(text)
            return
        self.enqueue(text)

    def release(self) -> None:
        """Mark the session primed and queue any held updates."""
        held, self._held = self._held, None
        for text in held or ():
            try:
                self.enqueue(text)
            except DeliveryError as e:
                log.debug("Dropped held update", remote=self.remote, error=str(e))
                break

    async def close(self) -> None:
        """Cancel running requests, flush queued messages, then stop the writer."""
        self.cancel_tasks()
        if self._closed:
            return
        self._closed = True
        if self._writer is None:
            return
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            self._writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._writer

    def terminate(self) -> None:
        """Drop the connection immediately without a closing handshake."""
        self._closed = True
        self.cancel_tasks()
        if self._writer is not None:
            self._writer.cancel()
        with contextlib.suppress(Exception):
            self.ws.transport.abort()

    async def _write_loop(self) -> None:
        while True:
            text = await self._queue.get()
            if text is None:
                return
            try:
                await self.ws.send(text)
            except websockets.exceptions.ConnectionClosed:
                log.debug("Send on closed connection", remote=self.remote)
                self._closed = True
                return
            except Exception as e:
                log.warning("Send failed", remote=self.remote, error=str(e))
                self._closed = True
                return


class SessionRegistry:
    """Set of live sessions, keyed by connection.

    Iteration is by immutable snapshot, so a broadcast never sees a set
    that changes under it; a session added during a broadcast simply
    receives the next event.
    """

    def __init__(self) -> None:
        self._sessions: dict[Any, Session] = {}

    def add(self, session: Session) -> None:
        self._sessions[session.ws] = session

    def discard(self, session: Session) -> bool:
        """Remove a session. Returns False if it was already gone."""
        current = self._sessions.get(session.ws)
        if current is not session:
            return False
        del self._sessions[session.ws]
        return True

    def snapshot(self) -> tuple[Session, ...]:
        """Current sessions as an immutable tuple."""
        return tuple(self._sessions.values())

    def clear(self) -> list[Session]:
        """Remove and return every session."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        return sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session: object) -> bool:
        return isinstance(session, Session) and self._sessions.get(session.ws) is session
