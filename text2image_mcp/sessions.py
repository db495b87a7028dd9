"""
Session table and idle reclaimer for the remote MCP endpoint.
One Session per connected client: its transport, its own tool adapter (bound to the
API key resolved when the session opened) and a last-activity timestamp.
Everything runs on the event loop thread; mutations never straddle an await.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from text2image_mcp.config import (
    SESSION_CLOSE_TIMEOUT_SECONDS,
    SESSION_SWEEP_INTERVAL_SECONDS,
    SESSION_TIMEOUT_SECONDS,
)
from text2image_mcp.errors import SessionNotFound

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def start(self) -> None: ...

    async def handle_request(self, scope, receive, send) -> None: ...

    async def close(self) -> None: ...


# (session_id, adapter, on_closed) -> Transport
TransportFactory = Callable[[str, Any, Callable[[], None]], Transport]


@dataclass
class Session:
    session_id: str
    transport: Transport
    adapter: Any
    last_activity: float


class SessionTable:
    def __init__(
        self,
        *,
        idle_timeout: float = SESSION_TIMEOUT_SECONDS,
        close_timeout: float = SESSION_CLOSE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_timeout = idle_timeout
        self.close_timeout = close_timeout
        self._clock = clock
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def create(self, transport_factory: TransportFactory, adapter_factory: Callable[[], Any]) -> Session:
        """
        Build and register a session. The record is in the table before the transport
        starts, so a follow-up request carrying the new id always finds it.
        """
        session_id = uuid.uuid4().hex
        adapter = adapter_factory()
        transport = transport_factory(session_id, adapter, lambda: self.discard(session_id))
        session = Session(session_id=session_id, transport=transport, adapter=adapter, last_activity=self._clock())
        self._sessions[session_id] = session
        try:
            await transport.start()
        except Exception:
            self._sessions.pop(session_id, None)
            raise
        logger.info("Session %s opened (%d active)", session_id, len(self._sessions))
        return session

    async def route(self, session_id: str, scope, receive, send) -> None:
        session = self.get(session_id)
        session.last_activity = self._clock()
        await session.transport.handle_request(scope, receive, send)

    def discard(self, session_id: str) -> None:
        """Forget a session whose transport already closed itself."""
        if self._sessions.pop(session_id, None) is not None:
            logger.info("Session %s closed by transport", session_id)

    async def close(self, session_id: str) -> bool:
        """Remove and close. Closing an absent session is a no-op (returns False)."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await self._close_transport(session)
        logger.info("Session %s closed (%d active)", session_id, len(self._sessions))
        return True

    async def _close_transport(self, session: Session) -> None:
        try:
            await asyncio.wait_for(session.transport.close(), timeout=self.close_timeout)
        except asyncio.TimeoutError:
            logger.warning("Session %s: transport close timed out after %ss", session.session_id, self.close_timeout)
        except Exception:
            logger.exception("Session %s: transport close failed", session.session_id)

    async def sweep(self) -> list[str]:
        """Evict sessions idle longer than idle_timeout, then close them concurrently."""
        now = self._clock()
        stale = [s for s in self._sessions.values() if now - s.last_activity > self.idle_timeout]
        for session in stale:
            del self._sessions[session.session_id]
        if stale:
            await asyncio.gather(*(self._close_transport(s) for s in stale))
            logger.info("Reclaimed %d idle session(s); %d active", len(stale), len(self._sessions))
        return [s.session_id for s in stale]

    async def close_all(self) -> int:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        if sessions:
            await asyncio.gather(*(self._close_transport(s) for s in sessions))
            logger.info("Closed %d session(s)", len(sessions))
        return len(sessions)


class SessionReclaimer:
    """Repeating sweep task owned by the app lifespan. stop() must be called on shutdown."""

    def __init__(self, table: SessionTable, *, interval: float = SESSION_SWEEP_INTERVAL_SECONDS, provider=None):
        self.table = table
        self.interval = interval
        self.provider = provider
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def tick(self) -> None:
        await self.table.sweep()
        if self.provider is not None:
            self.provider.purge_expired()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Session sweep failed")
