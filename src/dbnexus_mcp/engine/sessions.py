"""Session registry and connection descriptor resolution.

A connection descriptor is either a raw connection string ("postgres://...",
"sqlite:app.db") or a session id ("session:<uuid4>") returned by open_session.

- BackendPool keeps one connected backend per raw connection string.
- SessionRegistry maps session ids to backends opened from saved connections.
- ConnectionResolver turns any descriptor into a connected backend.

The registry map is guarded by a reader/writer lock. Only the map mutation runs
under the write lock: the database handshake that precedes create() and the
disconnect that follows remove() happen outside it.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .exceptions import InvalidRequestError, SessionNotFoundError
from .sql import ConnectionConfig, DatabaseBackendBase, connect_backend
from .sql.dialect import SESSION_PREFIX

logger = logging.getLogger(__name__)


class _ReadWriteLock:
    """Many concurrent readers or one writer.

    Waiting blocks the calling thread, which is the event loop thread when used
    from coroutines. Critical sections must therefore never await: a coroutine
    suspended while holding the lock would leave every other waiter blocking
    the loop it needs to resume.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class Session:
    """A live binding of a saved connection to an open backend."""

    id: str
    connection_id: str
    database: str | None
    backend: DatabaseBackendBase
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.id,
            "connection_id": self.connection_id,
            "database": self.database,
            "engine": self.backend.dialect.value,
            "created_at": self.created_at.isoformat(),
        }


def is_session_id(descriptor: str) -> bool:
    return descriptor.startswith(SESSION_PREFIX)


class SessionRegistry:
    """Process-lifetime table of open sessions.

    Sessions never expire on their own; they end on remove() or close_all().
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = _ReadWriteLock()

    def create(
        self, connection_id: str, database: str | None, backend: DatabaseBackendBase
    ) -> str:
        """Register an already connected backend and return the new session id."""
        session = Session(
            id=f"{SESSION_PREFIX}{uuid.uuid4()}",
            connection_id=connection_id,
            database=database,
            backend=backend,
        )
        with self._lock.write():
            self._sessions[session.id] = session
        logger.info(f"Created {session.id} for connection '{connection_id}'")
        return session.id

    def resolve(self, session_id: str) -> Session:
        """Look up a session.

        Raises:
            SessionNotFoundError: If the id was never issued or has been removed
        """
        with self._lock.read():
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def remove(self, session_id: str) -> Session:
        """Unregister a session and return it; the caller disconnects its backend.

        Raises:
            SessionNotFoundError: If the id is unknown
        """
        with self._lock.write():
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        logger.info(f"Removed {session_id}")
        return session

    def list_sessions(self) -> list[Session]:
        with self._lock.read():
            return list(self._sessions.values())

    async def close_all(self) -> None:
        """Remove every session and disconnect its backend."""
        with self._lock.write():
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.backend.disconnect()
        if sessions:
            logger.info(f"Closed {len(sessions)} sessions")

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._sessions)


class BackendPool:
    """One connected backend per raw connection string, opened on first use.

    Args:
        config_overrides: ConnectionConfig fields applied to every backend
            (e.g. pool_size, timeout)
    """

    def __init__(self, config_overrides: dict[str, Any] | None = None) -> None:
        self._overrides = config_overrides or {}
        self._backends: dict[str, DatabaseBackendBase] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def config_for(self, connection_string: str) -> ConnectionConfig:
        try:
            return ConnectionConfig.from_connection_string(connection_string, **self._overrides)
        except ValueError as e:
            raise InvalidRequestError(f"Invalid connection string: {e}") from e

    async def get(self, connection_string: str) -> DatabaseBackendBase:
        """Return the cached backend for a connection string, connecting it once.

        Raises:
            UnsupportedDialectError: If the prefix names no supported engine
            SqlConnectionError: If the pool cannot be opened
        """
        backend = self._backends.get(connection_string)
        if backend is not None:
            return backend

        lock = self._locks.setdefault(connection_string, asyncio.Lock())
        async with lock:
            backend = self._backends.get(connection_string)
            if backend is None:
                config = self.config_for(connection_string)
                backend = await connect_backend(config)
                self._backends[connection_string] = backend
                logger.info(f"Opened pool for {config.describe()}")
        return backend

    async def open(self, connection_string: str) -> DatabaseBackendBase:
        """Open a new, uncached backend (used for sessions)."""
        return await connect_backend(self.config_for(connection_string))

    async def close_all(self) -> None:
        backends = list(self._backends.values())
        self._backends.clear()
        self._locks.clear()
        for backend in backends:
            await backend.disconnect()
        if backends:
            logger.info(f"Closed {len(backends)} pooled backends")


class ConnectionResolver:
    """Resolve connection descriptors to connected backends."""

    def __init__(self, registry: SessionRegistry, pool: BackendPool) -> None:
        self.registry = registry
        self.pool = pool

    async def resolve(self, descriptor: str) -> DatabaseBackendBase:
        """Resolve a session id or raw connection string.

        Raises:
            SessionNotFoundError: For an unknown session id
            UnsupportedDialectError: For a connection string with an unknown prefix
            SqlConnectionError: If a new pool cannot be opened
        """
        if is_session_id(descriptor):
            return self.registry.resolve(descriptor).backend
        return await self.pool.get(descriptor)
