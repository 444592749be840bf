"""
Async database engine lifecycle for the chat backend.

A single `DatabaseConnector` is created by the application factory and shared by
every request handler. It hands out a live engine, re-validating a cached one
with a short ping before reuse, and coalesces concurrent connection attempts so
that a burst of requests triggers at most one connect.
"""

import asyncio
import enum
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from chat_api.errors import DatabaseConnectionError
from chat_api.models import Base

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    NO_CONNECTION = "no-connection"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class DatabaseConnector:
    """Owns the process-wide engine and its connect / health-check / reconnect cycle."""

    def __init__(
        self,
        database_url: str,
        *,
        connect_timeout: float = 10.0,
        server_selection_timeout: float = 5.0,
        socket_timeout: float = 45.0,
        ping_timeout: float = 2.0,
        create_tables: bool = True,
        engine_factory: Callable[..., AsyncEngine] = create_async_engine,
    ):
        if not database_url:
            raise RuntimeError("Please define the DATABASE_URL environment variable")
        self.database_url = database_url
        self.connect_timeout = connect_timeout
        self.server_selection_timeout = server_selection_timeout
        self.socket_timeout = socket_timeout
        self.ping_timeout = ping_timeout
        self.create_tables = create_tables
        self._engine_factory = engine_factory

        self._engine: Optional[AsyncEngine] = None
        self._pending: Optional[asyncio.Task] = None
        self._state = ConnectionState.NO_CONNECTION

    @property
    def state(self) -> ConnectionState:
        return self._state

    @classmethod
    def from_settings(cls, settings) -> "DatabaseConnector":
        return cls(
            settings.database_url,
            connect_timeout=settings.db_connect_timeout,
            server_selection_timeout=settings.db_server_selection_timeout,
            socket_timeout=settings.db_socket_timeout,
            ping_timeout=settings.db_ping_timeout,
            create_tables=settings.db_create_tables,
        )

    def _engine_options(self) -> Dict[str, Any]:
        url = make_url(self.database_url)
        options: Dict[str, Any] = {
            "echo": False,  # Set to True for SQL query logging
            "pool_pre_ping": True,
        }
        if url.get_backend_name() != "sqlite":
            options["pool_recycle"] = 300
            options["pool_timeout"] = self.server_selection_timeout
        if url.get_driver_name() == "asyncpg":
            options["connect_args"] = {
                "timeout": self.connect_timeout,
                "command_timeout": self.socket_timeout,
            }
        return options

    async def acquire(self) -> AsyncEngine:
        """Return a live engine, reconnecting if the cached one fails its ping."""
        engine = self._engine
        if engine is not None:
            if await self._ping(engine):
                return engine
            if self._engine is engine:
                logger.warning("Existing database connection is stale, reconnecting...")
                await self._discard()
            elif self._engine is not None:
                # Another caller already replaced the stale engine while this ping ran.
                return self._engine

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._connect())
        # Shield so a cancelled caller does not cancel the attempt other callers share.
        return await asyncio.shield(self._pending)

    async def _connect(self) -> AsyncEngine:
        self._state = ConnectionState.CONNECTING
        logger.info(f"Connecting to database {self.redacted_url()}...")
        engine = None
        try:
            engine = self._engine_factory(self.database_url, **self._engine_options())
            await asyncio.wait_for(self._initialize(engine), timeout=self.connect_timeout)
        except asyncio.TimeoutError as e:
            await self._dispose_quietly(engine)
            self._fail()
            raise DatabaseConnectionError(
                f"Database connection timed out after {self.connect_timeout}s", reason="timeout"
            ) from e
        except asyncio.CancelledError:
            await self._dispose_quietly(engine)
            self._fail()
            raise
        except Exception as e:
            await self._dispose_quietly(engine)
            self._fail()
            raise DatabaseConnectionError(f"Unable to connect to database: {e}", reason="other") from e

        self._engine = engine
        self._state = ConnectionState.CONNECTED
        self._pending = None
        logger.info(f"Database connected ({make_url(self.database_url).get_backend_name()})")
        return engine

    def _fail(self):
        # A rejected attempt must not be handed to later callers.
        self._state = ConnectionState.NO_CONNECTION
        self._pending = None

    async def _initialize(self, engine: AsyncEngine):
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if self.create_tables:
                await conn.run_sync(Base.metadata.create_all)

    async def _ping(self, engine: AsyncEngine) -> bool:
        async def probe():
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

        try:
            await asyncio.wait_for(probe(), timeout=self.ping_timeout)
            return True
        except (asyncio.TimeoutError, SQLAlchemyError, OSError) as e:
            logger.warning(f"Database ping failed: {e!r}")
            return False

    async def _discard(self):
        engine = self._engine
        self._engine = None
        self._state = ConnectionState.NO_CONNECTION
        if engine is not None:
            await self._dispose_quietly(engine)

    @staticmethod
    async def _dispose_quietly(engine: Optional[AsyncEngine]):
        if engine is None:
            return
        try:
            await engine.dispose()
        except (SQLAlchemyError, OSError) as e:
            logger.debug(f"Ignoring error while disposing engine: {e!r}")

    async def reset(self):
        """Drop the cached engine so the next `acquire` starts from scratch."""
        logger.warning("Resetting database connection")
        await self._discard()
        self._pending = None

    async def close(self):
        pending = self._pending
        self._pending = None
        if pending is not None and not pending.done():
            pending.cancel()
            # Wait for the cancelled attempt to dispose of its half-open engine.
            await asyncio.gather(pending, return_exceptions=True)
        await self._discard()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session bound to a live engine."""
        engine = await self.acquire()
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    def redacted_url(self) -> str:
        return make_url(self.database_url).render_as_string(hide_password=True)

    def describe(self) -> Dict[str, Any]:
        url = make_url(self.database_url)
        return {
            "connection_state": self._state.value,
            "backend": url.get_backend_name(),
            "database": url.database or "default",
            "host": url.host or "local",
            "port": url.port,
            "url": self.redacted_url(),
        }
