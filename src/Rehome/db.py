# src/Rehome/db.py
from __future__ import annotations

import asyncio
import contextlib
import os
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import structlog
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from Rehome.config import load_settings

settings = load_settings()
log = structlog.get_logger()


def _normalize_url(url: str) -> str:
    # Upgrade to async drivers if user supplies sync URLs
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


DATABASE_URL = _normalize_url(settings.database_url)


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def _install_sqlite_transaction_hooks(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN on SQLite so SAVEPOINTs nest inside it.

    The sqlite3 driver otherwise defers BEGIN until the first DML, and a
    SAVEPOINT issued before that would open (and RELEASE would commit) a
    transaction of its own.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN")


def get_engine() -> AsyncEngine:
    global _engine, _sessionmaker
    if _engine is None:
        kwargs: dict[str, object] = {}
        is_sqlite = DATABASE_URL.startswith("sqlite+aiosqlite://")
        if is_sqlite:
            kwargs.update(connect_args={"timeout": 30})
            # In-memory DBs must share a single connection so the schema persists
            if ":memory:" in DATABASE_URL or os.environ.get("REHOME_SQLITE_STATIC_POOL") == "1":
                kwargs.update(poolclass=StaticPool)
        elif DATABASE_URL.startswith("postgresql+asyncpg://"):
            kwargs.update(
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
            )

        _engine = create_async_engine(DATABASE_URL, **kwargs)
        if is_sqlite:
            _install_sqlite_transaction_hooks(_engine)
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)

        url = make_url(DATABASE_URL)
        log.info(
            "db.connection.config",
            backend="sqlite" if is_sqlite else url.get_backend_name(),
            host=url.host or "",
            database=url.database or "",
            driver=url.drivername,
        )
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if _sessionmaker is None:
        get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def reset_engine() -> None:
    """Dispose the cached engine; the next get_engine() builds a fresh one."""
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None


@contextlib.asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """One transaction: commit on clean exit, rollback on any exception."""
    sm = get_sessionmaker()
    async with sm() as s:
        try:
            yield s
            await s.commit()
        except BaseException:
            log.error("db.session.error", exc_info=True)
            await s.rollback()
            raise


@dataclass
class ImportTransaction:
    """Shared transaction handle for one import run.

    Rows of one entity kind run as concurrent tasks, but an AsyncSession is
    not safe for simultaneous use, so each row's storage work takes the lock
    and runs inside its own SAVEPOINT. A failed row rolls back to its
    savepoint and leaves sibling rows and the outer transaction intact.
    """

    session: AsyncSession
    actor_id: str | None = None
    internal: bool = True
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @contextlib.asynccontextmanager
    async def row(self) -> AsyncIterator[AsyncSession]:
        async with self._lock:
            async with self.session.begin_nested():
                yield self.session
