import os
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncContextManager, Callable

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)
from sqlalchemy.pool import NullPool

Gated = Callable[[], AsyncContextManager[None]]

_DRIVERS = {
    "sqlite://": "sqlite+aiosqlite://",
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
}


def normalize_async_url(url: str) -> str:
    for plain, async_prefix in _DRIVERS.items():
        if url.startswith(plain):
            return async_prefix + url[len(plain):]
    return url


@asynccontextmanager
async def _gated(sem: asyncio.Semaphore):
    # caps concurrent DB work at the pool size
    await sem.acquire()
    try:
        yield
    finally:
        sem.release()


def _install_sqlite_pragmas(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, _):
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA busy_timeout=5000;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.close()


def make_async_engine(database_url: str):
    """-> (engine, sessionmaker, gate semaphore, gated)

    `gated()` is an async context manager; wrap every DB round trip in it.
    """
    db_url = normalize_async_url(database_url)
    kw = dict(future=True, pool_pre_ping=True)

    pool_size = None
    if db_url.startswith("postgresql+asyncpg://"):
        pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
        kw.update(
            pool_size=pool_size,
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
        )
    elif db_url.startswith("sqlite+aiosqlite://"):
        # aiosqlite connections are bound to the loop that opened them
        kw["poolclass"] = NullPool

    engine = create_async_engine(db_url, **kw)

    if db_url.startswith("sqlite+aiosqlite://"):
        _install_sqlite_pragmas(engine)

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    gate_limit = int(os.getenv("DB_GATE_LIMIT", str(pool_size or 10)))
    db_gate = asyncio.Semaphore(max(1, gate_limit))

    def gated():
        return _gated(db_gate)

    return engine, SessionAsync, db_gate, gated
