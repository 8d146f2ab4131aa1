import asyncio
from typing import AsyncContextManager, Callable, NamedTuple, Optional
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)


Gated = Callable[[], AsyncContextManager[None]]

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)


class Database(NamedTuple):
    engine: AsyncEngine
    session_factory: async_sessionmaker
    gated: Gated


def _normalize_async_url(url: str) -> str:
    for plain, driver in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


def _sqlite_pragmas(dbapi_connection, _record) -> None:
    cur = dbapi_connection.cursor()
    # wait for a writer before trying to switch the journal mode
    cur.execute("PRAGMA busy_timeout=5000;")
    cur.execute("PRAGMA journal_mode=WAL;")
    cur.execute("PRAGMA synchronous=NORMAL;")
    cur.close()


def make_async_engine(
    database_url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_timeout: float = 30.0,
    gate_limit: Optional[int] = None,
) -> Database:
    """Build the async engine, its session factory and a DB gate.

    Plain ``sqlite://`` / ``postgres(ql)://`` URLs are switched to the
    aiosqlite / asyncpg drivers. Pool settings only apply to Postgres.
    The gate is a semaphore sized to ``gate_limit`` (default: the pool
    size) so callers queue in-process instead of on the pool.
    """
    db_url = _normalize_async_url(database_url)
    kw = dict(pool_pre_ping=True)
    if db_url.startswith("postgresql+asyncpg://"):
        kw.update(pool_size=pool_size, max_overflow=max_overflow,
                  pool_timeout=pool_timeout)

    engine = create_async_engine(db_url, **kw)
    if db_url.startswith("sqlite+aiosqlite://"):
        event.listen(engine.sync_engine, "connect", _sqlite_pragmas)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    gate = asyncio.Semaphore(max(1, gate_limit or pool_size))

    def gated() -> asyncio.Semaphore:
        return gate

    return Database(engine, session_factory, gated)
