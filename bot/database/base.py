from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiosqlite
import asyncpg

from core.errors import PersistenceError

LOGGER = logging.getLogger(__name__)

_DRIVER_ERRORS: tuple[type[BaseException], ...] = (
    sqlite3.Error,
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
)


@dataclass(slots=True)
class DatabaseDsn:
    driver: str
    value: str


def parse_database_dsn(url: str) -> DatabaseDsn:
    if url.startswith("sqlite:///"):
        return DatabaseDsn(driver="sqlite", value=url.replace("sqlite:///", "", 1))
    if url.startswith("postgresql://") or url.startswith("postgres://"):
        return DatabaseDsn(driver="postgresql", value=url)
    raise ValueError("Unsupported database URL. Use sqlite:/// or postgresql://")


def _qmark_to_dollar(query: str) -> str:
    idx = 1
    out: list[str] = []
    for char in query:
        if char == "?":
            out.append(f"${idx}")
            idx += 1
        else:
            out.append(char)
    return "".join(out)


def _pg_rowcount(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 3" or "INSERT 0 1".
    tail = status.rsplit(" ", 1)[-1]
    return int(tail) if tail.isdigit() else 0


@contextmanager
def _translate_errors(query: str) -> Iterator[None]:
    try:
        yield
    except _DRIVER_ERRORS as exc:
        LOGGER.error("Database statement failed: %s (%s)", query.strip().splitlines()[0], exc)
        raise PersistenceError() from exc


class Transaction:
    """Statements issued on one connection inside ``Database.transaction()``."""

    def __init__(self, driver: str, connection: aiosqlite.Connection | asyncpg.Connection) -> None:
        self._driver = driver
        self._conn = connection

    async def execute(self, query: str, params: Sequence[Any] | None = None) -> int:
        params = params or []
        with _translate_errors(query):
            if self._driver == "sqlite":
                async with self._conn.execute(query, tuple(params)) as cursor:
                    return cursor.rowcount
            return _pg_rowcount(await self._conn.execute(_qmark_to_dollar(query), *params))

    async def fetchone(self, query: str, params: Sequence[Any] | None = None) -> dict[str, Any] | None:
        params = params or []
        with _translate_errors(query):
            if self._driver == "sqlite":
                # Closing the cursor finishes RETURNING statements before COMMIT.
                async with self._conn.execute(query, tuple(params)) as cursor:
                    row = await cursor.fetchone()
            else:
                row = await self._conn.fetchrow(_qmark_to_dollar(query), *params)
        return dict(row) if row is not None else None

    async def fetchall(self, query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        params = params or []
        with _translate_errors(query):
            if self._driver == "sqlite":
                async with self._conn.execute(query, tuple(params)) as cursor:
                    rows = await cursor.fetchall()
            else:
                rows = await self._conn.fetch(_qmark_to_dollar(query), *params)
        return [dict(row) for row in rows]


class Database:
    def __init__(self, url: str, timeout_seconds: int = 30, pool_min_size: int = 2, pool_max_size: int = 10) -> None:
        self._dsn = parse_database_dsn(url)
        self._timeout_seconds = timeout_seconds
        self._pool_min_size = pool_min_size
        self._pool_max_size = pool_max_size
        self._sqlite: aiosqlite.Connection | None = None
        self._pg_pool: asyncpg.Pool | None = None
        # aiosqlite shares one connection; the lock keeps transactions from interleaving.
        self._sqlite_lock = asyncio.Lock()

    @property
    def driver(self) -> str:
        return self._dsn.driver

    async def connect(self) -> None:
        with _translate_errors("connect"):
            if self.driver == "sqlite":
                sqlite_path = Path(self._dsn.value)
                sqlite_path.parent.mkdir(parents=True, exist_ok=True)
                self._sqlite = await aiosqlite.connect(sqlite_path, isolation_level=None)
                self._sqlite.row_factory = aiosqlite.Row
                await self._sqlite.execute("PRAGMA journal_mode = WAL;")
                await self._sqlite.execute("PRAGMA foreign_keys = ON;")
                LOGGER.info("Connected to SQLite: %s", sqlite_path)
                return
            self._pg_pool = await asyncpg.create_pool(
                dsn=self._dsn.value,
                min_size=self._pool_min_size,
                max_size=self._pool_max_size,
                timeout=self._timeout_seconds,
            )
        LOGGER.info("Connected to PostgreSQL")

    async def close(self) -> None:
        if self._sqlite:
            await self._sqlite.close()
            self._sqlite = None
        if self._pg_pool:
            await self._pg_pool.close()
            self._pg_pool = None

    def _require_sqlite(self) -> aiosqlite.Connection:
        if self._sqlite is None:
            raise PersistenceError("The database connection is not open.")
        return self._sqlite

    def _require_pool(self) -> asyncpg.Pool:
        if self._pg_pool is None:
            raise PersistenceError("The database connection is not open.")
        return self._pg_pool

    async def execute(self, query: str, params: Sequence[Any] | None = None) -> int:
        async with self.transaction() as tx:
            return await tx.execute(query, params)

    async def fetchone(self, query: str, params: Sequence[Any] | None = None) -> dict[str, Any] | None:
        if self.driver == "sqlite":
            async with self._sqlite_lock:
                return await Transaction("sqlite", self._require_sqlite()).fetchone(query, params)
        async with self._require_pool().acquire() as conn:
            return await Transaction("postgresql", conn).fetchone(query, params)

    async def fetchall(self, query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        if self.driver == "sqlite":
            async with self._sqlite_lock:
                return await Transaction("sqlite", self._require_sqlite()).fetchall(query, params)
        async with self._require_pool().acquire() as conn:
            return await Transaction("postgresql", conn).fetchall(query, params)

    async def executescript(self, sql_script: str) -> None:
        with _translate_errors(sql_script):
            if self.driver == "sqlite":
                conn = self._require_sqlite()
                async with self._sqlite_lock:
                    await conn.executescript(sql_script)
                return
            async with self._require_pool().acquire() as conn:
                await conn.execute(sql_script)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        if self.driver == "sqlite":
            conn = self._require_sqlite()
            async with self._sqlite_lock:
                with _translate_errors("BEGIN IMMEDIATE"):
                    await conn.execute("BEGIN IMMEDIATE")
                try:
                    yield Transaction("sqlite", conn)
                except BaseException:
                    await conn.rollback()
                    raise
                with _translate_errors("COMMIT"):
                    await conn.commit()
            return

        async with self._require_pool().acquire() as conn:
            try:
                async with conn.transaction():
                    yield Transaction("postgresql", conn)
            except _DRIVER_ERRORS as exc:
                LOGGER.error("PostgreSQL transaction failed: %s", exc)
                raise PersistenceError() from exc
