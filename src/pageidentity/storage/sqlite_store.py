"""
SQLite-backed durable store for page identity records.

- WAL mode and a busy timeout for concurrent readers and writers
- Async operations through a fixed-size aiosqlite connection pool
- Schema created from SQLAlchemy Core metadata on first use
- Every sqlite failure surfaces as StoreUnavailableError (reads) or
  StoreWriteError (writes); nothing is swallowed
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from contextlib import asynccontextmanager, closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional
from uuid import uuid4

import aiosqlite
import structlog
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError

from pageidentity.config.config import SQLiteConfig
from pageidentity.protocols import PageIdentityRecord

from .schema import PAGE_IDENTITY_COLUMNS
from .schema import metadata as db_metadata

logger = structlog.get_logger(__name__)

# Increment whenever schema.py changes.
CURRENT_SCHEMA_VERSION = 1

_JSON_COLUMNS = frozenset({"layout_tokens", "source_urls"})
_TIMESTAMP_COLUMNS = frozenset({"last_seen_at", "created_at", "updated_at"})
_MUTABLE_COLUMNS = frozenset(PAGE_IDENTITY_COLUMNS) - {"id", "created_at", "updated_at"}


class StoreUnavailableError(RuntimeError):
    """The store cannot be reached or queried."""

    pass


class StoreWriteError(RuntimeError):
    """A write to the store failed."""

    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _encode_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _decode_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _encode_value(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS:
        return json.dumps(list(value or []))
    if column in _TIMESTAMP_COLUMNS and isinstance(value, datetime):
        return _encode_timestamp(value)
    return value


def _row_to_record(row: Mapping[str, Any]) -> PageIdentityRecord:
    return PageIdentityRecord(
        id=row["id"],
        normalized_url=row["normalized_url"],
        canonical_url=row["canonical_url"],
        content_signature=row["content_signature"],
        layout_signature=row["layout_signature"],
        layout_tokens=json.loads(row["layout_tokens"] or "[]"),
        text_token_sample=row["text_token_sample"] or 0,
        source_urls=json.loads(row["source_urls"] or "[]"),
        last_seen_at=_decode_timestamp(row["last_seen_at"]),
        created_at=_decode_timestamp(row["created_at"]),
        updated_at=_decode_timestamp(row["updated_at"]),
        merged_into=row["merged_into"],
    )


class SQLitePageIdentityStore:
    """Page identity records in SQLite, queryable by normalized or canonical URL."""

    def __init__(self, config: SQLiteConfig):
        self.config = config
        self.db_path = Path(config.db_path)
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=config.pool_size)
        self._initialized = False

    async def initialize(self) -> None:
        """Creates the schema and fills the connection pool."""
        if self._initialized:
            return

        try:
            await asyncio.to_thread(self._create_schema)
            for _ in range(self.config.pool_size):
                await self._pool.put(await self._create_connection())
        except (sqlite3.Error, SQLAlchemyError, OSError) as e:
            logger.error("Failed to initialize page identity store", db_path=str(self.db_path), error=str(e))
            await self.close()
            raise StoreUnavailableError(f"Cannot open page identity store at {self.db_path}: {e}") from e

        self._initialized = True
        logger.info("Initialized page identity store", db_path=str(self.db_path), pool_size=self.config.pool_size)

    def _create_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(f"sqlite:///{self.db_path}")
        try:
            db_metadata.create_all(engine)
        finally:
            engine.dispose()

        with closing(sqlite3.connect(self.db_path)) as conn, conn:
            if self.config.wal_mode:
                conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION};")

    async def _create_connection(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self.db_path)
        if self.config.wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute(f"PRAGMA busy_timeout = {self.config.busy_timeout_ms};")
        conn.row_factory = aiosqlite.Row
        return conn

    @asynccontextmanager
    async def get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Borrow a pooled connection for the duration of the block."""
        if not self._initialized:
            raise StoreUnavailableError("Page identity store is not initialized")
        conn = await self._pool.get()
        try:
            yield conn
        finally:
            await self._pool.put(conn)

    async def find(
        self,
        normalized_url: str,
        canonical_url: Optional[str] = None,
        *,
        include_merged: bool = False,
    ) -> List[PageIdentityRecord]:
        """Records whose normalized or canonical URL matches, most recently updated first."""
        clauses = ["normalized_url = ?"]
        params: List[Any] = [normalized_url]
        if canonical_url:
            clauses.append("canonical_url = ?")
            params.append(canonical_url)

        sql = f"SELECT * FROM page_identities WHERE ({' OR '.join(clauses)})"
        if not include_merged:
            sql += " AND merged_into IS NULL"
        sql += " ORDER BY updated_at DESC, rowid DESC"

        try:
            async with self.get_connection() as conn:
                cursor = await conn.execute(sql, params)
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error("Page identity lookup failed", normalized_url=normalized_url, error=str(e))
            raise StoreUnavailableError(f"Page identity lookup failed: {e}") from e

        return [_row_to_record(row) for row in rows]

    async def find_by_id(self, record_id: str) -> Optional[PageIdentityRecord]:
        try:
            async with self.get_connection() as conn:
                cursor = await conn.execute("SELECT * FROM page_identities WHERE id = ?", (record_id,))
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            logger.error("Page identity fetch failed", page_id=record_id, error=str(e))
            raise StoreUnavailableError(f"Page identity fetch failed: {e}") from e

        return _row_to_record(row) if row is not None else None

    async def create(self, fields: Mapping[str, Any]) -> PageIdentityRecord:
        """Insert a record built from ``fields`` and return it with a fresh id."""
        now = utc_now()
        values: Dict[str, Any] = {
            "id": uuid4().hex,
            "normalized_url": fields["normalized_url"],
            "canonical_url": fields.get("canonical_url"),
            "content_signature": fields["content_signature"],
            "layout_signature": fields["layout_signature"],
            "layout_tokens": list(fields.get("layout_tokens") or []),
            "text_token_sample": int(fields.get("text_token_sample") or 0),
            "source_urls": list(fields.get("source_urls") or []),
            "last_seen_at": fields.get("last_seen_at") or now,
            "created_at": now,
            "updated_at": now,
            "merged_into": None,
        }

        columns = list(values)
        sql = (
            f"INSERT INTO page_identities ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )

        try:
            async with self.get_connection() as conn:
                await conn.execute(sql, [_encode_value(column, values[column]) for column in columns])
                await conn.commit()
        except sqlite3.Error as e:
            logger.error("Page identity insert failed", normalized_url=values["normalized_url"], error=str(e))
            raise StoreWriteError(f"Page identity insert failed: {e}") from e

        logger.debug("Inserted page identity", page_id=values["id"], normalized_url=values["normalized_url"])
        return PageIdentityRecord(**values)

    async def update_one(self, record_id: str, patch: Mapping[str, Any]) -> None:
        """Apply ``patch`` to one record; ``updated_at`` is always refreshed."""
        unknown = set(patch) - _MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update page identity columns: {sorted(unknown)}")

        values = {column: _encode_value(column, value) for column, value in patch.items()}
        values["updated_at"] = _encode_timestamp(utc_now())

        assignments = ", ".join(f"{column} = ?" for column in values)
        sql = f"UPDATE page_identities SET {assignments} WHERE id = ?"

        try:
            async with self.get_connection() as conn:
                cursor = await conn.execute(sql, [*values.values(), record_id])
                await conn.commit()
                updated = cursor.rowcount
        except sqlite3.Error as e:
            logger.error("Page identity update failed", page_id=record_id, error=str(e))
            raise StoreWriteError(f"Page identity update failed: {e}") from e

        if updated == 0:
            raise StoreWriteError(f"Page identity {record_id} does not exist")

    async def count(self) -> int:
        try:
            async with self.get_connection() as conn:
                cursor = await conn.execute("SELECT COUNT(*) FROM page_identities")
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Page identity count failed: {e}") from e
        return int(row[0]) if row else 0

    async def close(self) -> None:
        """Drain the pool and close every connection."""
        while not self._pool.empty():
            conn = await self._pool.get()
            await conn.close()
        self._initialized = False
