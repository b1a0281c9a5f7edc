"""SQLite-backed keyed store with per-entry expiration.

All store operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures and unparseable rows return ``None`` (treated as a
miss by the cache), write failures are logged and ignored (the computed value
is still returned).
Infrastructure errors never cross the SqliteStore class boundary. Errors are
logged with ``exc_info=True`` so they remain observable.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog

from bibliomonitor.models.cache import CacheEntry

log = structlog.get_logger()

_CREATE_KV_TABLE = """
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value      BLOB NOT NULL,
    stored_at  TEXT NOT NULL,
    expires_at TEXT NOT NULL
)
"""

_CREATE_KV_INDEX = "CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv_store(expires_at)"

_CREATE_METADATA_TABLE = """
CREATE TABLE IF NOT EXISTS store_metadata (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


class SqliteStore:
    """SQLite-backed keyed store implementing KeyedStoreProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_KV_TABLE)
        await self._db.execute(_CREATE_KV_INDEX)
        await self._db.execute(_CREATE_METADATA_TABLE)
        await self._db.commit()

    async def get(self, key: str) -> CacheEntry | None:
        """Read an entry. Returns ``None`` when missing, expired, or unreadable."""
        try:
            cursor = await self._db.execute(
                "SELECT value, stored_at, expires_at FROM kv_store WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            expires_at = datetime.fromisoformat(row[2])
            if datetime.now(UTC) >= expires_at:
                return None

            return CacheEntry(value=bytes(row[0]), stored_at=datetime.fromisoformat(row[1]))
        except (aiosqlite.Error, ValueError):
            log.warning("store_read_error", key=key, exc_info=True)
            return None

    async def put(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        """Write an entry that expires ``ttl_seconds`` from now. Non-fatal on failure."""
        try:
            expires_at = datetime.now(UTC) + timedelta(seconds=ttl_seconds)
            await self._db.execute(
                "INSERT OR REPLACE INTO kv_store (key, value, stored_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (key, entry.value, entry.stored_at.isoformat(), expires_at.isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_write_error", key=key, exc_info=True)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_if_due(self, interval_hours: int) -> None:
        """Run cleanup only if interval_hours have elapsed since the last run.

        Reads and writes ``last_cleanup_at`` from the ``store_metadata`` table.
        Falls through to run cleanup if the metadata row is missing or unreadable.
        Non-fatal on failure.
        """
        try:
            cursor = await self._db.execute(
                "SELECT value FROM store_metadata WHERE key = 'last_cleanup_at'"
            )
            row = await cursor.fetchone()
            if row is not None:
                last_run = datetime.fromisoformat(row[0])
                if datetime.now(UTC) - last_run < timedelta(hours=interval_hours):
                    log.debug("store_cleanup_skipped", reason="not_due")
                    return
        except (aiosqlite.Error, ValueError):
            log.warning("store_metadata_read_error", exc_info=True)

        await self.cleanup_expired()

        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO store_metadata (key, value) VALUES ('last_cleanup_at', ?)",
                (datetime.now(UTC).isoformat(),),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_metadata_write_error", exc_info=True)

    async def cleanup_expired(self) -> None:
        """Delete entries past their expiry. Non-fatal on failure."""
        try:
            cutoff = datetime.now(UTC).isoformat()
            cursor = await self._db.execute("DELETE FROM kv_store WHERE expires_at <= ?", (cutoff,))
            deleted = cursor.rowcount
            await self._db.commit()
            log.info("store_cleanup_complete", deleted=deleted)
        except aiosqlite.Error:
            log.warning("store_cleanup_error", exc_info=True)
