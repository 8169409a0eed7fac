"""Async SQLite store backing the library cache."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path

import aiosqlite

from ensemble.storage.models import CacheEntry, SyncMetadata

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS cached_item (
    item_type TEXT NOT NULL,
    item_id TEXT NOT NULL,
    data TEXT NOT NULL,
    source_providers TEXT NOT NULL DEFAULT '[]',
    position INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (item_type, item_id)
);

CREATE INDEX IF NOT EXISTS ix_cached_item_order
    ON cached_item(item_type, position);

CREATE TABLE IF NOT EXISTS sync_metadata (
    item_type TEXT PRIMARY KEY,
    last_synced_at TEXT NOT NULL,
    item_count INTEGER NOT NULL DEFAULT 0
);
"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


_UPSERT_ITEM = """
INSERT INTO cached_item (item_type, item_id, data, source_providers, position, updated_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT (item_type, item_id) DO UPDATE SET
    data = excluded.data,
    source_providers = excluded.source_providers,
    position = excluded.position,
    updated_at = excluded.updated_at
"""


def _item_params(item_type: str, entries: Iterable[CacheEntry]) -> list[tuple]:
    now = _now().isoformat()
    return [
        (str(item_type), e.item_id, e.data, json.dumps(e.source_providers), pos, now)
        for pos, e in enumerate(entries)
    ]


def _decode_providers(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(value, list):
        return []
    return [str(p) for p in value if p]


class LibraryStore:
    """Durable key/value store keyed by ``(item type, item id)``.

    Each row holds the serialized item plus the provider instances that
    supplied it.  A second table records when each item type was last
    synced, which drives staleness decisions.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = path
        self._conn: aiosqlite.Connection | None = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            msg = "Library store not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._conn

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        self._conn = await aiosqlite.connect(self.path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> LibraryStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- cached items ---------------------------------------------------------

    async def get_cached_items_with_providers(self, item_type: str) -> list[tuple[str, list[str]]]:
        cur = await self.conn.execute(
            "SELECT data, source_providers FROM cached_item WHERE item_type = ? ORDER BY position, rowid",
            (str(item_type),),
        )
        rows = await cur.fetchall()
        return [(row["data"], _decode_providers(row["source_providers"])) for row in rows]

    async def get_cached_items(self, item_type: str) -> list[str]:
        cur = await self.conn.execute(
            "SELECT data FROM cached_item WHERE item_type = ? ORDER BY position, rowid",
            (str(item_type),),
        )
        rows = await cur.fetchall()
        return [row["data"] for row in rows]

    async def batch_upsert_items(self, item_type: str, entries: Iterable[CacheEntry]) -> int:
        """Insert or replace *entries* in one transaction; returns the row count.

        Rows keep the order of *entries*, so a later load returns them in the
        same sequence.
        """
        params = _item_params(item_type, entries)
        if not params:
            return 0
        await self.conn.executemany(_UPSERT_ITEM, params)
        await self.conn.commit()
        return len(params)

    async def replace_items(self, item_type: str, entries: Iterable[CacheEntry]) -> int:
        """Swap every row of *item_type* for *entries* in a single transaction.

        On any error the transaction is rolled back and the previous rows stay.
        """
        params = _item_params(item_type, entries)
        try:
            await self.conn.execute("DELETE FROM cached_item WHERE item_type = ?", (str(item_type),))
            if params:
                await self.conn.executemany(_UPSERT_ITEM, params)
        except BaseException:
            await self.conn.rollback()
            raise
        await self.conn.commit()
        return len(params)

    async def delete_items(self, item_type: str, item_ids: Iterable[str]) -> int:
        ids = [(str(item_type), item_id) for item_id in item_ids]
        if not ids:
            return 0
        await self.conn.executemany(
            "DELETE FROM cached_item WHERE item_type = ? AND item_id = ?",
            ids,
        )
        await self.conn.commit()
        return len(ids)

    async def clear_cache_for_type(self, item_type: str) -> None:
        await self.conn.execute("DELETE FROM cached_item WHERE item_type = ?", (str(item_type),))
        await self.conn.commit()

    async def clear_all_cache(self) -> None:
        await self.conn.execute("DELETE FROM cached_item")
        await self.conn.execute("DELETE FROM sync_metadata")
        await self.conn.commit()

    async def count_items(self) -> dict[str, int]:
        cur = await self.conn.execute(
            "SELECT item_type, COUNT(*) AS cnt FROM cached_item GROUP BY item_type ORDER BY item_type"
        )
        rows = await cur.fetchall()
        return {row["item_type"]: row["cnt"] for row in rows}

    # -- sync metadata --------------------------------------------------------

    async def update_sync_metadata(self, item_type: str, item_count: int) -> SyncMetadata:
        now = _now().isoformat()
        cur = await self.conn.execute(
            """
            INSERT INTO sync_metadata (item_type, last_synced_at, item_count)
            VALUES (?, ?, ?)
            ON CONFLICT (item_type) DO UPDATE SET
                last_synced_at = excluded.last_synced_at,
                item_count = excluded.item_count
            RETURNING *
            """,
            (str(item_type), now, item_count),
        )
        row = await cur.fetchone()
        await self.conn.commit()
        return self._row_to_sync_metadata(row)

    async def get_sync_metadata(self, item_type: str) -> SyncMetadata | None:
        cur = await self.conn.execute(
            "SELECT * FROM sync_metadata WHERE item_type = ?", (str(item_type),)
        )
        row = await cur.fetchone()
        return self._row_to_sync_metadata(row) if row else None

    async def needs_sync(self, item_type: str, max_age: timedelta = timedelta(minutes=5)) -> bool:
        """True when *item_type* was never synced or its last sync is older than *max_age*."""
        meta = await self.get_sync_metadata(item_type)
        if meta is None:
            return True
        last = meta.last_synced_at
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        return _now() - last > max_age

    # -- row → model helpers --------------------------------------------------

    @staticmethod
    def _row_to_sync_metadata(row: aiosqlite.Row) -> SyncMetadata:
        return SyncMetadata(
            item_type=row["item_type"],
            last_synced_at=row["last_synced_at"],
            item_count=row["item_count"],
        )
