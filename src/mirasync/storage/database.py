"""Async SQLite database for the Mirasync local library."""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from mirasync.storage.models import (
    NAMESPACE_MODELS,
    ListItem,
    MediaList,
    MediaRecord,
    SettingsNamespace,
    SyncRun,
    TombstoneKind,
    WatchProgress,
)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS media (
    tmdb_id INTEGER NOT NULL,
    media_type TEXT NOT NULL CHECK(media_type IN ('movie', 'tv')),
    title TEXT NOT NULL,
    title_original TEXT,
    imdb_id TEXT,
    year INTEGER,
    score REAL,
    poster_path TEXT,
    backdrop_path TEXT,
    description TEXT,
    genres TEXT,
    season_count INTEGER,
    episode_count INTEGER,
    is_favorite INTEGER NOT NULL DEFAULT 0,
    added_at TEXT,
    updated_at TEXT,
    PRIMARY KEY (tmdb_id, media_type)
);

CREATE TABLE IF NOT EXISTS watch_progress (
    tmdb_id INTEGER NOT NULL,
    media_type TEXT NOT NULL CHECK(media_type IN ('movie', 'tv')),
    season_number INTEGER,
    episode_number INTEGER,
    position INTEGER NOT NULL DEFAULT 0,
    duration INTEGER NOT NULL DEFAULT 0,
    completed INTEGER NOT NULL DEFAULT 0,
    watched_at TEXT,
    updated_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_watch_progress_key ON watch_progress(
    tmdb_id, media_type, IFNULL(season_number, -1), IFNULL(episode_number, -1)
);

CREATE TABLE IF NOT EXISTS lists (
    id TEXT PRIMARY KEY NOT NULL,
    name TEXT NOT NULL,
    is_default INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS list_items (
    list_id TEXT NOT NULL REFERENCES lists(id) ON DELETE CASCADE,
    tmdb_id INTEGER NOT NULL,
    media_type TEXT NOT NULL CHECK(media_type IN ('movie', 'tv')),
    added_at TEXT,
    PRIMARY KEY (list_id, tmdb_id, media_type)
);

CREATE TABLE IF NOT EXISTS list_aliases (
    remote_id TEXT PRIMARY KEY NOT NULL,
    local_id TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tombstones (
    kind TEXT NOT NULL CHECK(kind IN ('favorites', 'progress', 'lists', 'listItems')),
    key TEXT NOT NULL,
    deleted_at TEXT NOT NULL,
    PRIMARY KEY (kind, key)
);

CREATE TABLE IF NOT EXISTS settings (
    namespace TEXT PRIMARY KEY NOT NULL,
    value_json TEXT NOT NULL,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS app_state (
    key TEXT PRIMARY KEY NOT NULL,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    direction TEXT NOT NULL CHECK(direction IN ('export', 'import')),
    status TEXT NOT NULL CHECK(status IN ('running', 'completed', 'failed')),
    remote_device_id TEXT,
    file_path TEXT,
    stats_json TEXT,
    error_message TEXT
);
"""

# Timestamp given to settings namespaces that were never edited, so any real
# edit on another installation wins over untouched defaults.
SETTINGS_BASELINE = datetime(1970, 1, 1, tzinfo=UTC)

_DEVICE_ID_KEY = "device_id"


def _now() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


class Database:
    """Async SQLite database wrapper for the local library."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._conn: aiosqlite.Connection | None = None
        self._in_transaction = False

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            msg = "Database not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._conn

    async def connect(self) -> None:
        self._conn = await aiosqlite.connect(self.path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(_SCHEMA)
        await self._seed_settings()
        await self._conn.commit()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def _seed_settings(self) -> None:
        for namespace, model in NAMESPACE_MODELS.items():
            await self.conn.execute(
                "INSERT OR IGNORE INTO settings (namespace, value_json, updated_at) VALUES (?, ?, ?)",
                (namespace.value, model().model_dump_json(), _iso(SETTINGS_BASELINE)),
            )

    # -- transactions ---------------------------------------------------------

    async def _commit(self) -> None:
        if not self._in_transaction:
            await self.conn.commit()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Database]:
        """Group every write inside the block into one commit.

        Individual write methods skip their own commit while the block is
        active; an exception rolls the whole block back.
        """
        if self._in_transaction:
            msg = "Nested transactions are not supported"
            raise RuntimeError(msg)
        await self.conn.commit()
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._in_transaction = False
            await self.conn.rollback()
            raise
        self._in_transaction = False
        await self.conn.commit()

    # -- media ----------------------------------------------------------------

    async def upsert_media_metadata(self, record: MediaRecord) -> None:
        """Insert or refresh descriptive fields; never touches favorite state."""
        await self.conn.execute(
            """
            INSERT INTO media (
                tmdb_id, media_type, title, title_original, imdb_id, year, score,
                poster_path, backdrop_path, description, genres, season_count,
                episode_count, is_favorite, added_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, NULL)
            ON CONFLICT (tmdb_id, media_type) DO UPDATE SET
                title = excluded.title,
                title_original = excluded.title_original,
                imdb_id = excluded.imdb_id,
                year = excluded.year,
                score = excluded.score,
                poster_path = excluded.poster_path,
                backdrop_path = excluded.backdrop_path,
                description = excluded.description,
                genres = excluded.genres,
                season_count = excluded.season_count,
                episode_count = excluded.episode_count
            """,
            (
                record.tmdb_id,
                record.media_type,
                record.title,
                record.title_original,
                record.imdb_id,
                record.year,
                record.score,
                record.poster_path,
                record.backdrop_path,
                record.description,
                json.dumps(record.genres),
                record.season_count,
                record.episode_count,
                _iso(record.added_at or _now()),
            ),
        )
        await self._commit()

    async def get_media(self, tmdb_id: int, media_type: str) -> MediaRecord | None:
        cur = await self.conn.execute(
            "SELECT * FROM media WHERE tmdb_id = ? AND media_type = ?",
            (tmdb_id, media_type),
        )
        row = await cur.fetchone()
        return self._row_to_media(row) if row else None

    async def list_media(self, *, favorites_only: bool = False) -> list[MediaRecord]:
        if favorites_only:
            cur = await self.conn.execute(
                "SELECT * FROM media WHERE is_favorite = 1 ORDER BY tmdb_id, media_type"
            )
        else:
            cur = await self.conn.execute("SELECT * FROM media ORDER BY tmdb_id, media_type")
        rows = await cur.fetchall()
        return [self._row_to_media(r) for r in rows]

    async def set_favorite(
        self,
        tmdb_id: int,
        media_type: str,
        *,
        is_favorite: bool,
        updated_at: datetime,
    ) -> bool:
        """Flip the favorite flag. Returns False when the media row does not exist."""
        cur = await self.conn.execute(
            "UPDATE media SET is_favorite = ?, updated_at = ? WHERE tmdb_id = ? AND media_type = ?",
            (int(is_favorite), _iso(updated_at), tmdb_id, media_type),
        )
        await self._commit()
        return cur.rowcount > 0

    # -- watch_progress -------------------------------------------------------

    async def get_progress(
        self,
        tmdb_id: int,
        media_type: str,
        season_number: int | None = None,
        episode_number: int | None = None,
    ) -> WatchProgress | None:
        cur = await self.conn.execute(
            """
            SELECT * FROM watch_progress
            WHERE tmdb_id = ? AND media_type = ? AND season_number IS ? AND episode_number IS ?
            """,
            (tmdb_id, media_type, season_number, episode_number),
        )
        row = await cur.fetchone()
        return self._row_to_progress(row) if row else None

    async def list_progress(self) -> list[WatchProgress]:
        cur = await self.conn.execute(
            "SELECT * FROM watch_progress ORDER BY tmdb_id, media_type, season_number, episode_number"
        )
        rows = await cur.fetchall()
        return [self._row_to_progress(r) for r in rows]

    async def upsert_progress(self, progress: WatchProgress) -> None:
        """Replace every field of the progress row identified by its natural key."""
        params = (
            progress.position,
            progress.duration,
            int(progress.completed),
            _iso(progress.watched_at),
            _iso(progress.updated_at),
        )
        key = (
            progress.tmdb_id,
            progress.media_type,
            progress.season_number,
            progress.episode_number,
        )
        # Null season/episode are part of the key, so match with IS instead
        # of relying on ON CONFLICT.
        cur = await self.conn.execute(
            """
            UPDATE watch_progress
            SET position = ?, duration = ?, completed = ?, watched_at = ?, updated_at = ?
            WHERE tmdb_id = ? AND media_type = ? AND season_number IS ? AND episode_number IS ?
            """,
            (*params, *key),
        )
        if cur.rowcount == 0:
            await self.conn.execute(
                """
                INSERT INTO watch_progress (
                    tmdb_id, media_type, season_number, episode_number,
                    position, duration, completed, watched_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (*key, *params),
            )
        await self._commit()

    async def delete_progress(
        self,
        tmdb_id: int,
        media_type: str,
        season_number: int | None = None,
        episode_number: int | None = None,
    ) -> int:
        cur = await self.conn.execute(
            """
            DELETE FROM watch_progress
            WHERE tmdb_id = ? AND media_type = ? AND season_number IS ? AND episode_number IS ?
            """,
            (tmdb_id, media_type, season_number, episode_number),
        )
        await self._commit()
        return cur.rowcount

    # -- lists ----------------------------------------------------------------

    async def get_list(self, list_id: str) -> MediaList | None:
        cur = await self.conn.execute("SELECT * FROM lists WHERE id = ?", (list_id,))
        row = await cur.fetchone()
        return self._row_to_list(row) if row else None

    async def get_default_list(self) -> MediaList | None:
        cur = await self.conn.execute(
            "SELECT * FROM lists WHERE is_default = 1 ORDER BY created_at LIMIT 1"
        )
        row = await cur.fetchone()
        return self._row_to_list(row) if row else None

    async def list_lists(self) -> list[MediaList]:
        cur = await self.conn.execute("SELECT * FROM lists ORDER BY created_at, id")
        rows = await cur.fetchall()
        return [self._row_to_list(r) for r in rows]

    async def upsert_list(self, media_list: MediaList) -> MediaList:
        cur = await self.conn.execute(
            """
            INSERT INTO lists (id, name, is_default, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                name = excluded.name,
                is_default = excluded.is_default,
                created_at = excluded.created_at,
                updated_at = excluded.updated_at
            RETURNING *
            """,
            (
                media_list.id,
                media_list.name,
                int(media_list.is_default),
                _iso(media_list.created_at),
                _iso(media_list.updated_at),
            ),
        )
        row = await cur.fetchone()
        await self._commit()
        return self._row_to_list(row)

    async def rename_list(self, list_id: str, name: str, *, updated_at: datetime) -> bool:
        cur = await self.conn.execute(
            "UPDATE lists SET name = ?, updated_at = ? WHERE id = ?",
            (name, _iso(updated_at), list_id),
        )
        await self._commit()
        return cur.rowcount > 0

    async def delete_list(self, list_id: str) -> int:
        """Delete a list; its items go with it (ON DELETE CASCADE)."""
        cur = await self.conn.execute("DELETE FROM lists WHERE id = ?", (list_id,))
        await self._commit()
        return cur.rowcount

    # -- list_items -----------------------------------------------------------

    async def get_list_item(self, list_id: str, tmdb_id: int, media_type: str) -> ListItem | None:
        cur = await self.conn.execute(
            "SELECT * FROM list_items WHERE list_id = ? AND tmdb_id = ? AND media_type = ?",
            (list_id, tmdb_id, media_type),
        )
        row = await cur.fetchone()
        return self._row_to_list_item(row) if row else None

    async def list_list_items(self, list_id: str | None = None) -> list[ListItem]:
        if list_id is not None:
            cur = await self.conn.execute(
                "SELECT * FROM list_items WHERE list_id = ? ORDER BY added_at, tmdb_id",
                (list_id,),
            )
        else:
            cur = await self.conn.execute(
                "SELECT * FROM list_items ORDER BY list_id, added_at, tmdb_id"
            )
        rows = await cur.fetchall()
        return [self._row_to_list_item(r) for r in rows]

    async def upsert_list_item(self, item: ListItem) -> None:
        await self.conn.execute(
            """
            INSERT INTO list_items (list_id, tmdb_id, media_type, added_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (list_id, tmdb_id, media_type) DO UPDATE SET
                added_at = excluded.added_at
            """,
            (item.list_id, item.tmdb_id, item.media_type, _iso(item.added_at)),
        )
        await self._commit()

    async def delete_list_item(self, list_id: str, tmdb_id: int, media_type: str) -> int:
        cur = await self.conn.execute(
            "DELETE FROM list_items WHERE list_id = ? AND tmdb_id = ? AND media_type = ?",
            (list_id, tmdb_id, media_type),
        )
        await self._commit()
        return cur.rowcount

    # -- list_aliases ---------------------------------------------------------

    async def set_list_alias(self, remote_id: str, local_id: str) -> None:
        await self.conn.execute(
            """
            INSERT INTO list_aliases (remote_id, local_id) VALUES (?, ?)
            ON CONFLICT (remote_id) DO UPDATE SET local_id = excluded.local_id
            """,
            (remote_id, local_id),
        )
        await self._commit()

    async def list_list_aliases(self) -> dict[str, str]:
        """Remote list ids merged into a differently named local list, survives list deletion."""
        cur = await self.conn.execute("SELECT remote_id, local_id FROM list_aliases")
        rows = await cur.fetchall()
        return {r["remote_id"]: r["local_id"] for r in rows}

    # -- tombstones -----------------------------------------------------------

    async def set_tombstone(self, kind: TombstoneKind, key: str, deleted_at: datetime) -> None:
        await self.conn.execute(
            """
            INSERT INTO tombstones (kind, key, deleted_at) VALUES (?, ?, ?)
            ON CONFLICT (kind, key) DO UPDATE SET deleted_at = excluded.deleted_at
            """,
            (kind.value, key, _iso(deleted_at)),
        )
        await self._commit()

    async def delete_tombstone(self, kind: TombstoneKind, key: str) -> int:
        cur = await self.conn.execute(
            "DELETE FROM tombstones WHERE kind = ? AND key = ?", (kind.value, key)
        )
        await self._commit()
        return cur.rowcount

    async def get_tombstone(self, kind: TombstoneKind, key: str) -> datetime | None:
        cur = await self.conn.execute(
            "SELECT deleted_at FROM tombstones WHERE kind = ? AND key = ?", (kind.value, key)
        )
        row = await cur.fetchone()
        return datetime.fromisoformat(row["deleted_at"]) if row else None

    async def list_tombstones(self, kind: TombstoneKind) -> dict[str, datetime]:
        cur = await self.conn.execute(
            "SELECT key, deleted_at FROM tombstones WHERE kind = ? ORDER BY key", (kind.value,)
        )
        rows = await cur.fetchall()
        return {r["key"]: datetime.fromisoformat(r["deleted_at"]) for r in rows}

    # -- settings -------------------------------------------------------------

    async def get_settings_row(
        self, namespace: SettingsNamespace
    ) -> tuple[dict[str, Any], datetime | None] | None:
        cur = await self.conn.execute(
            "SELECT value_json, updated_at FROM settings WHERE namespace = ?", (namespace.value,)
        )
        row = await cur.fetchone()
        if row is None:
            return None
        updated_at = datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None
        return json.loads(row["value_json"]), updated_at

    async def put_settings_row(
        self,
        namespace: SettingsNamespace,
        values: dict[str, Any],
        updated_at: datetime | None,
    ) -> None:
        await self.conn.execute(
            """
            INSERT INTO settings (namespace, value_json, updated_at) VALUES (?, ?, ?)
            ON CONFLICT (namespace) DO UPDATE SET
                value_json = excluded.value_json,
                updated_at = excluded.updated_at
            """,
            (namespace.value, json.dumps(values), _iso(updated_at)),
        )
        await self._commit()

    # -- app_state ------------------------------------------------------------

    async def get_state(self, key: str) -> str | None:
        cur = await self.conn.execute("SELECT value FROM app_state WHERE key = ?", (key,))
        row = await cur.fetchone()
        return row["value"] if row else None

    async def set_state(self, key: str, value: str) -> None:
        await self.conn.execute(
            """
            INSERT INTO app_state (key, value) VALUES (?, ?)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        await self._commit()

    async def get_device_id(self) -> str:
        """Return the per-install device id, generating it on first use."""
        device_id = await self.get_state(_DEVICE_ID_KEY)
        if device_id is None:
            device_id = uuid.uuid4().hex
            await self.set_state(_DEVICE_ID_KEY, device_id)
        return device_id

    # -- sync_runs ------------------------------------------------------------

    async def start_sync_run(self, *, direction: str, file_path: str | None = None) -> SyncRun:
        cur = await self.conn.execute(
            """
            INSERT INTO sync_runs (started_at, direction, status, file_path)
            VALUES (?, ?, 'running', ?)
            RETURNING *
            """,
            (_iso(_now()), direction, file_path),
        )
        row = await cur.fetchone()
        await self._commit()
        return self._row_to_sync_run(row)

    async def finish_sync_run(
        self,
        run_id: int,
        *,
        status: str,
        remote_device_id: str | None = None,
        stats_json: str | None = None,
        error_message: str | None = None,
    ) -> SyncRun:
        cur = await self.conn.execute(
            """
            UPDATE sync_runs
            SET finished_at = ?, status = ?, remote_device_id = ?, stats_json = ?, error_message = ?
            WHERE id = ?
            RETURNING *
            """,
            (_iso(_now()), status, remote_device_id, stats_json, error_message, run_id),
        )
        row = await cur.fetchone()
        await self._commit()
        return self._row_to_sync_run(row)

    async def list_sync_runs(self, *, limit: int = 20) -> list[SyncRun]:
        cur = await self.conn.execute(
            "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?", (limit,)
        )
        rows = await cur.fetchall()
        return [self._row_to_sync_run(r) for r in rows]

    # -- stats ----------------------------------------------------------------

    async def get_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for name, query in (
            ("media", "SELECT COUNT(*) FROM media"),
            ("favorites", "SELECT COUNT(*) FROM media WHERE is_favorite = 1"),
            ("progress", "SELECT COUNT(*) FROM watch_progress"),
            ("lists", "SELECT COUNT(*) FROM lists"),
            ("list_items", "SELECT COUNT(*) FROM list_items"),
            ("tombstones", "SELECT COUNT(*) FROM tombstones"),
        ):
            cur = await self.conn.execute(query)
            row = await cur.fetchone()
            counts[name] = row[0]
        return counts

    # -- row → model helpers --------------------------------------------------

    @staticmethod
    def _row_to_media(row: aiosqlite.Row) -> MediaRecord:
        return MediaRecord(
            tmdb_id=row["tmdb_id"],
            media_type=row["media_type"],
            title=row["title"],
            title_original=row["title_original"],
            imdb_id=row["imdb_id"],
            year=row["year"],
            score=row["score"],
            poster_path=row["poster_path"],
            backdrop_path=row["backdrop_path"],
            description=row["description"],
            genres=json.loads(row["genres"]) if row["genres"] else [],
            season_count=row["season_count"],
            episode_count=row["episode_count"],
            is_favorite=bool(row["is_favorite"]),
            added_at=row["added_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_progress(row: aiosqlite.Row) -> WatchProgress:
        return WatchProgress(
            tmdb_id=row["tmdb_id"],
            media_type=row["media_type"],
            season_number=row["season_number"],
            episode_number=row["episode_number"],
            position=row["position"],
            duration=row["duration"],
            completed=bool(row["completed"]),
            watched_at=row["watched_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_list(row: aiosqlite.Row) -> MediaList:
        return MediaList(
            id=row["id"],
            name=row["name"],
            is_default=bool(row["is_default"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_list_item(row: aiosqlite.Row) -> ListItem:
        return ListItem(
            list_id=row["list_id"],
            tmdb_id=row["tmdb_id"],
            media_type=row["media_type"],
            added_at=row["added_at"],
        )

    @staticmethod
    def _row_to_sync_run(row: aiosqlite.Row) -> SyncRun:
        return SyncRun(
            id=row["id"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            direction=row["direction"],
            status=row["status"],
            remote_device_id=row["remote_device_id"],
            file_path=row["file_path"],
            stats_json=row["stats_json"],
            error_message=row["error_message"],
        )
