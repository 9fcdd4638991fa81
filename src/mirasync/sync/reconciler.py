"""Reconciler: applies a snapshot payload to the local store.

Categories are processed in dependency order (media, lists, list items,
favorites, progress, settings) and every decision goes through
:func:`~mirasync.sync.conflict.is_remote_newer`. A local entity's timestamp is
its live timestamp or, when it only exists as a deletion, its tombstone's, so
an incoming record never resurrects something deleted after it was written.

The whole merge runs inside one storage transaction: a failure in any
category leaves the store exactly as it was before the import.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog

from mirasync.errors import StorageError
from mirasync.storage.models import ListItem, MediaRecord, TombstoneKind, WatchProgress
from mirasync.sync.conflict import is_remote_newer, latest
from mirasync.sync.keys import favorite_key, list_item_key, progress_key
from mirasync.sync.lists import ListIdentityResolver
from mirasync.sync.payload import parse_payload
from mirasync.sync.settings import SettingsMerger

if TYPE_CHECKING:
    from mirasync.storage.database import Database
    from mirasync.storage.settings import SettingsRepository
    from mirasync.sync.payload import Payload, SyncFavorite, SyncListItem, SyncProgress
    from mirasync.sync.tombstones import TombstoneTracker

log = structlog.get_logger(__name__)


@dataclass
class MergeStats:
    media_upserted: int = 0
    lists_upserted: int = 0
    lists_deleted: int = 0
    list_items_upserted: int = 0
    list_items_deleted: int = 0
    favorites_set: int = 0
    favorites_cleared: int = 0
    progress_upserted: int = 0
    progress_deleted: int = 0
    settings_replaced: int = 0
    resurrected: int = 0
    skipped: int = 0

    def to_json(self) -> str:
        return json.dumps(asdict(self))


class Reconciler:
    """Last-write-wins merge of a remote snapshot into the local store."""

    def __init__(
        self,
        db: Database,
        tombstones: TombstoneTracker,
        settings: SettingsRepository,
        *,
        device_language: str | None = None,
    ) -> None:
        self._db = db
        self._tombstones = tombstones
        self._settings_merger = SettingsMerger(settings, device_language=device_language)

    async def apply(self, payload: Payload | dict[str, Any]) -> MergeStats:
        """Validate *payload* and merge it.

        Raises :class:`~mirasync.errors.SchemaVersionError` or
        :class:`~mirasync.errors.MalformedPayloadError` before touching the
        store, and :class:`~mirasync.errors.StorageError` (after rolling back)
        when the local store fails mid-merge.
        """
        payload = parse_payload(payload)
        stats = MergeStats()
        log.info(
            "merge_started",
            remote_device_id=payload.device_id,
            exported_at=payload.exported_at.isoformat(),
        )

        try:
            async with self._db.transaction():
                await self._merge_media(payload, stats)
                resolver = ListIdentityResolver(self._db, self._tombstones)
                await resolver.merge(payload.lists, stats)
                await self._merge_list_items(payload.list_items, resolver, stats)
                await self._merge_favorites(payload.favorites, stats)
                await self._merge_progress(payload.progress, stats)
                await self._settings_merger.merge(payload.settings, stats)
        except aiosqlite.Error as exc:
            log.error("merge_failed", remote_device_id=payload.device_id, error=str(exc))
            raise StorageError(f"Local store failed during merge: {exc}") from exc

        log.info("merge_completed", remote_device_id=payload.device_id, stats=stats.to_json())
        return stats

    # ── media ─────────────────────────────────────────────────────────────

    async def _merge_media(self, payload: Payload, stats: MergeStats) -> None:
        # Pure metadata: always upserted, favorite state is left alone.
        for media in payload.media:
            await self._db.upsert_media_metadata(MediaRecord(**media.model_dump()))
            stats.media_upserted += 1

    # ── list items ────────────────────────────────────────────────────────

    async def _merge_list_items(
        self,
        items: list[SyncListItem],
        resolver: ListIdentityResolver,
        stats: MergeStats,
    ) -> None:
        existing_lists = {lst.id for lst in await self._db.list_lists()}
        local_items = {
            list_item_key(i.list_id, i.tmdb_id, i.media_type): i
            for i in await self._db.list_list_items()
        }
        deleted = await self._tombstones.all_deletions(TombstoneKind.LIST_ITEMS)

        for item in items:
            list_id = resolver.resolve_id(item.list_id)
            if list_id not in existing_lists:
                stats.skipped += 1
                continue

            key = list_item_key(list_id, item.tmdb_id, item.media_type)
            local = local_items.get(key)
            tombstone = deleted.get(key)
            local_ts = self._local_timestamp(local.added_at if local else None, tombstone)

            if item.deleted_at is not None:
                if local is not None and is_remote_newer(local_ts, item.deleted_at):
                    await self._db.delete_list_item(list_id, item.tmdb_id, item.media_type)
                    local_items.pop(key, None)
                    stats.list_items_deleted += 1
                else:
                    stats.skipped += 1
                continue

            fresh = local is None and tombstone is None
            if not fresh and not is_remote_newer(local_ts, item.remote_timestamp):
                stats.skipped += 1
                continue

            merged = ListItem(
                list_id=list_id,
                tmdb_id=item.tmdb_id,
                media_type=item.media_type,
                added_at=item.added_at,
            )
            await self._db.upsert_list_item(merged)
            local_items[key] = merged
            await self._clear_tombstone(TombstoneKind.LIST_ITEMS, key, stats)
            stats.list_items_upserted += 1

    # ── favorites ─────────────────────────────────────────────────────────

    async def _merge_favorites(self, favorites: list[SyncFavorite], stats: MergeStats) -> None:
        deleted = await self._tombstones.all_deletions(TombstoneKind.FAVORITES)

        for favorite in favorites:
            key = favorite_key(favorite.tmdb_id, favorite.media_type)
            media = await self._db.get_media(favorite.tmdb_id, favorite.media_type)
            live = media if media is not None and media.is_favorite else None
            tombstone = deleted.get(key)
            # updated_at tracks the last favorite toggle, including a remote
            # deletion applied earlier.
            if live is not None:
                favorite_ts = live.updated_at or live.added_at
            else:
                favorite_ts = media.updated_at if media is not None else None
            local_ts = self._local_timestamp(favorite_ts, tombstone)

            if favorite.deleted_at is not None:
                if live is not None and is_remote_newer(local_ts, favorite.deleted_at):
                    await self._db.set_favorite(
                        favorite.tmdb_id,
                        favorite.media_type,
                        is_favorite=False,
                        updated_at=favorite.deleted_at,
                    )
                    stats.favorites_cleared += 1
                else:
                    stats.skipped += 1
                continue

            if not is_remote_newer(local_ts, favorite.updated_at):
                stats.skipped += 1
                continue
            updated = await self._db.set_favorite(
                favorite.tmdb_id,
                favorite.media_type,
                is_favorite=True,
                updated_at=favorite.updated_at,
            )
            if not updated:
                log.warning("favorite_without_media", key=key)
                stats.skipped += 1
                continue
            await self._clear_tombstone(TombstoneKind.FAVORITES, key, stats)
            stats.favorites_set += 1

    # ── progress ──────────────────────────────────────────────────────────

    async def _merge_progress(self, entries: list[SyncProgress], stats: MergeStats) -> None:
        local_progress = {
            progress_key(p.tmdb_id, p.media_type, p.season_number, p.episode_number): p
            for p in await self._db.list_progress()
        }
        deleted = await self._tombstones.all_deletions(TombstoneKind.PROGRESS)

        for entry in entries:
            key = progress_key(entry.tmdb_id, entry.media_type, entry.season_number, entry.episode_number)
            local = local_progress.get(key)
            tombstone = deleted.get(key)
            local_ts = self._local_timestamp(local.updated_at if local else None, tombstone)

            if entry.deleted_at is not None:
                if local is not None and is_remote_newer(local_ts, entry.deleted_at):
                    await self._db.delete_progress(
                        entry.tmdb_id, entry.media_type, entry.season_number, entry.episode_number
                    )
                    local_progress.pop(key, None)
                    stats.progress_deleted += 1
                else:
                    stats.skipped += 1
                continue

            if not is_remote_newer(local_ts, entry.updated_at):
                stats.skipped += 1
                continue

            merged = WatchProgress(
                tmdb_id=entry.tmdb_id,
                media_type=entry.media_type,
                season_number=entry.season_number,
                episode_number=entry.episode_number,
                position=entry.position,
                duration=entry.duration,
                completed=entry.completed,
                watched_at=entry.watched_at,
                updated_at=entry.updated_at,
            )
            await self._db.upsert_progress(merged)
            local_progress[key] = merged
            await self._clear_tombstone(TombstoneKind.PROGRESS, key, stats)
            stats.progress_upserted += 1

    # ── helpers ───────────────────────────────────────────────────────────

    @staticmethod
    def _local_timestamp(live: datetime | None, tombstone: datetime | None) -> datetime | None:
        return latest(live, tombstone)

    async def _clear_tombstone(self, kind: TombstoneKind, key: str, stats: MergeStats) -> None:
        if await self._tombstones.clear_deletion(kind, key):
            stats.resurrected += 1
