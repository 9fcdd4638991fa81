"""Local library mutations.

Every operation that removes something synchronizable records a tombstone,
and every operation that (re)creates it clears the tombstone, so the next
snapshot carries deletions alongside live records.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from mirasync.errors import DefaultListError
from mirasync.language import SYSTEM_LANGUAGE, resolve_language
from mirasync.storage.models import (
    ListItem,
    MediaList,
    MediaRecord,
    SettingsNamespace,
    TombstoneKind,
    WatchProgress,
)
from mirasync.storage.settings import NamespaceState, SettingsRepository
from mirasync.sync.keys import favorite_key, list_item_key, progress_key
from mirasync.sync.tombstones import TombstoneTracker

if TYPE_CHECKING:
    from mirasync.storage.database import Database

log = structlog.get_logger(__name__)

DEFAULT_LIST_NAME = "Watchlist"


def _now() -> datetime:
    return datetime.now(UTC)


class Library:
    """Favorites, watch progress, lists and settings of this installation."""

    def __init__(self, db: Database, *, device_language: str | None = None) -> None:
        self._db = db
        self._tombstones = TombstoneTracker(db)
        self._settings = SettingsRepository(db)
        self._device_language = device_language

    # -- media / favorites ------------------------------------------------------

    async def save_media(self, record: MediaRecord) -> MediaRecord:
        """Cache metadata for a title without changing its favorite state."""
        await self._db.upsert_media_metadata(record)
        stored = await self._db.get_media(record.tmdb_id, record.media_type)
        assert stored is not None
        return stored

    async def toggle_favorite(self, record: MediaRecord) -> bool:
        """Flip the favorite flag, caching *record* first if unknown. Returns the new state."""
        existing = await self._db.get_media(record.tmdb_id, record.media_type)
        if existing is None:
            await self._db.upsert_media_metadata(record)
            is_favorite = True
        else:
            is_favorite = not existing.is_favorite

        now = _now()
        await self._db.set_favorite(
            record.tmdb_id, record.media_type, is_favorite=is_favorite, updated_at=now
        )
        key = favorite_key(record.tmdb_id, record.media_type)
        if is_favorite:
            await self._tombstones.clear_deletion(TombstoneKind.FAVORITES, key)
        else:
            await self._tombstones.record_deletion(TombstoneKind.FAVORITES, key, now)
        log.info("favorite_toggled", key=key, is_favorite=is_favorite)
        return is_favorite

    # -- watch progress ---------------------------------------------------------

    async def save_progress(
        self,
        tmdb_id: int,
        media_type: str,
        *,
        position: float,
        duration: float,
        season_number: int | None = None,
        episode_number: int | None = None,
        completed: bool = False,
    ) -> WatchProgress:
        now = _now()
        existing = await self._db.get_progress(tmdb_id, media_type, season_number, episode_number)
        progress = WatchProgress(
            tmdb_id=tmdb_id,
            media_type=media_type,
            season_number=season_number,
            episode_number=episode_number,
            position=int(position),
            duration=int(duration),
            completed=completed,
            watched_at=existing.watched_at if existing and existing.watched_at else now,
            updated_at=now,
        )
        await self._db.upsert_progress(progress)
        await self._tombstones.clear_deletion(
            TombstoneKind.PROGRESS, progress_key(tmdb_id, media_type, season_number, episode_number)
        )
        return progress

    async def mark_completed(
        self,
        tmdb_id: int,
        media_type: str,
        season_number: int | None = None,
        episode_number: int | None = None,
    ) -> WatchProgress | None:
        existing = await self._db.get_progress(tmdb_id, media_type, season_number, episode_number)
        if existing is None:
            return None
        progress = existing.model_copy(update={"completed": True, "updated_at": _now()})
        await self._db.upsert_progress(progress)
        await self._tombstones.clear_deletion(
            TombstoneKind.PROGRESS, progress_key(tmdb_id, media_type, season_number, episode_number)
        )
        return progress

    async def mark_episodes_completed(
        self,
        tmdb_id: int,
        episodes: list[tuple[int, int]],
    ) -> int:
        """Mark ``(season, episode)`` pairs of a show as watched."""
        for season_number, episode_number in episodes:
            existing = await self._db.get_progress(tmdb_id, "tv", season_number, episode_number)
            if existing is not None:
                await self.mark_completed(tmdb_id, "tv", season_number, episode_number)
            else:
                # duration 1 keeps progress ratios well-defined
                await self.save_progress(
                    tmdb_id,
                    "tv",
                    position=0,
                    duration=1,
                    season_number=season_number,
                    episode_number=episode_number,
                    completed=True,
                )
        return len(episodes)

    async def clear_progress(
        self,
        tmdb_id: int,
        media_type: str,
        season_number: int | None = None,
        episode_number: int | None = None,
    ) -> bool:
        removed = await self._db.delete_progress(tmdb_id, media_type, season_number, episode_number)
        if removed:
            await self._tombstones.record_deletion(
                TombstoneKind.PROGRESS,
                progress_key(tmdb_id, media_type, season_number, episode_number),
            )
        return bool(removed)

    # -- lists ------------------------------------------------------------------

    async def ensure_default_list(self) -> MediaList:
        existing = await self._db.get_default_list()
        if existing is not None:
            return existing
        return await self._create_list(DEFAULT_LIST_NAME, is_default=True)

    async def create_list(self, name: str) -> MediaList:
        return await self._create_list(name.strip(), is_default=False)

    async def _create_list(self, name: str, *, is_default: bool) -> MediaList:
        now = _now()
        media_list = await self._db.upsert_list(
            MediaList(
                id=uuid.uuid4().hex,
                name=name,
                is_default=is_default,
                created_at=now,
                updated_at=now,
            )
        )
        await self._tombstones.clear_deletion(TombstoneKind.LISTS, media_list.id)
        log.info("list_created", list_id=media_list.id, is_default=is_default)
        return media_list

    async def rename_list(self, list_id: str, name: str) -> bool:
        return await self._db.rename_list(list_id, name.strip(), updated_at=_now())

    async def delete_list(self, list_id: str) -> bool:
        media_list = await self._db.get_list(list_id)
        if media_list is None:
            return False
        if media_list.is_default:
            raise DefaultListError("Cannot delete the default list")
        await self._db.delete_list(list_id)
        await self._tombstones.record_deletion(TombstoneKind.LISTS, list_id)
        log.info("list_deleted", list_id=list_id)
        return True

    async def add_to_list(self, list_id: str, record: MediaRecord) -> ListItem:
        await self._db.upsert_media_metadata(record)
        item = ListItem(
            list_id=list_id,
            tmdb_id=record.tmdb_id,
            media_type=record.media_type,
            added_at=_now(),
        )
        await self._db.upsert_list_item(item)
        await self._tombstones.clear_deletion(
            TombstoneKind.LIST_ITEMS, list_item_key(list_id, record.tmdb_id, record.media_type)
        )
        return item

    async def remove_from_list(self, list_id: str, tmdb_id: int, media_type: str) -> bool:
        removed = await self._db.delete_list_item(list_id, tmdb_id, media_type)
        if removed:
            await self._tombstones.record_deletion(
                TombstoneKind.LIST_ITEMS, list_item_key(list_id, tmdb_id, media_type)
            )
        return bool(removed)

    # -- settings ---------------------------------------------------------------

    async def update_settings(self, namespace: SettingsNamespace, **changes: object) -> NamespaceState:
        return await self._settings.update(namespace, **changes)

    async def set_language(self, language: str = SYSTEM_LANGUAGE) -> str:
        """Store the language preference and return the effective display language."""
        await self._settings.update(SettingsNamespace.LANGUAGE, language=language)
        resolved = resolve_language(language, self._device_language)
        await self._settings.set_resolved_language(resolved)
        return resolved
