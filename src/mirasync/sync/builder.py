"""Snapshot builder: turns the local store and its tombstones into a payload."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from mirasync.errors import StorageError
from mirasync.storage.models import SettingsNamespace, TombstoneKind
from mirasync.sync.keys import (
    favorite_key,
    parse_favorite_key,
    parse_list_item_key,
    parse_progress_key,
)
from mirasync.sync.payload import (
    SCHEMA_VERSION,
    Payload,
    SyncFavorite,
    SyncLanguageSettings,
    SyncList,
    SyncListItem,
    SyncMedia,
    SyncPlaybackSettings,
    SyncProgress,
    SyncSettings,
    SyncSourceFilterSettings,
    SyncStreamingPreferenceSettings,
    SyncThemeSettings,
)

if TYPE_CHECKING:
    from mirasync.storage.database import Database
    from mirasync.storage.settings import SettingsRepository
    from mirasync.sync.tombstones import TombstoneTracker

log = structlog.get_logger(__name__)

_WIRE_SETTINGS = {
    SettingsNamespace.PLAYBACK: SyncPlaybackSettings,
    SettingsNamespace.SOURCE_FILTERS: SyncSourceFilterSettings,
    SettingsNamespace.STREAMING_PREFERENCES: SyncStreamingPreferenceSettings,
    SettingsNamespace.LANGUAGE: SyncLanguageSettings,
    SettingsNamespace.THEME: SyncThemeSettings,
}


class SnapshotBuilder:
    """Builds a portable :class:`Payload` from local state."""

    def __init__(
        self,
        db: Database,
        tombstones: TombstoneTracker,
        settings: SettingsRepository,
    ) -> None:
        self._db = db
        self._tombstones = tombstones
        self._settings = settings

    async def build(self) -> Payload:
        exported_at = datetime.now(UTC)
        try:
            payload = await self._build(exported_at)
        except (aiosqlite.Error, OSError) as exc:
            raise StorageError(f"Failed to read local store: {exc}") from exc

        log.info(
            "snapshot_built",
            device_id=payload.device_id,
            media=len(payload.media),
            favorites=len(payload.favorites),
            progress=len(payload.progress),
            lists=len(payload.lists),
            list_items=len(payload.list_items),
        )
        return payload

    async def _build(self, exported_at: datetime) -> Payload:
        device_id = await self._db.get_device_id()
        media_records = await self._db.list_media()
        progress_records = await self._db.list_progress()
        list_records = await self._db.list_lists()
        list_item_records = await self._db.list_list_items()

        favorite_records = [m for m in media_records if m.is_favorite]

        # Only media referenced by a favorite, progress or list item travels.
        referenced_keys: set[str] = set()
        referenced_keys.update(favorite_key(m.tmdb_id, m.media_type) for m in favorite_records)
        referenced_keys.update(favorite_key(i.tmdb_id, i.media_type) for i in list_item_records)
        referenced_keys.update(favorite_key(p.tmdb_id, p.media_type) for p in progress_records)

        media = [
            SyncMedia(
                tmdb_id=m.tmdb_id,
                media_type=m.media_type,
                title=m.title,
                title_original=m.title_original,
                imdb_id=m.imdb_id,
                year=m.year,
                score=m.score,
                poster_path=m.poster_path,
                backdrop_path=m.backdrop_path,
                description=m.description,
                genres=m.genres,
                season_count=m.season_count,
                episode_count=m.episode_count,
            )
            for m in media_records
            if favorite_key(m.tmdb_id, m.media_type) in referenced_keys
        ]

        favorites = [
            SyncFavorite(
                tmdb_id=m.tmdb_id,
                media_type=m.media_type,
                updated_at=m.updated_at or m.added_at or exported_at,
            )
            for m in favorite_records
        ]
        progress = [
            SyncProgress(
                tmdb_id=p.tmdb_id,
                media_type=p.media_type,
                season_number=p.season_number,
                episode_number=p.episode_number,
                position=p.position,
                duration=p.duration,
                completed=p.completed,
                watched_at=p.watched_at,
                updated_at=p.updated_at or exported_at,
            )
            for p in progress_records
        ]
        lists = [
            SyncList(
                id=lst.id,
                name=lst.name,
                is_default=lst.is_default,
                created_at=lst.created_at,
                updated_at=lst.updated_at,
            )
            for lst in list_records
        ]
        list_items = [
            SyncListItem(
                list_id=i.list_id,
                tmdb_id=i.tmdb_id,
                media_type=i.media_type,
                added_at=i.added_at,
                updated_at=i.added_at,
            )
            for i in list_item_records
        ]

        await self._append_deletions(favorites, progress, lists, list_items)

        return Payload(
            schema_version=SCHEMA_VERSION,
            exported_at=exported_at,
            device_id=device_id,
            media=media,
            favorites=favorites,
            progress=progress,
            lists=lists,
            list_items=list_items,
            settings=await self._build_settings(exported_at),
        )

    async def _append_deletions(
        self,
        favorites: list[SyncFavorite],
        progress: list[SyncProgress],
        lists: list[SyncList],
        list_items: list[SyncListItem],
    ) -> None:
        for key, deleted_at in (await self._tombstones.all_deletions(TombstoneKind.FAVORITES)).items():
            tmdb_id, media_type = parse_favorite_key(key)
            favorites.append(
                SyncFavorite(
                    tmdb_id=tmdb_id,
                    media_type=media_type,
                    updated_at=deleted_at,
                    deleted_at=deleted_at,
                )
            )

        for key, deleted_at in (await self._tombstones.all_deletions(TombstoneKind.PROGRESS)).items():
            pk = parse_progress_key(key)
            progress.append(
                SyncProgress(
                    tmdb_id=pk.tmdb_id,
                    media_type=pk.media_type,
                    season_number=pk.season_number,
                    episode_number=pk.episode_number,
                    updated_at=deleted_at,
                    deleted_at=deleted_at,
                )
            )

        for list_id, deleted_at in (await self._tombstones.all_deletions(TombstoneKind.LISTS)).items():
            lists.append(SyncList(id=list_id, name="", deleted_at=deleted_at))

        for key, deleted_at in (await self._tombstones.all_deletions(TombstoneKind.LIST_ITEMS)).items():
            ik = parse_list_item_key(key)
            list_items.append(
                SyncListItem(
                    list_id=ik.list_id,
                    tmdb_id=ik.tmdb_id,
                    media_type=ik.media_type,
                    deleted_at=deleted_at,
                )
            )

    async def _build_settings(self, exported_at: datetime) -> SyncSettings:
        namespaces = {}
        for namespace, wire_model in _WIRE_SETTINGS.items():
            state = await self._settings.get(namespace)
            namespaces[namespace] = wire_model(
                updated_at=state.updated_at or exported_at,
                **state.values.model_dump(),
            )
        return SyncSettings(
            playback=namespaces[SettingsNamespace.PLAYBACK],
            source_filters=namespaces[SettingsNamespace.SOURCE_FILTERS],
            streaming_preferences=namespaces[SettingsNamespace.STREAMING_PREFERENCES],
            language=namespaces[SettingsNamespace.LANGUAGE],
            theme=namespaces[SettingsNamespace.THEME],
        )
