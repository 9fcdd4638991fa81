"""Pydantic models for the Mirasync storage layer."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

MediaType = Literal["movie", "tv"]
SyncDirection = Literal["export", "import"]
SyncStatus = Literal["running", "completed", "failed"]


class TombstoneKind(StrEnum):
    """Entity collections whose deletions travel in a snapshot."""

    FAVORITES = "favorites"
    PROGRESS = "progress"
    LISTS = "lists"
    LIST_ITEMS = "listItems"


class SettingsNamespace(StrEnum):
    """Independently timestamped groups of preferences."""

    PLAYBACK = "playback"
    SOURCE_FILTERS = "sourceFilters"
    STREAMING_PREFERENCES = "streamingPreferences"
    LANGUAGE = "language"
    THEME = "theme"


class MediaRecord(BaseModel):
    """Cached metadata for a movie or show plus the favorite flag."""

    tmdb_id: int
    media_type: MediaType
    title: str
    title_original: str | None = None
    imdb_id: str | None = None
    year: int | None = None
    score: float | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    description: str | None = None
    genres: list[str] = Field(default_factory=list)
    season_count: int | None = None
    episode_count: int | None = None
    is_favorite: bool = False
    added_at: datetime | None = None
    updated_at: datetime | None = None


class WatchProgress(BaseModel):
    """Playback position for a movie or a single episode."""

    tmdb_id: int
    media_type: MediaType
    season_number: int | None = None
    episode_number: int | None = None
    position: int = 0  # seconds
    duration: int = 0  # seconds
    completed: bool = False
    watched_at: datetime | None = None
    updated_at: datetime | None = None


class MediaList(BaseModel):
    """A user list; ids are generated per installation."""

    id: str
    name: str
    is_default: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ListItem(BaseModel):
    """Membership of a media item in a list."""

    list_id: str
    tmdb_id: int
    media_type: MediaType
    added_at: datetime | None = None


class SyncRun(BaseModel):
    """Record of a single export or import."""

    id: int | None = None
    started_at: datetime
    finished_at: datetime | None = None
    direction: SyncDirection
    status: SyncStatus
    remote_device_id: str | None = None
    file_path: str | None = None
    stats_json: str | None = None
    error_message: str | None = None


# ---------------------------------------------------------------------------
# Settings namespaces
# ---------------------------------------------------------------------------


class PlaybackSettings(BaseModel):
    use_vlc_player: bool = False


class SourceFilterSettings(BaseModel):
    """Empty lists mean "all"."""

    qualities: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)


class StreamingPreferenceSettings(BaseModel):
    """Ordered preferences, first entry has the highest priority."""

    preferred_audio_languages: list[str] = Field(default_factory=list)
    preferred_subtitle_languages: list[str] = Field(default_factory=list)


class LanguageSettings(BaseModel):
    language: str = "system"


class ThemeSettings(BaseModel):
    theme: str | None = None


NAMESPACE_MODELS: dict[SettingsNamespace, type[BaseModel]] = {
    SettingsNamespace.PLAYBACK: PlaybackSettings,
    SettingsNamespace.SOURCE_FILTERS: SourceFilterSettings,
    SettingsNamespace.STREAMING_PREFERENCES: StreamingPreferenceSettings,
    SettingsNamespace.LANGUAGE: LanguageSettings,
    SettingsNamespace.THEME: ThemeSettings,
}
