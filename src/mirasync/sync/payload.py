"""Snapshot payload models and their JSON codec.

The wire format uses camelCase keys (``schemaVersion``, ``listItems``...).
Deletion entries share the shape of live entries in their category and set
``deletedAt``, which takes priority over every other field of the entry.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from mirasync.errors import MalformedPayloadError, SchemaVersionError
from mirasync.storage.models import MediaType, SettingsNamespace

SCHEMA_VERSION = 1


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncMedia(_WireModel):
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

    @field_validator("genres", mode="before")
    @classmethod
    def _decode_genres(cls, value: Any) -> Any:
        # Older exports carry genres as a JSON-encoded string.
        if value is None:
            return []
        if isinstance(value, str):
            try:
                return json.loads(value) if value else []
            except json.JSONDecodeError as exc:
                msg = "genres must be a list or a JSON array string"
                raise ValueError(msg) from exc
        return value


class SyncFavorite(_WireModel):
    tmdb_id: int
    media_type: MediaType
    updated_at: datetime
    deleted_at: datetime | None = None

    @property
    def remote_timestamp(self) -> datetime:
        return self.deleted_at or self.updated_at


class SyncProgress(_WireModel):
    tmdb_id: int
    media_type: MediaType
    season_number: int | None = None
    episode_number: int | None = None
    position: int = 0
    duration: int = 0
    completed: bool = False
    watched_at: datetime | None = None
    updated_at: datetime
    deleted_at: datetime | None = None

    @property
    def remote_timestamp(self) -> datetime:
        return self.deleted_at or self.updated_at


class SyncList(_WireModel):
    id: str
    name: str
    is_default: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def remote_timestamp(self) -> datetime | None:
        return self.deleted_at or self.updated_at or self.created_at


class SyncListItem(_WireModel):
    list_id: str
    tmdb_id: int
    media_type: MediaType
    added_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def remote_timestamp(self) -> datetime | None:
        return self.deleted_at or self.updated_at or self.added_at


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class SyncPlaybackSettings(_WireModel):
    updated_at: datetime
    use_vlc_player: bool = False


class SyncSourceFilterSettings(_WireModel):
    updated_at: datetime
    qualities: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)


class SyncStreamingPreferenceSettings(_WireModel):
    updated_at: datetime
    preferred_audio_languages: list[str] = Field(default_factory=list)
    preferred_subtitle_languages: list[str] = Field(default_factory=list)


class SyncLanguageSettings(_WireModel):
    updated_at: datetime
    language: str


class SyncThemeSettings(_WireModel):
    updated_at: datetime
    theme: str | None = None


class SyncSettings(_WireModel):
    playback: SyncPlaybackSettings
    source_filters: SyncSourceFilterSettings
    streaming_preferences: SyncStreamingPreferenceSettings
    language: SyncLanguageSettings
    theme: SyncThemeSettings

    def namespace(self, namespace: SettingsNamespace) -> _WireModel:
        return {
            SettingsNamespace.PLAYBACK: self.playback,
            SettingsNamespace.SOURCE_FILTERS: self.source_filters,
            SettingsNamespace.STREAMING_PREFERENCES: self.streaming_preferences,
            SettingsNamespace.LANGUAGE: self.language,
            SettingsNamespace.THEME: self.theme,
        }[namespace]


class Payload(_WireModel):
    """A portable snapshot of one installation's synchronizable state."""

    schema_version: int = SCHEMA_VERSION
    exported_at: datetime
    device_id: str
    media: list[SyncMedia] = Field(default_factory=list)
    favorites: list[SyncFavorite] = Field(default_factory=list)
    progress: list[SyncProgress] = Field(default_factory=list)
    lists: list[SyncList] = Field(default_factory=list)
    list_items: list[SyncListItem] = Field(default_factory=list)
    settings: SyncSettings


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def parse_payload(raw: Any) -> Payload:
    """Validate a decoded JSON document.

    The schema version is checked before anything else so an unsupported
    file is rejected without looking at the rest of it.
    """
    if isinstance(raw, Payload):
        raw = raw.model_dump(by_alias=True, mode="json")
    if not isinstance(raw, dict):
        msg = f"Snapshot must be a JSON object, got {type(raw).__name__}"
        raise MalformedPayloadError(msg)
    if "schemaVersion" not in raw:
        msg = "Snapshot is missing schemaVersion"
        raise MalformedPayloadError(msg)

    version = raw["schemaVersion"]
    if isinstance(version, bool) or version != SCHEMA_VERSION:
        raise SchemaVersionError(version, SCHEMA_VERSION)

    try:
        return Payload.model_validate(raw)
    except ValidationError as exc:
        msg = f"Snapshot is malformed: {exc.error_count()} invalid field(s)"
        raise MalformedPayloadError(msg) from exc


def load_payload(text: str | bytes) -> Payload:
    """Decode and validate a snapshot file's content."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"Snapshot is not valid JSON: {exc.msg}"
        raise MalformedPayloadError(msg) from exc
    return parse_payload(raw)


def dump_payload(payload: Payload, *, indent: int | None = 2) -> str:
    """Serialize a snapshot to its camelCase JSON form."""
    return json.dumps(payload.model_dump(by_alias=True, mode="json"), indent=indent or None)
