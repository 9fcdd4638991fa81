"""Mirasync storage layer: async SQLite database for the local library and sync state."""

from mirasync.storage.database import Database
from mirasync.storage.models import (
    ListItem,
    MediaList,
    MediaRecord,
    SettingsNamespace,
    SyncRun,
    TombstoneKind,
    WatchProgress,
)
from mirasync.storage.settings import NamespaceState, SettingsRepository

__all__ = [
    "Database",
    "ListItem",
    "MediaList",
    "MediaRecord",
    "NamespaceState",
    "SettingsNamespace",
    "SettingsRepository",
    "SyncRun",
    "TombstoneKind",
    "WatchProgress",
]
