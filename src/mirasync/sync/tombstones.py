"""Durable per-kind deletion records consulted by export and merge."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from mirasync.storage.database import Database
    from mirasync.storage.models import TombstoneKind

log = structlog.get_logger(__name__)


class TombstoneTracker:
    """Key → deletion timestamp maps, one per entity kind.

    Pure bookkeeping: callers decide when a deletion is recorded or cleared.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def record_deletion(
        self,
        kind: TombstoneKind,
        key: str,
        timestamp: datetime | None = None,
    ) -> datetime:
        deleted_at = timestamp or datetime.now(UTC)
        await self._db.set_tombstone(kind, key, deleted_at)
        log.debug("tombstone_recorded", kind=kind.value, key=key)
        return deleted_at

    async def clear_deletion(self, kind: TombstoneKind, key: str) -> bool:
        removed = await self._db.delete_tombstone(kind, key)
        if removed:
            log.debug("tombstone_cleared", kind=kind.value, key=key)
        return bool(removed)

    async def get_deletion(self, kind: TombstoneKind, key: str) -> datetime | None:
        return await self._db.get_tombstone(kind, key)

    async def all_deletions(self, kind: TombstoneKind) -> dict[str, datetime]:
        return await self._db.list_tombstones(kind)
