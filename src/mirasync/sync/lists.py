"""List identity resolution across installations.

List ids are generated per install, so the same logical list (typically the
default "Watchlist") has different raw ids on each device. Incoming lists are
matched to local ones by normalized name, and every list-item reference in
the payload is remapped through the resulting id map.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from mirasync.storage.models import MediaList, TombstoneKind
from mirasync.sync.conflict import is_remote_newer, latest

if TYPE_CHECKING:
    from mirasync.storage.database import Database
    from mirasync.sync.payload import SyncList
    from mirasync.sync.reconciler import MergeStats
    from mirasync.sync.tombstones import TombstoneTracker

log = structlog.get_logger(__name__)


def normalize_list_name(name: str) -> str:
    return name.strip().lower()


class ListIdentityResolver:
    """Merges incoming lists and records remote id → local id.

    Remaps are persisted, so a remote list keeps resolving to the same local
    id (and that id's tombstone) after the local list is deleted or renamed.
    """

    def __init__(self, db: Database, tombstones: TombstoneTracker) -> None:
        self._db = db
        self._tombstones = tombstones
        self.id_map: dict[str, str] = {}

    def resolve_id(self, remote_id: str) -> str:
        """Return the local id a remote list id was merged into."""
        return self.id_map.get(remote_id, remote_id)

    async def merge(self, remote_lists: list[SyncList], stats: MergeStats) -> dict[str, str]:
        local_lists = await self._db.list_lists()
        by_id = {lst.id: lst for lst in local_lists}
        by_name: dict[str, MediaList] = {}
        for lst in local_lists:
            by_name.setdefault(normalize_list_name(lst.name), lst)
        deleted = await self._tombstones.all_deletions(TombstoneKind.LISTS)
        aliases = await self._db.list_list_aliases()
        self.id_map.update(aliases)
        has_default = any(lst.is_default for lst in local_lists)

        for remote in remote_lists:
            normalized = normalize_list_name(remote.name)
            aliased = aliases.get(remote.id)
            if aliased is not None and (aliased in by_id or aliased in deleted):
                target_id = aliased
            else:
                name_match = by_name.get(normalized) if normalized else None
                target_id = name_match.id if name_match else remote.id
            local = by_id.get(target_id)
            self.id_map[remote.id] = target_id
            if target_id != remote.id and aliased != target_id:
                await self._db.set_list_alias(remote.id, target_id)

            tombstone = deleted.get(target_id)
            local_ts = latest(local.updated_at or local.created_at, tombstone) if local else tombstone

            if remote.deleted_at is not None:
                if local is None or not is_remote_newer(local_ts, remote.deleted_at):
                    stats.skipped += 1
                    continue
                if local.is_default:
                    log.warning("default_list_delete_ignored", list_id=target_id)
                    stats.skipped += 1
                    continue
                await self._db.delete_list(target_id)
                by_id.pop(target_id, None)
                if by_name.get(normalize_list_name(local.name)) is local:
                    del by_name[normalize_list_name(local.name)]
                stats.lists_deleted += 1
                continue

            fresh = local is None and tombstone is None
            if not fresh and not is_remote_newer(local_ts, remote.remote_timestamp):
                stats.skipped += 1
                continue

            # An existing list keeps its default flag; a new one may only
            # become default when this install has none yet.
            is_default = local.is_default if local else (remote.is_default and not has_default)
            merged = await self._db.upsert_list(
                MediaList(
                    id=target_id,
                    name=remote.name,
                    is_default=is_default,
                    created_at=remote.created_at or (local.created_at if local else None),
                    updated_at=remote.updated_at,
                )
            )
            if local is not None and by_name.get(normalize_list_name(local.name)) is local:
                del by_name[normalize_list_name(local.name)]
            by_id[target_id] = merged
            by_name.setdefault(normalized, merged)
            has_default = has_default or merged.is_default

            if await self._tombstones.clear_deletion(TombstoneKind.LISTS, target_id):
                stats.resurrected += 1
            stats.lists_upserted += 1

        if self.id_map:
            remapped = {k: v for k, v in self.id_map.items() if k != v}
            log.debug("lists_resolved", total=len(self.id_map), remapped=len(remapped))
        return self.id_map
