"""Tests for list identity resolution."""

from __future__ import annotations

import pytest

from conftest import at
from mirasync.storage import Database, MediaList, TombstoneKind
from mirasync.sync.lists import ListIdentityResolver, normalize_list_name
from mirasync.sync.payload import SyncList
from mirasync.sync.reconciler import MergeStats
from mirasync.sync.tombstones import TombstoneTracker


def _resolver(db: Database) -> ListIdentityResolver:
    return ListIdentityResolver(db, TombstoneTracker(db))


def test_normalize_list_name():
    assert normalize_list_name("  WatchList ") == "watchlist"


@pytest.mark.asyncio()
async def test_same_name_maps_to_local_id(db: Database):
    await db.upsert_list(MediaList(id="b1", name="Watchlist", is_default=True, created_at=at(1)))
    resolver = _resolver(db)

    id_map = await resolver.merge(
        [SyncList(id="a1", name=" watchlist", is_default=True, updated_at=at(5))], MergeStats()
    )

    assert id_map == {"a1": "b1"}
    assert resolver.resolve_id("a1") == "b1"
    assert resolver.resolve_id("zz") == "zz"
    lists = await db.list_lists()
    assert [(lst.id, lst.is_default) for lst in lists] == [("b1", True)]


@pytest.mark.asyncio()
async def test_unknown_list_is_created_with_remote_id(db: Database):
    stats = MergeStats()
    await _resolver(db).merge([SyncList(id="a7", name="Horror", created_at=at(2))], stats)

    created = await db.get_list("a7")
    assert created is not None
    assert created.name == "Horror"
    assert stats.lists_upserted == 1


@pytest.mark.asyncio()
async def test_list_without_timestamps_is_still_created(db: Database):
    await _resolver(db).merge([SyncList(id="a8", name="Misc")], MergeStats())
    assert await db.get_list("a8") is not None


@pytest.mark.asyncio()
async def test_incoming_default_is_demoted_when_local_default_exists(db: Database):
    await db.upsert_list(MediaList(id="b1", name="Watchlist", is_default=True, created_at=at(1)))
    await _resolver(db).merge(
        [SyncList(id="a1", name="Ma liste", is_default=True, created_at=at(2))], MergeStats()
    )

    defaults = [lst.id for lst in await db.list_lists() if lst.is_default]
    assert defaults == ["b1"]


@pytest.mark.asyncio()
async def test_incoming_default_kept_when_none_locally(db: Database):
    await _resolver(db).merge(
        [SyncList(id="a1", name="Watchlist", is_default=True, created_at=at(2))], MergeStats()
    )
    assert (await db.get_default_list()).id == "a1"


@pytest.mark.asyncio()
async def test_lists_created_in_one_merge_are_matched_by_name(db: Database):
    await _resolver(db).merge(
        [
            SyncList(id="x1", name="Docs", created_at=at(1)),
            SyncList(id="x2", name="docs", created_at=at(2)),
        ],
        MergeStats(),
    )
    assert [lst.id for lst in await db.list_lists()] == ["x1"]


@pytest.mark.asyncio()
async def test_older_remote_rename_is_skipped(db: Database):
    await db.upsert_list(MediaList(id="l1", name="Later", created_at=at(1), updated_at=at(10)))
    stats = MergeStats()
    await _resolver(db).merge([SyncList(id="l1", name="Old name", updated_at=at(5))], stats)

    assert (await db.get_list("l1")).name == "Later"
    assert stats.skipped == 1


@pytest.mark.asyncio()
async def test_remote_deletion_removes_non_default_list(db: Database):
    await db.upsert_list(MediaList(id="l1", name="Later", created_at=at(1)))
    stats = MergeStats()
    await _resolver(db).merge([SyncList(id="l1", name="", deleted_at=at(5))], stats)

    assert await db.get_list("l1") is None
    assert stats.lists_deleted == 1


@pytest.mark.asyncio()
async def test_remote_deletion_never_removes_default_list(db: Database):
    await db.upsert_list(MediaList(id="b1", name="Watchlist", is_default=True, created_at=at(1)))
    await _resolver(db).merge([SyncList(id="b1", name="", deleted_at=at(5))], MergeStats())
    assert await db.get_list("b1") is not None


@pytest.mark.asyncio()
async def test_local_tombstone_blocks_older_recreation(db: Database):
    tracker = TombstoneTracker(db)
    await tracker.record_deletion(TombstoneKind.LISTS, "l1", at(10))
    resolver = ListIdentityResolver(db, tracker)

    await resolver.merge([SyncList(id="l1", name="Later", updated_at=at(5))], MergeStats())
    assert await db.get_list("l1") is None

    stats = MergeStats()
    await resolver.merge([SyncList(id="l1", name="Later", updated_at=at(20))], stats)
    assert await db.get_list("l1") is not None
    assert await tracker.get_deletion(TombstoneKind.LISTS, "l1") is None
    assert stats.resurrected == 1


@pytest.mark.asyncio()
async def test_remap_is_persisted(db: Database):
    await db.upsert_list(MediaList(id="b2", name="Horror", created_at=at(1), updated_at=at(1)))
    await _resolver(db).merge([SyncList(id="a2", name="Horror", updated_at=at(2))], MergeStats())

    assert await db.list_list_aliases() == {"a2": "b2"}
    assert _resolver(db).resolve_id("a2") == "a2"

    resolver = _resolver(db)
    await resolver.merge([], MergeStats())
    assert resolver.resolve_id("a2") == "b2"


@pytest.mark.asyncio()
async def test_deleted_remapped_list_stays_deleted(db: Database):
    await db.upsert_list(MediaList(id="b2", name="Horror", created_at=at(1), updated_at=at(1)))
    await _resolver(db).merge([SyncList(id="a2", name="Horror", updated_at=at(2))], MergeStats())
    await db.delete_list("b2")
    await TombstoneTracker(db).record_deletion(TombstoneKind.LISTS, "b2", at(10))

    stats = MergeStats()
    resolver = _resolver(db)
    await resolver.merge([SyncList(id="a2", name="Horror", updated_at=at(2))], stats)

    assert await db.list_lists() == []
    assert resolver.resolve_id("a2") == "b2"
    assert stats.skipped == 1
    assert stats.lists_upserted == 0


@pytest.mark.asyncio()
async def test_alias_follows_local_rename(db: Database):
    await db.upsert_list(MediaList(id="b2", name="Horror", created_at=at(1), updated_at=at(1)))
    await _resolver(db).merge([SyncList(id="a2", name="Horror", updated_at=at(2))], MergeStats())
    await db.rename_list("b2", "Scary", updated_at=at(3))

    await _resolver(db).merge([SyncList(id="a2", name="Horror", updated_at=at(4))], MergeStats())

    lists = await db.list_lists()
    assert [(lst.id, lst.name) for lst in lists] == [("b2", "Horror")]
