"""Tests for the Mirasync storage layer."""

from __future__ import annotations

import pytest

from conftest import at
from mirasync.storage import (
    Database,
    ListItem,
    MediaList,
    MediaRecord,
    SettingsNamespace,
    TombstoneKind,
    WatchProgress,
)
from mirasync.storage.database import SETTINGS_BASELINE


def _media(tmdb_id: int = 550, media_type: str = "movie", **kw) -> MediaRecord:
    return MediaRecord(tmdb_id=tmdb_id, media_type=media_type, title=kw.pop("title", "Fight Club"), **kw)


# ---------------------------------------------------------------------------
# Schema / connect
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_connect_creates_tables(db: Database):
    cur = await db.conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    tables = {row["name"] for row in await cur.fetchall()}
    assert tables >= {
        "media",
        "watch_progress",
        "lists",
        "list_items",
        "list_aliases",
        "tombstones",
        "settings",
        "app_state",
        "sync_runs",
    }


@pytest.mark.asyncio()
async def test_foreign_keys_enabled(db: Database):
    cur = await db.conn.execute("PRAGMA foreign_keys")
    row = await cur.fetchone()
    assert row[0] == 1


@pytest.mark.asyncio()
async def test_conn_before_connect_raises(tmp_path):
    database = Database(tmp_path / "never.db")
    with pytest.raises(RuntimeError, match="not connected"):
        _ = database.conn


@pytest.mark.asyncio()
async def test_settings_seeded_at_baseline(db: Database):
    for namespace in SettingsNamespace:
        row = await db.get_settings_row(namespace)
        assert row is not None
        assert row[1] == SETTINGS_BASELINE


@pytest.mark.asyncio()
async def test_reconnect_keeps_settings(tmp_path):
    database = Database(tmp_path / "lib.db")
    await database.connect()
    await database.put_settings_row(SettingsNamespace.THEME, {"theme": "dark"}, at(10))
    await database.close()

    await database.connect()
    values, updated_at = await database.get_settings_row(SettingsNamespace.THEME)
    await database.close()
    assert values == {"theme": "dark"}
    assert updated_at == at(10)


# ---------------------------------------------------------------------------
# media
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_upsert_media_inserts(db: Database):
    await db.upsert_media_metadata(_media(genres=["Drama"], year=1999))
    stored = await db.get_media(550, "movie")
    assert stored is not None
    assert stored.genres == ["Drama"]
    assert stored.year == 1999
    assert stored.is_favorite is False
    assert stored.added_at is not None
    assert stored.updated_at is None


@pytest.mark.asyncio()
async def test_upsert_media_keeps_favorite_state(db: Database):
    await db.upsert_media_metadata(_media())
    await db.set_favorite(550, "movie", is_favorite=True, updated_at=at(5))
    await db.upsert_media_metadata(_media(title="Fight Club (Remastered)"))

    stored = await db.get_media(550, "movie")
    assert stored.title == "Fight Club (Remastered)"
    assert stored.is_favorite is True
    assert stored.updated_at == at(5)


@pytest.mark.asyncio()
async def test_set_favorite_unknown_media(db: Database):
    assert await db.set_favorite(1, "tv", is_favorite=True, updated_at=at(1)) is False


@pytest.mark.asyncio()
async def test_list_media_favorites_only(db: Database):
    await db.upsert_media_metadata(_media(550))
    await db.upsert_media_metadata(_media(680, title="Pulp Fiction"))
    await db.set_favorite(680, "movie", is_favorite=True, updated_at=at(1))

    assert [m.tmdb_id for m in await db.list_media()] == [550, 680]
    assert [m.tmdb_id for m in await db.list_media(favorites_only=True)] == [680]


# ---------------------------------------------------------------------------
# watch_progress
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_movie_progress_upsert_is_single_row(db: Database):
    await db.upsert_progress(WatchProgress(tmdb_id=550, media_type="movie", position=10, duration=100))
    await db.upsert_progress(WatchProgress(tmdb_id=550, media_type="movie", position=70, duration=100))

    rows = await db.list_progress()
    assert len(rows) == 1
    assert rows[0].position == 70


@pytest.mark.asyncio()
async def test_episode_progress_keyed_by_season_and_episode(db: Database):
    for episode in (1, 2):
        await db.upsert_progress(
            WatchProgress(tmdb_id=1399, media_type="tv", season_number=1, episode_number=episode)
        )
    assert len(await db.list_progress()) == 2
    assert await db.get_progress(1399, "tv", 1, 2) is not None
    assert await db.get_progress(1399, "tv") is None


@pytest.mark.asyncio()
async def test_delete_progress(db: Database):
    await db.upsert_progress(WatchProgress(tmdb_id=550, media_type="movie"))
    assert await db.delete_progress(550, "movie") == 1
    assert await db.delete_progress(550, "movie") == 0


# ---------------------------------------------------------------------------
# lists / list_items
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_upsert_list_returns_row(db: Database):
    stored = await db.upsert_list(MediaList(id="l1", name="Watchlist", is_default=True, created_at=at(1)))
    assert stored.id == "l1"
    assert stored.is_default is True
    assert (await db.get_default_list()).id == "l1"


@pytest.mark.asyncio()
async def test_rename_list(db: Database):
    await db.upsert_list(MediaList(id="l1", name="Old"))
    assert await db.rename_list("l1", "New", updated_at=at(2)) is True
    assert (await db.get_list("l1")).name == "New"
    assert await db.rename_list("missing", "X", updated_at=at(2)) is False


@pytest.mark.asyncio()
async def test_delete_list_cascades_items(db: Database):
    await db.upsert_list(MediaList(id="l1", name="Later"))
    await db.upsert_list_item(ListItem(list_id="l1", tmdb_id=550, media_type="movie", added_at=at(1)))
    await db.upsert_list_item(ListItem(list_id="l1", tmdb_id=680, media_type="movie", added_at=at(2)))

    assert await db.delete_list("l1") == 1
    assert await db.list_list_items() == []


@pytest.mark.asyncio()
async def test_list_items_filtered_by_list(db: Database):
    await db.upsert_list(MediaList(id="a", name="A"))
    await db.upsert_list(MediaList(id="b", name="B"))
    await db.upsert_list_item(ListItem(list_id="a", tmdb_id=1, media_type="movie"))
    await db.upsert_list_item(ListItem(list_id="b", tmdb_id=2, media_type="tv"))

    assert [i.tmdb_id for i in await db.list_list_items("b")] == [2]
    assert len(await db.list_list_items()) == 2
    assert await db.get_list_item("a", 1, "movie") is not None
    assert await db.delete_list_item("a", 1, "movie") == 1


# ---------------------------------------------------------------------------
# tombstones / app_state
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_tombstone_overwrite_and_delete(db: Database):
    await db.set_tombstone(TombstoneKind.FAVORITES, "550:movie", at(1))
    await db.set_tombstone(TombstoneKind.FAVORITES, "550:movie", at(9))
    assert await db.get_tombstone(TombstoneKind.FAVORITES, "550:movie") == at(9)
    assert await db.list_tombstones(TombstoneKind.PROGRESS) == {}
    assert await db.delete_tombstone(TombstoneKind.FAVORITES, "550:movie") == 1
    assert await db.get_tombstone(TombstoneKind.FAVORITES, "550:movie") is None


@pytest.mark.asyncio()
async def test_device_id_is_stable(db: Database):
    first = await db.get_device_id()
    assert first
    assert await db.get_device_id() == first


# ---------------------------------------------------------------------------
# transactions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_transaction_commits(db: Database):
    async with db.transaction():
        await db.upsert_media_metadata(_media())
        await db.set_tombstone(TombstoneKind.FAVORITES, "1:tv", at(1))
    counts = await db.get_counts()
    assert counts["media"] == 1
    assert counts["tombstones"] == 1


@pytest.mark.asyncio()
async def test_transaction_rolls_back_on_error(db: Database):
    await db.upsert_media_metadata(_media(680, title="Pulp Fiction"))

    with pytest.raises(ValueError, match="boom"):
        async with db.transaction():
            await db.upsert_media_metadata(_media())
            await db.set_favorite(680, "movie", is_favorite=True, updated_at=at(1))
            raise ValueError("boom")

    assert await db.get_media(550, "movie") is None
    assert (await db.get_media(680, "movie")).is_favorite is False


@pytest.mark.asyncio()
async def test_nested_transaction_rejected(db: Database):
    async with db.transaction():
        with pytest.raises(RuntimeError, match="Nested"):
            async with db.transaction():
                pass


# ---------------------------------------------------------------------------
# sync_runs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_sync_run_lifecycle(db: Database):
    run = await db.start_sync_run(direction="import", file_path="/tmp/x.json")
    assert run.status == "running"

    done = await db.finish_sync_run(
        run.id, status="completed", remote_device_id="dev-b", stats_json='{"skipped": 0}'
    )
    assert done.status == "completed"
    assert done.finished_at is not None
    assert done.remote_device_id == "dev-b"

    runs = await db.list_sync_runs(limit=5)
    assert [r.id for r in runs] == [run.id]
