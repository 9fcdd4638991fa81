"""Shared fixtures for Mirasync tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from mirasync.storage.database import Database

EPOCH = "1970-01-01T00:00:00+00:00"
BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)


def at(seconds: int) -> datetime:
    """A fixed instant *seconds* after the test base time."""
    return BASE_TIME + timedelta(seconds=seconds)


def iso(seconds: int) -> str:
    return at(seconds).isoformat()


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all Mirasync runtime files to a temporary directory.

    Patches ``mirasync.config.get_base_dir`` so that nothing touches the real
    ``~/.mirasync/``.
    """
    fake_base = tmp_path / ".mirasync"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()

    monkeypatch.setattr("mirasync.config.get_base_dir", lambda: fake_base)

    return fake_base


@pytest_asyncio.fixture()
async def db(tmp_path: Path):
    """Provide a fresh database for each test."""
    database = Database(tmp_path / "test.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture()
def snapshot() -> dict:
    """A minimal valid snapshot whose settings never beat local defaults."""
    return {
        "schemaVersion": 1,
        "exportedAt": iso(1000),
        "deviceId": "remote-device",
        "media": [],
        "favorites": [],
        "progress": [],
        "lists": [],
        "listItems": [],
        "settings": {
            "playback": {"updatedAt": EPOCH, "useVlcPlayer": False},
            "sourceFilters": {"updatedAt": EPOCH, "qualities": [], "languages": []},
            "streamingPreferences": {
                "updatedAt": EPOCH,
                "preferredAudioLanguages": [],
                "preferredSubtitleLanguages": [],
            },
            "language": {"updatedAt": EPOCH, "language": "system"},
            "theme": {"updatedAt": EPOCH, "theme": None},
        },
    }
