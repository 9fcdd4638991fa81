"""Natural keys used for cross-device identity and tombstone bookkeeping."""

from __future__ import annotations

from typing import NamedTuple


class ProgressKey(NamedTuple):
    tmdb_id: int
    media_type: str
    season_number: int | None
    episode_number: int | None


class ListItemKey(NamedTuple):
    list_id: str
    tmdb_id: int
    media_type: str


def favorite_key(tmdb_id: int, media_type: str) -> str:
    """Key of a media row, also used for favorites: ``"550:movie"``."""
    return f"{tmdb_id}:{media_type}"


def progress_key(
    tmdb_id: int,
    media_type: str,
    season_number: int | None = None,
    episode_number: int | None = None,
) -> str:
    """Key of a progress row; absent season/episode become empty segments."""
    season = "" if season_number is None else season_number
    episode = "" if episode_number is None else episode_number
    return f"{tmdb_id}:{media_type}:{season}:{episode}"


def list_item_key(list_id: str, tmdb_id: int, media_type: str) -> str:
    return f"{list_id}:{tmdb_id}:{media_type}"


def parse_favorite_key(key: str) -> tuple[int, str]:
    tmdb_id, media_type = key.split(":")
    return int(tmdb_id), media_type


def parse_progress_key(key: str) -> ProgressKey:
    tmdb_id, media_type, season, episode = key.split(":")
    return ProgressKey(
        int(tmdb_id),
        media_type,
        int(season) if season else None,
        int(episode) if episode else None,
    )


def parse_list_item_key(key: str) -> ListItemKey:
    # List ids come from other installs verbatim, so split from the right.
    list_id, tmdb_id, media_type = key.rsplit(":", 2)
    return ListItemKey(list_id, int(tmdb_id), media_type)
