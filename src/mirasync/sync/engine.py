"""Sync engine: drives snapshot export and import for the surrounding app."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from mirasync.errors import StorageError, SyncInProgressError
from mirasync.storage.settings import SettingsRepository
from mirasync.sync.builder import SnapshotBuilder
from mirasync.sync.payload import dump_payload, load_payload
from mirasync.sync.reconciler import MergeStats, Reconciler
from mirasync.sync.tombstones import TombstoneTracker

if TYPE_CHECKING:
    from mirasync.config import AppConfig
    from mirasync.storage.database import Database
    from mirasync.sync.payload import Payload

log = structlog.get_logger(__name__)


class SyncState(StrEnum):
    IDLE = "idle"
    EXPORTING = "exporting"
    IMPORTING = "importing"
    ERROR = "error"


class SyncEngine:
    """Owns the builder and reconciler and guarantees one operation at a time."""

    def __init__(self, config: AppConfig, db: Database) -> None:
        self._config = config
        self._db = db
        self.tombstones = TombstoneTracker(db)
        self.settings = SettingsRepository(db)
        self.builder = SnapshotBuilder(db, self.tombstones, self.settings)
        self.reconciler = Reconciler(
            db,
            self.tombstones,
            self.settings,
            device_language=config.language.device_language or None,
        )
        self._state = SyncState.IDLE
        self._lock = asyncio.Lock()
        self._last_stats: MergeStats | None = None

    @property
    def db(self) -> Database:
        return self._db

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def last_stats(self) -> MergeStats | None:
        return self._last_stats

    def get_status(self) -> dict:
        return {
            "state": self._state.value,
            "last_stats": self._last_stats.to_json() if self._last_stats else None,
        }

    # ── in-memory payloads ────────────────────────────────────────────────

    async def build_payload(self) -> Payload:
        async with self._guard(SyncState.EXPORTING):
            return await self.builder.build()

    async def apply_payload(self, payload: Payload | dict[str, Any]) -> MergeStats:
        async with self._guard(SyncState.IMPORTING):
            stats = await self.reconciler.apply(payload)
            self._last_stats = stats
            return stats

    # ── files ─────────────────────────────────────────────────────────────

    async def export_to_file(self, path: Path | None = None) -> Path:
        """Build a snapshot and write it as JSON; returns the written path."""
        target = path or self._config.export_path
        async with self._guard(SyncState.EXPORTING):
            run = await self._db.start_sync_run(direction="export", file_path=str(target))
            try:
                payload = await self.builder.build()
                text = dump_payload(payload, indent=self._config.sync.indent)
                try:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_text(text, encoding="utf-8")
                except OSError as exc:
                    raise StorageError(f"Could not write snapshot to {target}: {exc}") from exc
            except Exception as exc:
                await self._db.finish_sync_run(run.id, status="failed", error_message=str(exc))
                log.error("export_failed", path=str(target), error=str(exc))
                raise

            await self._db.finish_sync_run(run.id, status="completed", remote_device_id=payload.device_id)
            log.info("export_completed", path=str(target), bytes=len(text))
            return target

    async def import_from_file(self, path: Path) -> MergeStats:
        """Read a snapshot file and merge it into the local store."""
        async with self._guard(SyncState.IMPORTING):
            run = await self._db.start_sync_run(direction="import", file_path=str(path))
            remote_device_id: str | None = None
            try:
                try:
                    text = path.read_text(encoding="utf-8")
                except OSError as exc:
                    raise StorageError(f"Could not read snapshot {path}: {exc}") from exc
                payload = load_payload(text)
                remote_device_id = payload.device_id
                stats = await self.reconciler.apply(payload)
            except Exception as exc:
                await self._db.finish_sync_run(
                    run.id,
                    status="failed",
                    remote_device_id=remote_device_id,
                    error_message=str(exc),
                )
                log.error("import_failed", path=str(path), error=str(exc))
                raise

            await self._db.finish_sync_run(
                run.id,
                status="completed",
                remote_device_id=remote_device_id,
                stats_json=stats.to_json(),
            )
            self._last_stats = stats
            log.info("import_completed", path=str(path), stats=stats.to_json())
            return stats

    # ── guard ─────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _guard(self, state: SyncState) -> AsyncIterator[None]:
        """Run one export/import at a time. Raises if another is in flight."""
        if self._lock.locked():
            raise SyncInProgressError(f"Sync already in progress ({self._state.value})")

        async with self._lock:
            self._state = state
            try:
                yield
            except Exception:
                self._state = SyncState.ERROR
                raise
            self._state = SyncState.IDLE
