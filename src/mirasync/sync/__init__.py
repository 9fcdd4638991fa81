"""Snapshot builder, reconciler and the engine that drives them."""

from mirasync.sync.builder import SnapshotBuilder
from mirasync.sync.engine import SyncEngine, SyncState
from mirasync.sync.payload import Payload
from mirasync.sync.reconciler import MergeStats, Reconciler
from mirasync.sync.tombstones import TombstoneTracker

__all__ = [
    "MergeStats",
    "Payload",
    "Reconciler",
    "SnapshotBuilder",
    "SyncEngine",
    "SyncState",
    "TombstoneTracker",
]
