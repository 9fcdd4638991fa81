"""Exception hierarchy for the Mirasync snapshot sync core."""

from __future__ import annotations


class MirasyncError(Exception):
    """Base class for all Mirasync errors."""


class SyncError(MirasyncError):
    """Base class for snapshot build and merge failures."""


class SchemaVersionError(SyncError):
    """The snapshot declares a ``schemaVersion`` this build cannot read."""

    def __init__(self, version: object, supported: int) -> None:
        self.version = version
        self.supported = supported
        super().__init__(f"Unsupported sync file version: {version!r} (expected {supported})")


class MalformedPayloadError(SyncError):
    """The snapshot is not valid JSON or misses required fields."""


class StorageError(SyncError):
    """A read or write against the local store failed."""


class SyncInProgressError(SyncError):
    """An export or import is already running."""


class DefaultListError(MirasyncError):
    """The default list cannot be deleted."""
