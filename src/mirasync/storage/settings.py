"""Settings repository: typed access to the five preference namespaces."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from mirasync.storage.models import NAMESPACE_MODELS, SettingsNamespace

if TYPE_CHECKING:
    from mirasync.storage.database import Database

log = structlog.get_logger(__name__)

_RESOLVED_LANGUAGE_KEY = "resolved_language"


@dataclass
class NamespaceState:
    """Current value set of one namespace and its last mutation time."""

    namespace: SettingsNamespace
    values: BaseModel
    updated_at: datetime | None


class SettingsRepository:
    """Reads and writes settings namespaces stored in the local database."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, namespace: SettingsNamespace) -> NamespaceState:
        model = NAMESPACE_MODELS[namespace]
        row = await self._db.get_settings_row(namespace)
        if row is None:
            return NamespaceState(namespace=namespace, values=model(), updated_at=None)
        raw, updated_at = row
        return NamespaceState(
            namespace=namespace,
            values=model.model_validate(raw),
            updated_at=updated_at,
        )

    async def get_all(self) -> dict[SettingsNamespace, NamespaceState]:
        return {ns: await self.get(ns) for ns in SettingsNamespace}

    async def update(self, namespace: SettingsNamespace, **changes: object) -> NamespaceState:
        """Apply a local edit and stamp the namespace with the current time."""
        state = await self.get(namespace)
        values = state.values.model_copy(update=changes)
        values = NAMESPACE_MODELS[namespace].model_validate(values.model_dump())
        now = datetime.now(UTC)
        await self._db.put_settings_row(namespace, values.model_dump(mode="json"), now)
        log.debug("settings_updated", namespace=namespace.value, fields=sorted(changes))
        return NamespaceState(namespace=namespace, values=values, updated_at=now)

    async def replace(
        self,
        namespace: SettingsNamespace,
        values: BaseModel,
        updated_at: datetime,
    ) -> None:
        """Overwrite the whole namespace with *values* and adopt *updated_at*."""
        await self._db.put_settings_row(namespace, values.model_dump(mode="json"), updated_at)

    async def get_resolved_language(self) -> str | None:
        return await self._db.get_state(_RESOLVED_LANGUAGE_KEY)

    async def set_resolved_language(self, language: str) -> None:
        await self._db.set_state(_RESOLVED_LANGUAGE_KEY, language)
