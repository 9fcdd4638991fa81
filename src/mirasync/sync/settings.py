"""Per-namespace last-write-wins merge of preference groups."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from mirasync.language import resolve_language
from mirasync.storage.models import NAMESPACE_MODELS, SettingsNamespace, ThemeSettings
from mirasync.sync.conflict import is_remote_newer

if TYPE_CHECKING:
    from mirasync.storage.settings import SettingsRepository
    from mirasync.sync.payload import SyncSettings
    from mirasync.sync.reconciler import MergeStats

log = structlog.get_logger(__name__)


class SettingsMerger:
    """Merges each namespace independently so an edit to one never clobbers another."""

    def __init__(self, repository: SettingsRepository, *, device_language: str | None = None) -> None:
        self._repository = repository
        self._device_language = device_language

    async def merge(self, incoming: SyncSettings, stats: MergeStats) -> list[SettingsNamespace]:
        replaced: list[SettingsNamespace] = []
        for namespace in SettingsNamespace:
            remote = incoming.namespace(namespace)
            local = await self._repository.get(namespace)
            if not is_remote_newer(local.updated_at, remote.updated_at):
                continue

            values = NAMESPACE_MODELS[namespace].model_validate(
                remote.model_dump(exclude={"updated_at"})
            )
            # A remote "no theme chosen" keeps whatever theme is stored here.
            if namespace is SettingsNamespace.THEME and values.theme is None:
                values = ThemeSettings(theme=local.values.theme)

            await self._repository.replace(namespace, values, remote.updated_at)
            if namespace is SettingsNamespace.LANGUAGE:
                resolved = resolve_language(values.language, self._device_language)
                await self._repository.set_resolved_language(resolved)
                log.debug("language_resolved", preference=values.language, resolved=resolved)
            replaced.append(namespace)

        stats.settings_replaced += len(replaced)
        if replaced:
            log.info("settings_merged", namespaces=[ns.value for ns in replaced])
        return replaced
