"""Workspace settings consulted by the validator's policy check."""
from typing import Any, Protocol, runtime_checkable
import asyncio
import structlog

log = structlog.get_logger()


@runtime_checkable
class WorkspaceSettingsStore(Protocol):
    async def get_settings(self, workspace_id: str) -> dict[str, Any]:
        ...


class InMemoryWorkspaceSettingsStore:
    """Settings per workspace. Unknown workspaces have empty settings."""

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None):
        self._settings: dict[str, dict[str, Any]] = {k: dict(v) for k, v in (initial or {}).items()}
        self._lock = asyncio.Lock()

    async def get_settings(self, workspace_id: str) -> dict[str, Any]:
        return dict(self._settings.get(workspace_id, {}))

    async def set_settings(self, workspace_id: str, settings: dict[str, Any]):
        async with self._lock:
            self._settings[workspace_id] = dict(settings)
        log.info("workspace.settings_replaced", workspace_id=workspace_id)

    async def update_settings(self, workspace_id: str, **changes: Any) -> dict[str, Any]:
        async with self._lock:
            current = self._settings.setdefault(workspace_id, {})
            current.update(changes)
            log.info("workspace.settings_updated", workspace_id=workspace_id, keys=sorted(changes))
            return dict(current)
