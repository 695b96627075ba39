"""
Workspace registry.

Maps workspace roots to their code index service so that each workspace
gets exactly one orchestrator for as long as the host keeps it open.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable

import structlog

if TYPE_CHECKING:
    from codeindex.main import CodeIndexService

logger = structlog.get_logger(__name__)


def _default_factory(workspace_root: Path) -> "CodeIndexService":
    from codeindex.config import load_config
    from codeindex.main import CodeIndexService

    return CodeIndexService(load_config(workspace_root=workspace_root))


class OrchestratorRegistry:
    """
    Workspace root to service registry.

    Usage:
        registry = OrchestratorRegistry()
        service = registry.get_or_create("/path/to/project")
        await service.start_indexing()
        ...
        await registry.dispose_all()
    """

    def __init__(
        self,
        factory: Callable[[Path], "CodeIndexService"] | None = None,
    ) -> None:
        """
        Initialize registry.

        Args:
            factory: Builds the service for a resolved workspace root.
        """
        self._factory = factory or _default_factory
        self._services: dict[Path, "CodeIndexService"] = {}

    @staticmethod
    def _key(workspace_root: str | Path) -> Path:
        return Path(workspace_root).resolve()

    def get_or_create(self, workspace_root: str | Path) -> "CodeIndexService":
        """Return the workspace's service, creating it on first use."""
        key = self._key(workspace_root)
        service = self._services.get(key)
        if service is None:
            service = self._factory(key)
            self._services[key] = service
            logger.debug("Workspace registered", workspace_root=str(key))
        return service

    def get(self, workspace_root: str | Path) -> "CodeIndexService | None":
        return self._services.get(self._key(workspace_root))

    def __contains__(self, workspace_root: object) -> bool:
        if not isinstance(workspace_root, (str, Path)):
            return False
        return self._key(workspace_root) in self._services

    def workspaces(self) -> list[Path]:
        return list(self._services)

    async def dispose(self, workspace_root: str | Path) -> bool:
        """
        Shut down and forget a workspace's service.

        Returns:
            True if removed, False if not found
        """
        service = self._services.pop(self._key(workspace_root), None)
        if service is None:
            return False

        await service.shutdown()
        logger.debug("Workspace unregistered", workspace_root=str(workspace_root))
        return True

    async def dispose_all(self) -> None:
        for key in list(self._services):
            await self.dispose(key)
