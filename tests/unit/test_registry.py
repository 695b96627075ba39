"""
Unit tests for the workspace registry.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from codeindex.main import CodeIndexService
from codeindex.registry import OrchestratorRegistry


def fake_factory():
    created: list[Path] = []

    def factory(root: Path):
        created.append(root)
        service = MagicMock()
        service.shutdown = AsyncMock()
        return service

    return factory, created


class TestOrchestratorRegistry:
    """Tests for OrchestratorRegistry."""

    def test_one_service_per_workspace(self, tmp_path: Path):
        factory, created = fake_factory()
        registry = OrchestratorRegistry(factory)

        first = registry.get_or_create(tmp_path)
        second = registry.get_or_create(str(tmp_path / "sub" / ".."))

        assert first is second
        assert created == [tmp_path.resolve()]

    def test_separate_workspaces(self, tmp_path: Path):
        factory, created = fake_factory()
        registry = OrchestratorRegistry(factory)

        a = registry.get_or_create(tmp_path / "a")
        b = registry.get_or_create(tmp_path / "b")

        assert a is not b
        assert sorted(registry.workspaces()) == sorted(created)

    def test_get_and_contains(self, tmp_path: Path):
        factory, _ = fake_factory()
        registry = OrchestratorRegistry(factory)

        assert registry.get(tmp_path) is None
        assert tmp_path not in registry

        service = registry.get_or_create(tmp_path)

        assert registry.get(str(tmp_path)) is service
        assert str(tmp_path) in registry
        assert 42 not in registry

    @pytest.mark.asyncio
    async def test_dispose_shuts_down(self, tmp_path: Path):
        factory, _ = fake_factory()
        registry = OrchestratorRegistry(factory)
        service = registry.get_or_create(tmp_path)

        assert await registry.dispose(tmp_path) is True
        assert await registry.dispose(tmp_path) is False

        service.shutdown.assert_awaited_once()
        assert tmp_path not in registry

    @pytest.mark.asyncio
    async def test_dispose_all(self, tmp_path: Path):
        factory, _ = fake_factory()
        registry = OrchestratorRegistry(factory)
        services = [registry.get_or_create(tmp_path / name) for name in ("a", "b")]

        await registry.dispose_all()

        assert registry.workspaces() == []
        for service in services:
            service.shutdown.assert_awaited_once()

    def test_default_factory_builds_service(self, workspace: Path):
        registry = OrchestratorRegistry()

        service = registry.get_or_create(workspace)

        assert isinstance(service, CodeIndexService)
        assert service.config.workspace_root == workspace.resolve()
