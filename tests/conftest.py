"""
Shared fixtures for the codeindex test suite.

Provides common test fixtures including:
- Temporary workspaces with sample source files
- Test configuration
- Deterministic embedding backend
- Mock orchestrator collaborators
"""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from codeindex.config import Config, ConfigManager
from codeindex.events import Disposable, EventEmitter
from codeindex.indexing.embedder import EmbeddingBackend
from codeindex.indexing.scanner import ScanResult, ScanStats
from codeindex.state import IndexStateManager

TEST_DIMENSION = 64


# ==============================================================================
# Sample Source Files
# ==============================================================================

SAMPLE_AUTH_PY = '''"""Authentication helpers."""

from dataclasses import dataclass


@dataclass
class Token:
    value: str
    expires_at: float


def validate_token(token: Token, now: float) -> bool:
    """Return True when the token has not expired."""
    if not token.value:
        return False
    return token.expires_at > now
'''

SAMPLE_ROUTES_TS = '''import { Token } from './auth';

export interface Route {
  path: string;
  handler: (token: Token) => Promise<Response>;
}

export const routes: Route[] = [
  { path: '/health', handler: async () => new Response('ok') },
];
'''

SAMPLE_UTILS_GO = '''package utils

// Clamp limits v to the range [lo, hi].
func Clamp(v, lo, hi int) int {
	if v < lo {
		return lo
	}
	if v > hi {
		return hi
	}
	return v
}
'''


# ==============================================================================
# Embedding Backend
# ==============================================================================

class MockEmbeddingBackend(EmbeddingBackend):
    """
    Mock embedding backend for fast tests.

    Generates deterministic embeddings based on content hash. Set
    ``fail_with`` to make every call raise.
    """

    def __init__(self, dimension: int = TEST_DIMENSION):
        self._dimension = dimension
        self._initialized = False
        self.call_count = 0
        self.fail_with: BaseException | None = None

    @property
    def dimension(self) -> int:
        return self._dimension

    async def initialize(self) -> None:
        self._initialized = True

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        self.call_count += 1
        if self.fail_with is not None:
            raise self.fail_with

        embeddings = []
        for text in texts:
            hash_bytes = hashlib.sha256(text.encode()).digest()
            rng = np.random.default_rng(int.from_bytes(hash_bytes[:8], "little"))
            embedding = rng.standard_normal(self._dimension).astype(np.float32)
            embeddings.append(embedding / np.linalg.norm(embedding))
        return embeddings


@pytest.fixture
def mock_embedder() -> MockEmbeddingBackend:
    """Get a mock embedding backend."""
    return MockEmbeddingBackend()


# ==============================================================================
# Workspace and Configuration Fixtures
# ==============================================================================

@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a workspace with a few source files."""
    root = tmp_path / "workspace"
    (root / "src").mkdir(parents=True)
    (root / "src" / "auth.py").write_text(SAMPLE_AUTH_PY)
    (root / "src" / "routes.ts").write_text(SAMPLE_ROUTES_TS)
    (root / "src" / "utils.go").write_text(SAMPLE_UTILS_GO)
    return root


@pytest.fixture
def base_config_dict(workspace: Path, tmp_path: Path) -> dict[str, Any]:
    """Get a base configuration dictionary for testing."""
    return {
        "workspace_root": str(workspace),
        "data_dir": str(tmp_path / ".codeindex"),
        "log_level": "DEBUG",
        "embedding": {
            "provider": "openai",
            "api_key": "sk-test",
            "dimension": TEST_DIMENSION,
        },
        "vector_store": {
            "max_elements": 1000,
        },
        "chunking": {
            "min_block_chars": 10,
            "max_block_chars": 200,
        },
        "scanner": {
            "batch_segment_threshold": 2,
            "max_batch_retries": 2,
            "initial_retry_delay_ms": 0,
        },
        "watcher": {
            "debounce_ms": 50,
        },
        "telemetry": {
            "enabled": True,
        },
    }


@pytest.fixture
def test_config(base_config_dict: dict[str, Any]) -> Config:
    """Get a test configuration instance."""
    config = Config(**base_config_dict)
    config.ensure_directories()
    return config


@pytest.fixture
def unconfigured_config(base_config_dict: dict[str, Any]) -> Config:
    """Configuration whose embedding provider lacks credentials."""
    data = dict(base_config_dict)
    data["embedding"] = {"provider": "openai", "dimension": TEST_DIMENSION}
    return Config(**data)


# ==============================================================================
# Orchestrator Collaborators
# ==============================================================================

class StubFileWatcher:
    """
    File watcher double exposing real event emitters.

    Tests drive batches by firing the emitters directly.
    """

    def __init__(self) -> None:
        self.initialize = AsyncMock()
        self.dispose = MagicMock()
        self.started = EventEmitter[list[str]]("did_start_batch_processing")
        self.progress = EventEmitter("batch_progress_update")
        self.finished = EventEmitter("did_finish_batch_processing")

    def on_did_start_batch_processing(self, listener) -> Disposable:
        return self.started.event(listener)

    def on_batch_progress_update(self, listener) -> Disposable:
        return self.progress.event(listener)

    def on_did_finish_batch_processing(self, listener) -> Disposable:
        return self.finished.event(listener)


class ScriptedScanner:
    """
    Scanner double that replays scripted callback invocations.

    Each step is ("found", n), ("indexed", n) or ("error", exc).
    """

    def __init__(self, steps: list[tuple[str, Any]] | None = None, returns_result: bool = True):
        self.steps = steps or []
        self.returns_result = returns_result
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.call_count = 0
        self.directories: list[Path] = []

    async def scan_directory(self, directory, on_batch_error, on_blocks_indexed, on_file_parsed):
        self.call_count += 1
        self.directories.append(directory)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()

        for kind, value in self.steps:
            if kind == "found":
                on_file_parsed(value)
            elif kind == "indexed":
                on_blocks_indexed(value)
            elif kind == "error":
                on_batch_error(value)

        if not self.returns_result:
            return None
        found = sum(v for k, v in self.steps if k == "found")
        return ScanResult(stats=ScanStats(processed=1), total_block_count=found)


def make_vector_store(created: bool = False) -> MagicMock:
    store = MagicMock()
    store.initialize = AsyncMock(return_value=created)
    store.clear_collection = AsyncMock()
    store.delete_collection = AsyncMock()
    return store


def make_cache_store() -> MagicMock:
    cache = MagicMock()
    cache.clear = AsyncMock()
    return cache


@pytest.fixture
def state_manager() -> IndexStateManager:
    return IndexStateManager()


@pytest.fixture
def config_manager(test_config: Config) -> ConfigManager:
    return ConfigManager(test_config)


@pytest.fixture
def vector_store_mock() -> MagicMock:
    return make_vector_store()


@pytest.fixture
def cache_mock() -> MagicMock:
    return make_cache_store()


@pytest.fixture
def watcher_stub() -> StubFileWatcher:
    return StubFileWatcher()


@pytest.fixture
def telemetry_mock() -> MagicMock:
    telemetry = MagicMock()
    telemetry.record_error = AsyncMock()
    telemetry.record = AsyncMock()
    return telemetry


# ==============================================================================
# Storage Fixtures
# ==============================================================================

@pytest.fixture
async def cache_store(test_config: Config):
    """Get an initialized cache store."""
    from codeindex.storage.cache_store import CacheStore

    store = CacheStore(test_config)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def vector_store(test_config: Config):
    """Get an initialized vector store."""
    from codeindex.storage.vector_store import VectorStore

    store = VectorStore(test_config)
    await store.initialize()
    yield store
    await store.close()


def random_vectors(count: int, dimension: int = TEST_DIMENSION, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.standard_normal((count, dimension)).astype(np.float32)


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
