"""
Unit tests for the file watcher.

Tests cover:
- Batch processing events and per-file status
- Deletions and unchanged files
- Debounced event coalescing
- Observer start and idempotent disposal
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from watchdog.events import FileDeletedEvent, FileModifiedEvent, FileMovedEvent

from codeindex.indexing.watcher import BatchProgress, DebouncedHandler, FileWatcher


@pytest.fixture
def watcher(test_config, mock_embedder, vector_store, cache_store) -> FileWatcher:
    file_watcher = FileWatcher(test_config, mock_embedder, vector_store, cache_store)
    yield file_watcher
    file_watcher.dispose()


def record_events(watcher: FileWatcher):
    events: dict[str, list] = {"started": [], "progress": [], "finished": []}
    watcher.on_did_start_batch_processing(events["started"].append)
    watcher.on_batch_progress_update(events["progress"].append)
    watcher.on_did_finish_batch_processing(events["finished"].append)
    return events


class TestProcessBatch:
    """Tests for FileWatcher.process_batch."""

    @pytest.mark.asyncio
    async def test_indexes_changed_files(self, watcher, workspace, vector_store, cache_store):
        events = record_events(watcher)
        changed = [workspace / "src" / "auth.py", workspace / "src" / "utils.go"]

        summary = await watcher.process_batch(changed)

        assert [r.status for r in summary.processed_files] == ["success", "success"]
        assert summary.batch_error is None
        assert events["started"] == [[str(p) for p in sorted(changed)]]
        assert events["progress"][0] == BatchProgress(0, 2)
        assert events["progress"][-1].processed_in_batch == 2
        assert len(events["progress"]) == 3
        assert events["finished"] == [summary]
        assert await vector_store.count() > 0
        assert len(await cache_store.get_all_hashes()) == 2

    @pytest.mark.asyncio
    async def test_unchanged_file_is_not_embedded(self, watcher, workspace, mock_embedder):
        path = workspace / "src" / "auth.py"
        await watcher.process_batch([path])
        calls = mock_embedder.call_count

        summary = await watcher.process_batch([path])

        assert summary.processed_files[0].status == "success"
        assert mock_embedder.call_count == calls

    @pytest.mark.asyncio
    async def test_deleted_file(self, watcher, workspace, vector_store, cache_store):
        path = workspace / "src" / "auth.py"
        await watcher.process_batch([path])
        path.unlink()

        summary = await watcher.process_batch([], [path])

        assert summary.processed_files[0].status == "success"
        assert await cache_store.get_hash(str(path)) is None
        assert await vector_store.count() == 0

    @pytest.mark.asyncio
    async def test_unreadable_file_is_local_error(self, watcher, workspace):
        binary = workspace / "src" / "blob.py"
        binary.write_bytes(b"\xff\xfe\x00bad")

        summary = await watcher.process_batch([binary])

        assert summary.processed_files[0].status == "local_error"
        assert summary.batch_error is None

    @pytest.mark.asyncio
    async def test_embedding_failure_is_error(self, watcher, workspace, mock_embedder):
        mock_embedder.fail_with = RuntimeError("service unavailable")

        summary = await watcher.process_batch([workspace / "src" / "auth.py"])

        assert summary.processed_files[0].status == "error"
        assert str(summary.batch_error) == "service unavailable"

    @pytest.mark.asyncio
    async def test_empty_batch(self, watcher):
        events = record_events(watcher)

        summary = await watcher.process_batch([])

        assert summary.processed_files == []
        assert events["progress"] == [BatchProgress(0, 0)]


class TestDebouncedHandler:
    """Tests for DebouncedHandler."""

    @pytest.mark.asyncio
    async def test_coalesces_events(self, tmp_path: Path):
        batches = []
        handler = DebouncedHandler(
            root=tmp_path,
            callback=lambda changed, deleted: batches.append((changed, deleted)),
            debounce_ms=20,
            watch_extensions=[".py"],
        )
        handler.set_loop(asyncio.get_running_loop())

        handler.on_modified(FileModifiedEvent(str(tmp_path / "a.py")))
        handler.on_modified(FileModifiedEvent(str(tmp_path / "a.py")))
        handler.on_modified(FileModifiedEvent(str(tmp_path / "notes.txt")))
        handler.on_deleted(FileDeletedEvent(str(tmp_path / "b.py")))
        handler.on_moved(FileMovedEvent(str(tmp_path / "c.py"), str(tmp_path / "d.py")))

        await asyncio.sleep(0.2)

        assert len(batches) == 1
        changed, deleted = batches[0]
        assert changed == {tmp_path / "a.py", tmp_path / "d.py"}
        assert deleted == {tmp_path / "b.py", tmp_path / "c.py"}

    @pytest.mark.asyncio
    async def test_ignored_paths(self, tmp_path: Path):
        batches = []
        handler = DebouncedHandler(
            root=tmp_path,
            callback=lambda changed, deleted: batches.append((changed, deleted)),
            debounce_ms=10,
            ignore_patterns=["**/node_modules/**"],
        )
        handler.set_loop(asyncio.get_running_loop())

        handler.on_modified(FileModifiedEvent(str(tmp_path / "node_modules" / "x.js")))
        handler.on_modified(FileModifiedEvent("/elsewhere/y.js"))

        await asyncio.sleep(0.1)

        assert batches == []

    @pytest.mark.asyncio
    async def test_cancel_drops_pending(self, tmp_path: Path):
        batches = []
        handler = DebouncedHandler(
            root=tmp_path,
            callback=lambda changed, deleted: batches.append((changed, deleted)),
            debounce_ms=20,
        )
        handler.set_loop(asyncio.get_running_loop())

        handler.on_modified(FileModifiedEvent(str(tmp_path / "a.py")))
        await asyncio.sleep(0)
        handler.cancel()
        await asyncio.sleep(0.1)

        assert batches == []


class TestWatcherLifecycle:
    """Tests for initialize and dispose."""

    @pytest.mark.asyncio
    async def test_initialize_and_dispose(self, watcher):
        await watcher.initialize()
        await watcher.initialize()
        assert watcher.is_running

        watcher.dispose()
        watcher.dispose()
        assert not watcher.is_running

    @pytest.mark.asyncio
    async def test_restart_after_dispose(self, watcher):
        await watcher.initialize()
        watcher.dispose()

        await watcher.initialize()

        assert watcher.is_running

    @pytest.mark.asyncio
    async def test_requires_workspace(self, test_config, mock_embedder):
        config = test_config.model_copy(update={"workspace_root": None})
        file_watcher = FileWatcher(config, mock_embedder, AsyncMock(), AsyncMock())

        with pytest.raises(RuntimeError, match="no workspace root"):
            await file_watcher.initialize()

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_detects_file_change(self, watcher, workspace):
        finished = asyncio.Event()
        summaries = []

        def on_finish(summary):
            summaries.append(summary)
            finished.set()

        watcher.on_did_finish_batch_processing(on_finish)
        await watcher.initialize()
        await asyncio.sleep(0.2)

        (workspace / "src" / "new_module.py").write_text("def added():\n    return 'added'\n")

        await asyncio.wait_for(finished.wait(), timeout=10)
        paths = {r.path for s in summaries for r in s.processed_files}
        assert str((workspace / "src" / "new_module.py").resolve()) in paths
