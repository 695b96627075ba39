"""
File system watcher with debouncing.

Monitors the workspace for file changes and re-indexes changed files in
batches. Each batch reports its progress through event emitters so that the
orchestrator can surface it as indexing status.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Literal

import structlog
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from codeindex.events import EventEmitter
from codeindex.indexing.ignore import is_ignored, load_ignore_patterns
from codeindex.indexing.parser import CodeParser, hash_content
from codeindex.indexing.scanner import block_to_point

if TYPE_CHECKING:
    from codeindex.config import Config
    from codeindex.indexing.embedder import EmbeddingBackend
    from codeindex.storage.cache_store import CacheStore
    from codeindex.storage.vector_store import VectorStore

logger = structlog.get_logger(__name__)

FileStatus = Literal["success", "error", "local_error"]


@dataclass(frozen=True)
class BatchProgress:
    """Progress of the batch currently being processed."""

    processed_in_batch: int
    total_in_batch: int
    current_file: str | None = None


@dataclass(frozen=True)
class FileProcessingResult:
    """Outcome for one file of a batch."""

    path: str
    status: FileStatus
    error: BaseException | None = None


@dataclass
class BatchSummary:
    """Outcome of a whole batch."""

    processed_files: list[FileProcessingResult] = field(default_factory=list)
    batch_error: BaseException | None = None


class DebouncedHandler(FileSystemEventHandler):
    """
    File system event handler with debouncing.

    Collects events and processes them after a debounce period,
    coalescing multiple events for the same file. Events arrive on the
    observer thread and are handed to the event loop thread-safely.
    """

    def __init__(
        self,
        root: Path,
        callback: Callable[[set[Path], set[Path]], None],
        debounce_ms: int = 500,
        ignore_patterns: list[str] | None = None,
        watch_extensions: list[str] | None = None,
    ) -> None:
        """
        Initialize the debounced handler.

        Args:
            root: Watched workspace root.
            callback: Called on the event loop with (changed, deleted) paths.
            debounce_ms: Debounce delay in milliseconds.
            ignore_patterns: Glob patterns to ignore.
            watch_extensions: File extensions to watch.
        """
        super().__init__()
        self.root = root
        self.callback = callback
        self.debounce_seconds = debounce_ms / 1000.0
        self.ignore_patterns = ignore_patterns or []
        self.watch_extensions = {ext.lower() for ext in watch_extensions or []}

        self._pending_changes: set[Path] = set()
        self._deleted_paths: set[Path] = set()
        self._timer: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def set_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the event loop for async operations."""
        self._loop = loop

    def _should_ignore(self, path: str) -> bool:
        try:
            relative = Path(path).relative_to(self.root)
        except ValueError:
            return True
        return is_ignored(relative, self.ignore_patterns)

    def _should_watch(self, path: str) -> bool:
        if not self.watch_extensions:
            return True

        ext = os.path.splitext(path)[1].lower()
        return ext in self.watch_extensions

    def _submit(self, changed: Path | None = None, deleted: Path | None = None) -> None:
        """Hand an event to the loop thread."""
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._record, changed, deleted)

    def _record(self, changed: Path | None, deleted: Path | None) -> None:
        if deleted is not None:
            self._deleted_paths.add(deleted)
            self._pending_changes.discard(deleted)
        if changed is not None:
            self._pending_changes.add(changed)
            self._deleted_paths.discard(changed)
        self._schedule_callback()

    def _schedule_callback(self) -> None:
        """Schedule the callback after debounce period."""
        if self._loop is None:
            return

        if self._timer:
            self._timer.cancel()

        self._timer = self._loop.call_later(self.debounce_seconds, self._fire_callback)

    def _fire_callback(self) -> None:
        """Fire the callback with pending changes."""
        self._timer = None
        if not self._pending_changes and not self._deleted_paths:
            return

        changes = self._pending_changes.copy()
        deleted = self._deleted_paths.copy()
        self._pending_changes.clear()
        self._deleted_paths.clear()

        self.callback(changes, deleted)

    def cancel(self) -> None:
        """Drop pending events."""
        if self._timer:
            self._timer.cancel()
            self._timer = None
        self._pending_changes.clear()
        self._deleted_paths.clear()

    def on_created(self, event: FileCreatedEvent | DirCreatedEvent) -> None:
        if isinstance(event, DirCreatedEvent):
            return

        path = str(event.src_path)
        if self._should_ignore(path) or not self._should_watch(path):
            return
        self._submit(changed=Path(path))

    def on_modified(self, event: FileModifiedEvent | DirModifiedEvent) -> None:
        if isinstance(event, DirModifiedEvent):
            return

        path = str(event.src_path)
        if self._should_ignore(path) or not self._should_watch(path):
            return
        self._submit(changed=Path(path))

    def on_deleted(self, event: FileDeletedEvent | DirDeletedEvent) -> None:
        path = str(event.src_path)
        if self._should_ignore(path):
            return
        self._submit(deleted=Path(path))

    def on_moved(self, event: FileMovedEvent | DirMovedEvent) -> None:
        if isinstance(event, DirMovedEvent):
            return

        src_path = str(event.src_path)
        dest_path = str(event.dest_path)

        if not self._should_ignore(src_path):
            self._submit(deleted=Path(src_path))

        if not self._should_ignore(dest_path) and self._should_watch(dest_path):
            self._submit(changed=Path(dest_path))


class FileWatcher:
    """
    File system watcher for incremental indexing.

    Features:
    - Debounced file change detection
    - Content-hash change detection
    - One batch processed at a time
    - Batch start, progress and finish events
    """

    def __init__(
        self,
        config: "Config",
        embedder: "EmbeddingBackend",
        vector_store: "VectorStore",
        cache_store: "CacheStore",
        parser: CodeParser | None = None,
    ) -> None:
        """
        Initialize the file watcher.

        Args:
            config: codeindex configuration.
            embedder: Embedding backend.
            vector_store: Vector collection.
            cache_store: File hash cache.
            parser: Block splitter.
        """
        self.config = config
        self.embedder = embedder
        self.vector_store = vector_store
        self.cache_store = cache_store
        self.parser = parser or CodeParser(config)

        self._observer: Observer | None = None
        self._handler: DebouncedHandler | None = None
        self._running = False
        self._processing_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

        self._did_start = EventEmitter[list[str]]("did_start_batch_processing")
        self._progress = EventEmitter[BatchProgress]("batch_progress_update")
        self._did_finish = EventEmitter[BatchSummary]("did_finish_batch_processing")

        self.on_did_start_batch_processing = self._did_start.event
        self.on_batch_progress_update = self._progress.event
        self.on_did_finish_batch_processing = self._did_finish.event

    @property
    def is_running(self) -> bool:
        return self._running

    async def initialize(self) -> None:
        """Start watching the workspace."""
        if self._running:
            return

        root = self.config.workspace_root
        if root is None:
            raise RuntimeError("Cannot watch files: no workspace root configured")

        logger.info("Starting file watcher", path=str(root))

        self._handler = DebouncedHandler(
            root=root,
            callback=self._handle_changes,
            debounce_ms=self.config.watcher.debounce_ms,
            ignore_patterns=load_ignore_patterns(root, self.config.watcher.ignore_patterns),
            watch_extensions=self.config.watcher.watch_extensions,
        )
        self._handler.set_loop(asyncio.get_running_loop())

        observer = Observer()
        observer.schedule(self._handler, str(root), recursive=True)
        observer.start()
        self._observer = observer
        self._running = True

        logger.info("File watcher started")

    def dispose(self) -> None:
        """Stop watching. Safe to call repeatedly."""
        if not self._running:
            return

        logger.info("Stopping file watcher")

        if self._handler:
            self._handler.cancel()
            self._handler = None

        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None

        for task in self._tasks:
            task.cancel()
        self._tasks.clear()

        self._running = False
        logger.info("File watcher stopped")

    def _handle_changes(self, changed: set[Path], deleted: set[Path]) -> None:
        """Handle a debounced batch (called on the event loop)."""
        task = asyncio.create_task(self.process_batch(changed, deleted))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def process_batch(
        self,
        changed: set[Path] | list[Path],
        deleted: set[Path] | list[Path] = (),
    ) -> BatchSummary:
        """
        Re-index a batch of changed and deleted files.

        Args:
            changed: Created or modified files.
            deleted: Removed files.

        Returns:
            Summary of the batch, also delivered to finish listeners.
        """
        async with self._processing_lock:
            changed_paths = sorted(Path(p) for p in changed)
            deleted_paths = sorted(Path(p) for p in deleted)
            all_paths = [str(p) for p in deleted_paths + changed_paths]
            total = len(all_paths)

            self._did_start.fire(all_paths)
            self._progress.fire(BatchProgress(0, total))

            summary = BatchSummary()
            processed = 0

            for path in deleted_paths:
                summary.processed_files.append(await self._remove_file(path))
                processed += 1
                self._progress.fire(BatchProgress(processed, total, str(path)))

            for path in changed_paths:
                summary.processed_files.append(await self._index_file(path))
                processed += 1
                self._progress.fire(BatchProgress(processed, total, str(path)))

            errors = [r.error for r in summary.processed_files if r.status == "error"]
            if errors:
                summary.batch_error = errors[0]

            self._did_finish.fire(summary)
            return summary

    async def _remove_file(self, path: Path) -> FileProcessingResult:
        """Remove a file from the index."""
        str_path = str(path)
        try:
            await self.vector_store.delete_points_by_file_path(str_path)
            await self.cache_store.delete_hash(str_path)
        except Exception as e:
            logger.error("Error removing file from index", path=str_path, error=str(e))
            return FileProcessingResult(str_path, "error", e)

        logger.debug("Removed file from index", path=str_path)
        return FileProcessingResult(str_path, "success")

    async def _index_file(self, path: Path) -> FileProcessingResult:
        """Re-index one changed file."""
        str_path = str(path)

        try:
            if not path.is_file():
                return await self._remove_file(path)
            content = path.read_text(encoding="utf-8")
            file_hash = hash_content(content)
            if await self.cache_store.get_hash(str_path) == file_hash:
                logger.debug("File unchanged, skipping", path=str_path)
                return FileProcessingResult(str_path, "success")
            blocks = self.parser.parse_file(path, content, file_hash)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning("Error reading file", path=str_path, error=str(e))
            return FileProcessingResult(str_path, "local_error", e)

        try:
            await self.vector_store.delete_points_by_file_path(str_path)
            if blocks:
                vectors = await self.embedder.embed_batch([b.content for b in blocks])
                points = [block_to_point(b, v) for b, v in zip(blocks, vectors)]
                await self.vector_store.upsert_points(points)
            await self.cache_store.update_hash(str_path, file_hash)
        except Exception as e:
            logger.error("Error indexing file", path=str_path, error=str(e))
            return FileProcessingResult(str_path, "error", e)

        logger.debug("Indexed file", path=str_path, blocks=len(blocks))
        return FileProcessingResult(str_path, "success")
