"""
Full workspace scanner.

Walks the workspace, splits changed files into blocks, embeds them in
batches and upserts them into the vector collection. Progress and batch
failures are reported through callbacks; a failed batch never stops the
scan.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import structlog

from codeindex.indexing.ignore import is_ignored, load_ignore_patterns
from codeindex.indexing.parser import CodeBlock, CodeParser, hash_content
from codeindex.storage.vector_store import VectorPoint

if TYPE_CHECKING:
    from codeindex.config import Config
    from codeindex.indexing.embedder import EmbeddingBackend
    from codeindex.storage.cache_store import CacheStore
    from codeindex.storage.vector_store import VectorStore

logger = structlog.get_logger(__name__)


@dataclass
class ScanStats:
    """File counters of a scan."""

    processed: int = 0
    skipped: int = 0


@dataclass
class ScanResult:
    """Result of a full scan."""

    stats: ScanStats = field(default_factory=ScanStats)
    total_block_count: int = 0


@dataclass
class _PendingBatch:
    blocks: list[CodeBlock] = field(default_factory=list)
    # file path -> content hash for files whose blocks are in this batch
    file_hashes: dict[str, str] = field(default_factory=dict)

    def clear(self) -> None:
        self.blocks = []
        self.file_hashes = {}


def block_to_point(block: CodeBlock, vector) -> VectorPoint:
    """Build the vector point stored for a block."""
    return VectorPoint(
        point_id=block.block_id,
        vector=vector,
        payload={
            "file_path": block.file_path,
            "code_chunk": block.content,
            "start_line": block.start_line,
            "end_line": block.end_line,
            "segment_hash": block.segment_hash,
        },
    )


def iter_workspace_files(
    root: Path,
    ignore_patterns: list[str],
    extensions: set[str],
    max_file_size: int,
) -> list[Path]:
    """List indexable files under root, sorted for a stable order."""
    files: list[Path] = []

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        rel_dir = current.relative_to(root)

        dirnames[:] = sorted(
            d for d in dirnames
            if not is_ignored(rel_dir / d, ignore_patterns, is_dir=True)
        )

        for filename in sorted(filenames):
            path = current / filename
            if path.suffix.lower() not in extensions:
                continue
            if is_ignored(rel_dir / filename, ignore_patterns):
                continue
            try:
                if path.stat().st_size > max_file_size:
                    logger.debug("Skipping large file", path=str(path))
                    continue
            except OSError:
                continue
            files.append(path)

    return files


class DirectoryScanner:
    """
    Scanner that builds the index for a whole workspace.

    Features:
    - Hash-based skipping of unchanged files
    - Batched embedding with retries and exponential backoff
    - Removal of files deleted since the last scan
    """

    def __init__(
        self,
        config: "Config",
        embedder: "EmbeddingBackend | None",
        vector_store: "VectorStore | None",
        cache_store: "CacheStore",
        parser: CodeParser | None = None,
    ) -> None:
        """
        Initialize the scanner.

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

        self.batch_threshold = config.scanner.batch_segment_threshold
        self.max_retries = config.scanner.max_batch_retries
        self.initial_retry_delay = config.scanner.initial_retry_delay_ms / 1000.0
        self.max_file_size = config.scanner.max_file_size_kb * 1024
        self.extensions = {ext.lower() for ext in config.watcher.watch_extensions}

    async def scan_directory(
        self,
        directory: Path,
        on_batch_error: Callable[[BaseException], None] | None = None,
        on_blocks_indexed: Callable[[int], None] | None = None,
        on_file_parsed: Callable[[int], None] | None = None,
    ) -> ScanResult | None:
        """
        Index every file under a directory.

        Args:
            directory: Workspace root.
            on_batch_error: Called with the error of each batch that failed
                after all retries.
            on_blocks_indexed: Called with the number of blocks upserted by
                each successful batch.
            on_file_parsed: Called with the number of blocks found in each
                changed file.

        Returns:
            ScanResult, or None when the scanner has no embedder or vector
            store to work with.
        """
        if self.embedder is None or self.vector_store is None:
            logger.error("Scanner not initialized", directory=str(directory))
            return None

        directory = Path(directory)
        patterns = load_ignore_patterns(directory, self.config.watcher.ignore_patterns)
        files = iter_workspace_files(directory, patterns, self.extensions, self.max_file_size)
        logger.info("Scanning workspace", directory=str(directory), files=len(files))

        result = ScanResult()
        seen: set[str] = set()
        batch = _PendingBatch()

        for path in files:
            file_path = str(path)
            seen.add(file_path)

            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.debug("Skipping unreadable file", path=file_path, error=str(e))
                result.stats.skipped += 1
                continue

            file_hash = hash_content(content)
            if await self.cache_store.get_hash(file_path) == file_hash:
                result.stats.skipped += 1
                continue

            blocks = self.parser.parse_file(path, content, file_hash)
            result.stats.processed += 1
            result.total_block_count += len(blocks)

            if on_file_parsed:
                on_file_parsed(len(blocks))

            if not blocks:
                await self.vector_store.delete_points_by_file_path(file_path)
                await self.cache_store.update_hash(file_path, file_hash)
                continue

            batch.blocks.extend(blocks)
            batch.file_hashes[file_path] = file_hash

            if len(batch.blocks) >= self.batch_threshold:
                await self._process_batch(batch, on_batch_error, on_blocks_indexed)
                batch.clear()

        if batch.blocks:
            await self._process_batch(batch, on_batch_error, on_blocks_indexed)
            batch.clear()

        await self._remove_deleted_files(seen)

        logger.info(
            "Workspace scan complete",
            processed=result.stats.processed,
            skipped=result.stats.skipped,
            blocks=result.total_block_count,
        )
        return result

    async def _process_batch(
        self,
        batch: _PendingBatch,
        on_batch_error: Callable[[BaseException], None] | None,
        on_blocks_indexed: Callable[[int], None] | None,
    ) -> None:
        """Embed and upsert one batch, retrying with exponential backoff."""
        if self.embedder is None or self.vector_store is None:
            raise RuntimeError("Scanner not initialized")

        last_error: BaseException | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                await self.vector_store.delete_points_by_multiple_file_paths(
                    list(batch.file_hashes)
                )

                texts = [block.content for block in batch.blocks]
                vectors = await self.embedder.embed_batch(texts)
                points = [
                    block_to_point(block, vector)
                    for block, vector in zip(batch.blocks, vectors)
                ]
                await self.vector_store.upsert_points(points)

                for file_path, file_hash in batch.file_hashes.items():
                    await self.cache_store.update_hash(file_path, file_hash)

                if on_blocks_indexed:
                    on_blocks_indexed(len(batch.blocks))
                return

            except Exception as e:
                last_error = e
                logger.warning(
                    "Batch failed",
                    attempt=attempt,
                    max_attempts=self.max_retries,
                    blocks=len(batch.blocks),
                    error=str(e),
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.initial_retry_delay * (2 ** (attempt - 1)))

        logger.error(
            "Batch failed after retries",
            blocks=len(batch.blocks),
            files=len(batch.file_hashes),
            error=str(last_error),
        )
        if on_batch_error and last_error is not None:
            on_batch_error(last_error)

    async def _remove_deleted_files(self, seen: set[str]) -> None:
        """Drop points and cache entries of files no longer on disk."""
        if self.vector_store is None:
            raise RuntimeError("Scanner not initialized")

        cached = await self.cache_store.get_all_hashes()
        deleted = [file_path for file_path in cached if file_path not in seen]
        if not deleted:
            return

        try:
            await self.vector_store.delete_points_by_multiple_file_paths(deleted)
        except Exception as e:
            logger.error("Failed to remove deleted files from index", error=str(e))
            return

        for file_path in deleted:
            await self.cache_store.delete_hash(file_path)

        logger.info("Removed deleted files from index", files=len(deleted))
