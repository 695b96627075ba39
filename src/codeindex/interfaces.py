"""
Collaborator contracts consumed by the index orchestrator.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from codeindex.indexing.scanner import ScanResult
    from codeindex.indexing.watcher import BatchProgress, BatchSummary
    from codeindex.state import StatusReason, SystemState


class Disposable(Protocol):
    def dispose(self) -> None: ...


class ConfigGate(Protocol):
    @property
    def is_feature_configured(self) -> bool: ...


class StateManager(Protocol):
    @property
    def state(self) -> "SystemState": ...

    def set_system_state(
        self,
        state: "SystemState",
        reason: "StatusReason",
        detail: str | None = None,
    ) -> None: ...

    def report_block_indexing_progress(self, processed_items: int, total_items: int) -> None: ...

    def report_file_queue_progress(
        self,
        processed_files: int,
        total_files: int,
        current_file: str | None = None,
    ) -> None: ...


class CacheStore(Protocol):
    async def clear(self) -> None: ...


class VectorStore(Protocol):
    async def initialize(self) -> bool:
        """Prepare the collection; True when a new collection was created."""
        ...

    async def clear_collection(self) -> None: ...

    async def delete_collection(self) -> None: ...


class Scanner(Protocol):
    async def scan_directory(
        self,
        directory: Path,
        on_batch_error: Callable[[BaseException], None],
        on_blocks_indexed: Callable[[int], None],
        on_file_parsed: Callable[[int], None],
    ) -> "ScanResult | None": ...


class FileWatcher(Protocol):
    async def initialize(self) -> None: ...

    def dispose(self) -> None: ...

    def on_did_start_batch_processing(
        self, listener: Callable[[list[str]], None]
    ) -> Disposable: ...

    def on_batch_progress_update(
        self, listener: Callable[["BatchProgress"], None]
    ) -> Disposable: ...

    def on_did_finish_batch_processing(
        self, listener: Callable[["BatchSummary"], None]
    ) -> Disposable: ...
