"""
Index orchestration.

IndexOrchestrator drives one workspace's index through its lifecycle:
collection setup, the initial full scan, classification of the scan
outcome, and the file watcher that keeps the index current afterwards.
Every transition is published through the state manager.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from codeindex.progress import (
    BatchError,
    BatchFailed,
    FailureReason,
    IndexingFailure,
    IndexingResult,
    IndexingSucceeded,
    ProgressChannel,
    ScanOutcome,
    TotalFailure,
    classify_outcome,
)
from codeindex.state import StatusReason, SystemState

if TYPE_CHECKING:
    from codeindex.indexing.watcher import BatchProgress, BatchSummary
    from codeindex.interfaces import (
        CacheStore,
        ConfigGate,
        Disposable,
        FileWatcher,
        Scanner,
        StateManager,
        VectorStore,
    )
    from codeindex.metrics.telemetry import TelemetryCollector

logger = structlog.get_logger(__name__)

_STARTABLE_STATES = frozenset({SystemState.STANDBY, SystemState.ERROR, SystemState.INDEXED})


class IndexOrchestrator:
    """
    Lifecycle controller for a workspace index.

    One instance exists per workspace root and outlives individual runs.
    ``start_indexing`` and ``clear_index_data`` are mutually exclusive: a
    call made while either is in progress is logged and ignored.
    """

    def __init__(
        self,
        config_manager: "ConfigGate",
        state_manager: "StateManager",
        workspace_path: Path | None,
        cache_manager: "CacheStore",
        vector_store: "VectorStore",
        scanner: "Scanner",
        file_watcher: "FileWatcher",
        telemetry: "TelemetryCollector | None" = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config_manager: Reports whether the feature is configured.
            state_manager: Receives every status transition.
            workspace_path: Root of the workspace to index.
            cache_manager: File hash cache.
            vector_store: Vector collection of the workspace.
            scanner: Full workspace scanner.
            file_watcher: Incremental watcher started after a good scan.
            telemetry: Optional error and run metrics sink.
        """
        self.config_manager = config_manager
        self.state_manager = state_manager
        self.workspace_path = Path(workspace_path) if workspace_path is not None else None
        self.cache_manager = cache_manager
        self.vector_store = vector_store
        self.scanner = scanner
        self.file_watcher = file_watcher
        self.telemetry = telemetry

        self._is_processing = False
        self._watcher_subscriptions: list["Disposable"] = []

    @property
    def state(self) -> SystemState:
        return self.state_manager.state

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    async def start_indexing(self) -> None:
        """
        Build the index and start the file watcher.

        Never raises: configuration problems and failed runs end up as
        status messages, and a call made while busy is ignored.
        """
        workspace = self.workspace_path
        if workspace is None or not workspace.is_dir():
            self._dispose_watcher()
            self.state_manager.set_system_state(
                SystemState.ERROR, StatusReason.WORKSPACE_REQUIRED
            )
            logger.warning("Indexing requires an open workspace folder")
            return

        if not self.config_manager.is_feature_configured:
            self._dispose_watcher()
            self.state_manager.set_system_state(
                SystemState.STANDBY, StatusReason.MISSING_CONFIGURATION
            )
            logger.warning("Missing configuration, indexing not started")
            return

        if self._is_processing or self.state not in _STARTABLE_STATES:
            logger.warning(
                "Indexing already in progress, ignoring start request",
                state=self.state.value,
                processing=self._is_processing,
            )
            return

        self._is_processing = True
        started = time.monotonic()

        try:
            self.state_manager.set_system_state(
                SystemState.INDEXING, StatusReason.INITIALIZING_SERVICES
            )

            outcome = ScanOutcome()
            result = await self._run_scan(workspace, outcome)

            if isinstance(result, IndexingSucceeded):
                try:
                    await self._start_watcher()
                except Exception as e:
                    result = TotalFailure(
                        FailureReason.WATCHER_FAILED,
                        str(e) or type(e).__name__,
                        (BatchError.from_exception(e),),
                    )

            if isinstance(result, IndexingSucceeded):
                self.state_manager.set_system_state(
                    SystemState.INDEXED, StatusReason.WATCHER_STARTED
                )
                logger.info(
                    "Indexing complete",
                    blocks_found=outcome.blocks_found,
                    blocks_indexed=outcome.blocks_indexed,
                    batch_errors=len(outcome.batch_errors),
                )
                await self._record_run(outcome, started)
            else:
                await self._handle_indexing_failure(result)
        finally:
            self._is_processing = False

    async def _run_scan(self, workspace: Path, outcome: ScanOutcome) -> IndexingResult:
        """Prepare the collection, scan the workspace and classify the outcome."""
        try:
            created = await self.vector_store.initialize()
            if created:
                logger.info("New vector collection created, clearing file cache")
                await self.cache_manager.clear()

            self.state_manager.set_system_state(SystemState.INDEXING, StatusReason.STARTING_SCAN)

            channel = ProgressChannel()
            aggregator = asyncio.create_task(self._aggregate_progress(channel, outcome))
            try:
                scan_result = await self.scanner.scan_directory(
                    workspace,
                    channel.on_batch_error,
                    channel.on_blocks_indexed,
                    channel.on_file_parsed,
                )
            finally:
                channel.close()
                await aggregator

        except Exception as e:
            return TotalFailure(
                FailureReason.UNEXPECTED,
                str(e) or type(e).__name__,
                (BatchError.from_exception(e),),
            )

        if scan_result is None:
            return TotalFailure(
                FailureReason.SCAN_RETURNED_NOTHING,
                "Scan failed, is scanner initialized?",
            )

        return classify_outcome(outcome)

    async def _aggregate_progress(self, channel: ProgressChannel, outcome: ScanOutcome) -> None:
        """Fold scan events into the outcome and republish progress in order."""
        async for event in channel:
            outcome.apply(event)

            if isinstance(event, BatchFailed):
                logger.error("Error during indexing batch", error=event.error.message)
                continue

            self.state_manager.report_block_indexing_progress(
                outcome.blocks_indexed, outcome.blocks_found
            )

    async def _handle_indexing_failure(self, failure: IndexingFailure) -> None:
        """Undo a failed run and surface its message."""
        cause = failure.errors[0].cause if failure.errors else None
        reason = failure.reason.value if isinstance(failure, TotalFailure) else "partial_failure"
        logger.error(
            "Error during indexing",
            reason=reason,
            message=failure.message,
            exc_info=cause,
        )
        await self._capture_error(cause or failure.message, "start_indexing")

        self._dispose_watcher()

        try:
            await self.vector_store.clear_collection()
        except Exception as e:
            logger.error("Failed to clean up after error", error=str(e), exc_info=True)
            await self._capture_error(e, "start_indexing.cleanup")

        try:
            await self.cache_manager.clear()
        except Exception as e:
            logger.error("Failed to clear cache after error", error=str(e), exc_info=True)

        self.state_manager.set_system_state(
            SystemState.ERROR, StatusReason.SCAN_FAILED, failure.message
        )
        self._stop_watcher(release_processing=False)

    async def _start_watcher(self) -> None:
        """
        Start the file watcher and subscribe to its batch events.

        Raises:
            RuntimeError: If the feature is not configured.
        """
        if not self.config_manager.is_feature_configured:
            raise RuntimeError("Cannot start watcher: service not configured.")

        self.state_manager.set_system_state(
            SystemState.INDEXING, StatusReason.INITIALIZING_WATCHER
        )

        try:
            await self.file_watcher.initialize()

            self._dispose_subscriptions()
            self._watcher_subscriptions = [
                self.file_watcher.on_did_start_batch_processing(self._on_batch_started),
                self.file_watcher.on_batch_progress_update(self._on_batch_progress),
                self.file_watcher.on_did_finish_batch_processing(self._on_batch_finished),
            ]
        except Exception as e:
            logger.error("Failed to start file watcher", error=str(e), exc_info=True)
            await self._capture_error(e, "_start_watcher")
            raise

    def _on_batch_started(self, paths: list[str]) -> None:
        logger.debug("File watcher batch started", files=len(paths))

    def _on_batch_progress(self, progress: "BatchProgress") -> None:
        processed = progress.processed_in_batch
        total = progress.total_in_batch

        if total > 0 and self.state != SystemState.INDEXING:
            self.state_manager.set_system_state(
                SystemState.INDEXING, StatusReason.PROCESSING_FILE_CHANGES
            )

        current = Path(progress.current_file).name if progress.current_file else None
        self.state_manager.report_file_queue_progress(processed, total, current)

        if processed == total:
            if total > 0:
                self.state_manager.set_system_state(
                    SystemState.INDEXED, StatusReason.FILE_CHANGES_PROCESSED
                )
            elif self.state == SystemState.INDEXING:
                self.state_manager.set_system_state(
                    SystemState.INDEXED, StatusReason.QUEUE_EMPTY
                )

    def _on_batch_finished(self, summary: "BatchSummary") -> None:
        tally = Counter(result.status for result in summary.processed_files)
        logger.info(
            "File watcher batch finished",
            success=tally["success"],
            error=tally["error"],
            local_error=tally["local_error"],
            batch_error=str(summary.batch_error) if summary.batch_error else None,
        )

    def stop_watcher(self) -> None:
        """Stop the file watcher. Safe to call when it is not running."""
        self._stop_watcher(release_processing=True)

    def _stop_watcher(self, release_processing: bool) -> None:
        self._dispose_watcher()

        if self.state != SystemState.ERROR:
            self.state_manager.set_system_state(
                SystemState.STANDBY, StatusReason.WATCHER_STOPPED
            )

        if release_processing:
            self._is_processing = False

    def _dispose_watcher(self) -> None:
        self.file_watcher.dispose()
        self._dispose_subscriptions()

    def _dispose_subscriptions(self) -> None:
        for subscription in self._watcher_subscriptions:
            subscription.dispose()
        self._watcher_subscriptions.clear()

    async def clear_index_data(self) -> None:
        """
        Stop the watcher and drop the collection and the file cache.

        A failure to delete the collection is reported as an Error status
        and not raised.
        """
        if self._is_processing:
            logger.warning("Indexing in progress, ignoring clear request")
            return

        self._is_processing = True

        try:
            self._stop_watcher(release_processing=False)

            if self.config_manager.is_feature_configured:
                try:
                    await self.vector_store.delete_collection()
                except Exception as e:
                    logger.error(
                        "Failed to clear vector collection", error=str(e), exc_info=True
                    )
                    await self._capture_error(e, "clear_index_data")
                    self.state_manager.set_system_state(
                        SystemState.ERROR,
                        StatusReason.CLEAR_FAILED,
                        str(e) or type(e).__name__,
                    )
            else:
                logger.warning("Service not configured, skipping vector collection clear")

            await self.cache_manager.clear()

            if self.state != SystemState.ERROR:
                self.state_manager.set_system_state(
                    SystemState.STANDBY, StatusReason.INDEX_CLEARED
                )
                logger.info("Index data cleared")
        finally:
            self._is_processing = False

    async def _capture_error(self, error: BaseException | str, location: str) -> None:
        if self.telemetry is None:
            return
        try:
            await self.telemetry.record_error(error, location)
        except Exception as e:
            logger.debug("Failed to record telemetry", location=location, error=str(e))

    async def _record_run(self, outcome: ScanOutcome, started: float) -> None:
        if self.telemetry is None:
            return
        from codeindex.metrics.telemetry import record_indexing_run

        try:
            await record_indexing_run(
                self.telemetry,
                outcome.blocks_found,
                outcome.blocks_indexed,
                (time.monotonic() - started) * 1000,
            )
        except Exception as e:
            logger.debug("Failed to record telemetry", error=str(e))
