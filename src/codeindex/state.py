"""
Indexing state and progress bulletin board.

The state manager is the single writer of the indexing system status. Every
status is a SystemState paired with a StatusReason; a reason belongs to
exactly one state, so invalid state/message combinations are rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Literal

import structlog

from codeindex.events import Disposable, EventEmitter

logger = structlog.get_logger(__name__)

ItemUnit = Literal["blocks", "files"]


class SystemState(str, Enum):
    """Lifecycle state of the indexing system."""

    STANDBY = "Standby"
    INDEXING = "Indexing"
    INDEXED = "Indexed"
    ERROR = "Error"


class StatusReason(str, Enum):
    """Reason codes for status messages."""

    READY = "ready"
    WORKSPACE_REQUIRED = "workspace_required"
    MISSING_CONFIGURATION = "missing_configuration"
    INITIALIZING_SERVICES = "initializing_services"
    STARTING_SCAN = "starting_scan"
    BLOCK_PROGRESS = "block_progress"
    FILE_QUEUE_PROGRESS = "file_queue_progress"
    INITIALIZING_WATCHER = "initializing_watcher"
    WATCHER_STARTED = "watcher_started"
    PROCESSING_FILE_CHANGES = "processing_file_changes"
    FILE_CHANGES_PROCESSED = "file_changes_processed"
    QUEUE_EMPTY = "queue_empty"
    WATCHER_STOPPED = "watcher_stopped"
    INDEX_CLEARED = "index_cleared"
    SCAN_FAILED = "scan_failed"
    CLEAR_FAILED = "clear_failed"


# reason -> (owning state, message template)
_REASONS: dict[StatusReason, tuple[SystemState, str]] = {
    StatusReason.READY: (SystemState.STANDBY, "Ready."),
    StatusReason.WORKSPACE_REQUIRED: (
        SystemState.ERROR,
        "Indexing requires an open workspace folder.",
    ),
    StatusReason.MISSING_CONFIGURATION: (
        SystemState.STANDBY,
        "Missing configuration. Save your settings to start indexing.",
    ),
    StatusReason.INITIALIZING_SERVICES: (SystemState.INDEXING, "Initializing services..."),
    StatusReason.STARTING_SCAN: (
        SystemState.INDEXING,
        "Services ready. Starting workspace scan...",
    ),
    StatusReason.BLOCK_PROGRESS: (SystemState.INDEXING, "Indexed {detail}"),
    StatusReason.FILE_QUEUE_PROGRESS: (SystemState.INDEXING, "{detail}"),
    StatusReason.INITIALIZING_WATCHER: (SystemState.INDEXING, "Initializing file watcher..."),
    StatusReason.WATCHER_STARTED: (SystemState.INDEXED, "File watcher started."),
    StatusReason.PROCESSING_FILE_CHANGES: (SystemState.INDEXING, "Processing file changes..."),
    StatusReason.FILE_CHANGES_PROCESSED: (
        SystemState.INDEXED,
        "File changes processed. Index up-to-date.",
    ),
    StatusReason.QUEUE_EMPTY: (SystemState.INDEXED, "Index up-to-date. File queue empty."),
    StatusReason.WATCHER_STOPPED: (SystemState.STANDBY, "File watcher stopped."),
    StatusReason.INDEX_CLEARED: (SystemState.STANDBY, "Index data cleared successfully."),
    StatusReason.SCAN_FAILED: (SystemState.ERROR, "Failed during initial scan: {detail}"),
    StatusReason.CLEAR_FAILED: (
        SystemState.ERROR,
        "Failed to clear vector collection: {detail}",
    ),
}


@dataclass(frozen=True)
class StatusMessage:
    """Structured status message."""

    reason: StatusReason
    detail: str | None = None

    @property
    def state(self) -> SystemState:
        return _REASONS[self.reason][0]

    @property
    def text(self) -> str:
        template = _REASONS[self.reason][1]
        return template.format(detail=self.detail or "unknown error")

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class IndexingStatus:
    """Snapshot of the indexing system status."""

    state: SystemState
    message: StatusMessage
    processed_items: int
    total_items: int
    current_item_unit: ItemUnit
    current_file: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "reason": self.message.reason.value,
            "message": self.message.text,
            "processed_items": self.processed_items,
            "total_items": self.total_items,
            "current_item_unit": self.current_item_unit,
            "current_file": self.current_file,
        }


class IndexStateManager:
    """
    Single-writer progress and status bulletin board.

    Publishes an IndexingStatus to listeners whenever the state, message or
    progress counters change. Last write wins.
    """

    def __init__(self) -> None:
        self._state = SystemState.STANDBY
        self._message = StatusMessage(StatusReason.READY)
        self._processed_items = 0
        self._total_items = 0
        self._current_item_unit: ItemUnit = "blocks"
        self._current_file: str | None = None
        self._progress_emitter: EventEmitter[IndexingStatus] = EventEmitter("progress_update")

    @property
    def state(self) -> SystemState:
        return self._state

    @property
    def message(self) -> StatusMessage:
        return self._message

    def on_progress_update(self, listener: Callable[[IndexingStatus], None]) -> Disposable:
        """Subscribe to status updates."""
        return self._progress_emitter.event(listener)

    def get_current_status(self) -> IndexingStatus:
        return IndexingStatus(
            state=self._state,
            message=self._message,
            processed_items=self._processed_items,
            total_items=self._total_items,
            current_item_unit=self._current_item_unit,
            current_file=self._current_file,
        )

    def set_system_state(
        self,
        state: SystemState,
        reason: StatusReason,
        detail: str | None = None,
    ) -> None:
        """
        Transition to a new state.

        Args:
            state: Target state.
            reason: Reason code; must belong to ``state``.
            detail: Optional detail interpolated into the message.

        Raises:
            ValueError: If the reason does not belong to the state.
        """
        message = StatusMessage(reason, detail)
        if message.state != state:
            raise ValueError(
                f"Status reason {reason.value!r} is not valid for state {state.value!r}"
            )

        if state == self._state and message == self._message:
            return

        previous = self._state
        self._state = state
        self._message = message

        if state != SystemState.INDEXING:
            self._processed_items = 0
            self._total_items = 0
            self._current_item_unit = "blocks"
            self._current_file = None

        logger.debug(
            "System state changed",
            previous=previous.value,
            state=state.value,
            reason=reason.value,
        )
        self._fire_update()

    def report_block_indexing_progress(self, processed_items: int, total_items: int) -> None:
        """Publish cumulative block progress of a full scan."""
        changed = (
            processed_items != self._processed_items
            or total_items != self._total_items
            or self._current_item_unit != "blocks"
        )

        if not changed and self._state == SystemState.INDEXING:
            return

        self._processed_items = processed_items
        self._total_items = total_items
        self._current_item_unit = "blocks"
        self._current_file = None
        self._state = SystemState.INDEXING
        self._message = StatusMessage(
            StatusReason.BLOCK_PROGRESS,
            f"{processed_items} / {total_items} blocks found",
        )
        self._fire_update()

    def report_file_queue_progress(
        self,
        processed_files: int,
        total_files: int,
        current_file: str | None = None,
    ) -> None:
        """Publish progress of a file watcher batch."""
        changed = (
            processed_files != self._processed_items
            or total_files != self._total_items
            or self._current_item_unit != "files"
            or current_file != self._current_file
        )

        if not changed and self._state == SystemState.INDEXING:
            return

        if total_files > 0 and processed_files < total_files:
            detail = (
                f"Processing {processed_files} / {total_files} files. "
                f"Current: {current_file or 'N/A'}"
            )
        elif total_files > 0:
            detail = f"Finished processing {total_files} files from queue."
        else:
            detail = "File queue processed."

        self._processed_items = processed_files
        self._total_items = total_files
        self._current_item_unit = "files"
        self._current_file = current_file
        self._state = SystemState.INDEXING
        self._message = StatusMessage(StatusReason.FILE_QUEUE_PROGRESS, detail)
        self._fire_update()

    def _fire_update(self) -> None:
        self._progress_emitter.fire(self.get_current_status())

    def dispose(self) -> None:
        self._progress_emitter.dispose()
