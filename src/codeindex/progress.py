"""
Scan progress aggregation and outcome classification.

A full scan reports progress through three callbacks. ProgressChannel turns
those callbacks into an ordered stream of typed ProgressEvent values, a
single aggregation loop folds them into a ScanOutcome, and classify_outcome
maps the finished outcome onto an explicit IndexingResult.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Union

import structlog

logger = structlog.get_logger(__name__)

# Share of found blocks that may fail to index before a run with batch
# errors is treated as failed.
FAILURE_RATE_THRESHOLD = 0.10


@dataclass(frozen=True)
class BatchError:
    """An error reported for one scan batch."""

    message: str
    cause: BaseException | None = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "BatchError":
        return cls(message=str(error) or type(error).__name__, cause=error)


@dataclass(frozen=True)
class BlocksFound:
    count: int


@dataclass(frozen=True)
class BlocksIndexed:
    count: int


@dataclass(frozen=True)
class BatchFailed:
    error: BatchError


ProgressEvent = Union[BlocksFound, BlocksIndexed, BatchFailed]


@dataclass
class ScanOutcome:
    """Counters accumulated over a single indexing run."""

    blocks_found: int = 0
    blocks_indexed: int = 0
    batch_errors: list[BatchError] = field(default_factory=list)

    def apply(self, event: ProgressEvent) -> None:
        """Fold one progress event into the counters."""
        if isinstance(event, BlocksFound):
            if event.count < 0:
                raise ValueError(f"Negative block count: {event.count}")
            self.blocks_found += event.count
        elif isinstance(event, BlocksIndexed):
            if event.count < 0:
                raise ValueError(f"Negative block count: {event.count}")
            self.blocks_indexed += event.count
        elif isinstance(event, BatchFailed):
            self.batch_errors.append(event.error)
        else:
            raise TypeError(f"Unknown progress event: {event!r}")

    @property
    def failure_rate(self) -> float | None:
        """Share of found blocks not indexed; None when nothing was found."""
        if self.blocks_found == 0:
            return None
        return (self.blocks_found - self.blocks_indexed) / self.blocks_found

    @property
    def first_error(self) -> BatchError | None:
        return self.batch_errors[0] if self.batch_errors else None


class FailureReason(str, Enum):
    """Why an indexing run failed."""

    SCAN_RETURNED_NOTHING = "scan_returned_nothing"
    ALL_BATCHES_FAILED = "all_batches_failed"
    NO_BLOCKS_INDEXED = "no_blocks_indexed"
    FAILED_COMPLETELY = "failed_completely"
    CRITICAL = "critical"
    WATCHER_FAILED = "watcher_failed"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class IndexingSucceeded:
    outcome: ScanOutcome


@dataclass(frozen=True)
class PartialFailure:
    """Too many blocks failed to index."""

    indexed: int
    found: int
    errors: tuple[BatchError, ...]

    @property
    def message(self) -> str:
        return (
            f"Indexing partially failed: only {self.indexed} of {self.found} "
            f"blocks were indexed. {self.errors[0].message}"
        )


@dataclass(frozen=True)
class TotalFailure:
    """The run produced no usable index."""

    reason: FailureReason
    message: str
    errors: tuple[BatchError, ...] = ()


IndexingResult = Union[IndexingSucceeded, PartialFailure, TotalFailure]
IndexingFailure = Union[PartialFailure, TotalFailure]


def classify_outcome(outcome: ScanOutcome) -> IndexingResult:
    """
    Classify a finished scan.

    Rules are evaluated in order; the earliest recorded batch error is the
    one surfaced in failure messages.
    """
    found = outcome.blocks_found
    indexed = outcome.blocks_indexed
    errors = tuple(outcome.batch_errors)
    first = outcome.first_error

    if indexed == 0 and found > 0:
        if first is not None:
            return TotalFailure(
                FailureReason.ALL_BATCHES_FAILED,
                f"Indexing failed: {first.message}",
                errors,
            )
        return TotalFailure(
            FailureReason.NO_BLOCKS_INDEXED,
            "Indexing failed: no code blocks were indexed. "
            "This usually indicates an embedder configuration problem.",
        )

    rate = outcome.failure_rate
    if first is not None and rate is not None and rate > FAILURE_RATE_THRESHOLD:
        return PartialFailure(indexed=indexed, found=found, errors=errors)

    if first is not None and indexed == 0:
        return TotalFailure(
            FailureReason.FAILED_COMPLETELY,
            f"Indexing failed completely: {first.message}",
            errors,
        )

    if found > 0 and indexed == 0:
        return TotalFailure(
            FailureReason.CRITICAL,
            "Indexing failed critically: blocks were found but none were indexed.",
        )

    return IndexingSucceeded(outcome)


class ProgressChannel:
    """
    Ordered stream of progress events fed by scanner callbacks.

    The callbacks only enqueue; consumers iterate with ``async for`` and the
    iteration ends once the channel is closed and drained.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def publish(self, event: ProgressEvent) -> None:
        if self._closed:
            raise RuntimeError("Progress channel is closed")
        self._queue.put_nowait(event)

    def on_file_parsed(self, block_count: int) -> None:
        self.publish(BlocksFound(block_count))

    def on_blocks_indexed(self, indexed_count: int) -> None:
        self.publish(BlocksIndexed(indexed_count))

    def on_batch_error(self, error: BaseException) -> None:
        self.publish(BatchFailed(BatchError.from_exception(error)))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
