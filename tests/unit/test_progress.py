"""
Unit tests for progress aggregation and outcome classification.

Tests cover:
- ScanOutcome accumulation and failure rate
- Classification rules and their order
- ProgressChannel ordering and shutdown
"""

from __future__ import annotations

import pytest

from codeindex.progress import (
    FAILURE_RATE_THRESHOLD,
    BatchError,
    BatchFailed,
    BlocksFound,
    BlocksIndexed,
    FailureReason,
    IndexingSucceeded,
    PartialFailure,
    ProgressChannel,
    ScanOutcome,
    TotalFailure,
    classify_outcome,
)


def outcome(found: int, indexed: int, *errors: str) -> ScanOutcome:
    result = ScanOutcome()
    result.apply(BlocksFound(found))
    result.apply(BlocksIndexed(indexed))
    for message in errors:
        result.apply(BatchFailed(BatchError(message)))
    return result


class TestScanOutcome:
    """Tests for ScanOutcome."""

    def test_accumulates(self):
        result = ScanOutcome()
        for event in (BlocksFound(3), BlocksIndexed(2), BlocksFound(4), BlocksIndexed(5)):
            result.apply(event)

        assert result.blocks_found == 7
        assert result.blocks_indexed == 7

    def test_rejects_negative_counts(self):
        with pytest.raises(ValueError):
            ScanOutcome().apply(BlocksFound(-1))
        with pytest.raises(ValueError):
            ScanOutcome().apply(BlocksIndexed(-2))

    def test_failure_rate_undefined_without_blocks(self):
        assert ScanOutcome().failure_rate is None

    def test_failure_rate(self):
        assert outcome(100, 80).failure_rate == pytest.approx(0.2)

    def test_first_error_is_earliest(self):
        assert outcome(5, 0, "first", "second").first_error.message == "first"

    def test_batch_error_from_exception(self):
        error = BatchError.from_exception(TimeoutError())

        assert error.message == "TimeoutError"
        assert isinstance(error.cause, TimeoutError)


class TestClassifyOutcome:
    """Tests for classify_outcome."""

    def test_threshold_value(self):
        assert FAILURE_RATE_THRESHOLD == 0.10

    def test_nothing_found_succeeds(self):
        assert isinstance(classify_outcome(ScanOutcome()), IndexingSucceeded)

    def test_errors_with_nothing_found_fail_completely(self):
        result = classify_outcome(outcome(0, 0, "boom"))

        assert isinstance(result, TotalFailure)
        assert result.reason == FailureReason.FAILED_COMPLETELY
        assert result.message == "Indexing failed completely: boom"

    def test_all_batches_failed(self):
        result = classify_outcome(outcome(10, 0, "rate limited", "later"))

        assert isinstance(result, TotalFailure)
        assert result.reason == FailureReason.ALL_BATCHES_FAILED
        assert result.message == "Indexing failed: rate limited"
        assert len(result.errors) == 2

    def test_no_blocks_indexed(self):
        result = classify_outcome(outcome(10, 0))

        assert isinstance(result, TotalFailure)
        assert result.reason == FailureReason.NO_BLOCKS_INDEXED
        assert "embedder configuration" in result.message

    def test_partial_failure(self):
        result = classify_outcome(outcome(100, 80, "first", "second", "third"))

        assert isinstance(result, PartialFailure)
        assert result.message == (
            "Indexing partially failed: only 80 of 100 blocks were indexed. first"
        )

    def test_within_threshold(self):
        assert isinstance(classify_outcome(outcome(100, 95, "one")), IndexingSucceeded)

    def test_exactly_at_threshold(self):
        assert isinstance(classify_outcome(outcome(100, 90, "one")), IndexingSucceeded)

    def test_rate_above_threshold_without_errors(self):
        assert isinstance(classify_outcome(outcome(100, 10)), IndexingSucceeded)


class TestProgressChannel:
    """Tests for ProgressChannel."""

    @pytest.mark.asyncio
    async def test_delivers_in_order(self):
        channel = ProgressChannel()
        error = RuntimeError("bad batch")

        channel.on_file_parsed(3)
        channel.on_batch_error(error)
        channel.on_blocks_indexed(2)
        channel.close()

        events = [event async for event in channel]

        assert events[0] == BlocksFound(3)
        assert isinstance(events[1], BatchFailed)
        assert events[1].error.message == "bad batch"
        assert events[1].error.cause is error
        assert events[2] == BlocksIndexed(2)

    @pytest.mark.asyncio
    async def test_publish_after_close_fails(self):
        channel = ProgressChannel()
        channel.close()
        channel.close()

        with pytest.raises(RuntimeError):
            channel.on_file_parsed(1)

        assert [event async for event in channel] == []
