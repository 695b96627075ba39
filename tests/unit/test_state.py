"""
Unit tests for the indexing state manager.

Tests cover:
- Reason/state validation
- Change-only notification
- Block and file queue progress reporting
"""

from __future__ import annotations

import pytest

from codeindex.state import (
    IndexStateManager,
    StatusMessage,
    StatusReason,
    SystemState,
)


class TestStatusMessage:
    """Tests for StatusMessage rendering."""

    def test_static_message(self):
        message = StatusMessage(StatusReason.WATCHER_STARTED)

        assert message.state == SystemState.INDEXED
        assert message.text == "File watcher started."

    def test_detail_interpolation(self):
        message = StatusMessage(StatusReason.SCAN_FAILED, "quota exceeded")

        assert message.state == SystemState.ERROR
        assert str(message) == "Failed during initial scan: quota exceeded"

    def test_missing_detail(self):
        message = StatusMessage(StatusReason.CLEAR_FAILED)

        assert message.text == "Failed to clear vector collection: unknown error"

    @pytest.mark.parametrize("reason", list(StatusReason))
    def test_every_reason_renders(self, reason):
        message = StatusMessage(reason, "x")

        assert message.text
        assert isinstance(message.state, SystemState)


class TestIndexStateManager:
    """Tests for IndexStateManager."""

    def test_initial_state(self):
        manager = IndexStateManager()
        status = manager.get_current_status()

        assert manager.state == SystemState.STANDBY
        assert status.message.reason == StatusReason.READY
        assert status.processed_items == 0
        assert status.current_item_unit == "blocks"

    def test_rejects_mismatched_reason(self):
        manager = IndexStateManager()

        with pytest.raises(ValueError, match="not valid for state"):
            manager.set_system_state(SystemState.INDEXED, StatusReason.SCAN_FAILED)

        assert manager.state == SystemState.STANDBY

    def test_notifies_only_on_change(self):
        manager = IndexStateManager()
        updates = []
        manager.on_progress_update(updates.append)

        manager.set_system_state(SystemState.INDEXING, StatusReason.STARTING_SCAN)
        manager.set_system_state(SystemState.INDEXING, StatusReason.STARTING_SCAN)
        manager.set_system_state(SystemState.INDEXED, StatusReason.WATCHER_STARTED)

        assert [u.state for u in updates] == [SystemState.INDEXING, SystemState.INDEXED]

    def test_leaving_indexing_resets_progress(self):
        manager = IndexStateManager()
        manager.report_block_indexing_progress(3, 10)

        manager.set_system_state(SystemState.INDEXED, StatusReason.WATCHER_STARTED)
        status = manager.get_current_status()

        assert status.processed_items == 0
        assert status.total_items == 0

    def test_block_progress(self):
        manager = IndexStateManager()

        manager.report_block_indexing_progress(4, 12)
        status = manager.get_current_status()

        assert status.state == SystemState.INDEXING
        assert status.message.reason == StatusReason.BLOCK_PROGRESS
        assert status.message.text == "Indexed 4 / 12 blocks found"
        assert status.current_item_unit == "blocks"

    def test_block_progress_unchanged_is_silent(self):
        manager = IndexStateManager()
        updates = []
        manager.report_block_indexing_progress(1, 2)
        manager.on_progress_update(updates.append)

        manager.report_block_indexing_progress(1, 2)

        assert updates == []

    def test_file_queue_progress_messages(self):
        manager = IndexStateManager()

        manager.report_file_queue_progress(1, 3, "auth.py")
        assert manager.message.text == "Processing 1 / 3 files. Current: auth.py"
        assert manager.get_current_status().current_file == "auth.py"

        manager.report_file_queue_progress(3, 3)
        assert manager.message.text == "Finished processing 3 files from queue."

        manager.report_file_queue_progress(0, 0)
        assert manager.message.text == "File queue processed."
        assert manager.state == SystemState.INDEXING

    def test_listener_failure_does_not_block_others(self):
        manager = IndexStateManager()
        received = []

        def broken(_status):
            raise RuntimeError("listener bug")

        manager.on_progress_update(broken)
        manager.on_progress_update(received.append)

        manager.set_system_state(SystemState.INDEXING, StatusReason.INITIALIZING_SERVICES)

        assert len(received) == 1

    def test_unsubscribe(self):
        manager = IndexStateManager()
        updates = []
        subscription = manager.on_progress_update(updates.append)

        subscription.dispose()
        manager.set_system_state(SystemState.INDEXING, StatusReason.INITIALIZING_SERVICES)

        assert updates == []

    def test_status_to_dict(self):
        manager = IndexStateManager()
        manager.report_file_queue_progress(1, 2, "a.py")

        data = manager.get_current_status().to_dict()

        assert data["state"] == "Indexing"
        assert data["reason"] == "file_queue_progress"
        assert data["current_item_unit"] == "files"
        assert data["current_file"] == "a.py"
