"""Tests for CandidateSelector against the SQL record store."""

import asyncio
from unittest.mock import MagicMock

import pytest

from src.db.models import DispatchStatus, ShippingOperationStatus
from src.dispatch.cancellation import DispatchCancelled
from src.dispatch.guard import BatchThresholdExceeded
from src.dispatch.models import DispatchRecordSnapshot
from src.dispatch.selector import CandidateSelector, is_eligible


def _snapshot(status: DispatchStatus, attempts: int) -> DispatchRecordSnapshot:
    return DispatchRecordSnapshot(
        record_id="1", shipping_operation_id="op", status=status, attempt_count=attempts
    )


class TestIsEligible:

    def test_no_record(self):
        assert is_eligible(None, 3)

    def test_acknowledged_never(self):
        assert not is_eligible(_snapshot(DispatchStatus.acknowledged, 1), 3)

    @pytest.mark.parametrize("status", [DispatchStatus.failed, DispatchStatus.retrying])
    def test_below_ceiling(self, status):
        assert is_eligible(_snapshot(status, 2), 3)

    @pytest.mark.parametrize("status", [DispatchStatus.failed, DispatchStatus.retrying])
    def test_at_ceiling(self, status):
        assert not is_eligible(_snapshot(status, 3), 3)

    @pytest.mark.parametrize("status", [DispatchStatus.pending, DispatchStatus.processing])
    def test_interrupted_resumed(self, status):
        assert is_eligible(_snapshot(status, 5), 3)


class TestSelectCandidates:
    """Selection over seeded operations and records."""

    @pytest.mark.asyncio
    async def test_new_operation_selected(self, record_store, add_operation):
        add_operation("op-1", capture_id="cap-9")

        candidates = await CandidateSelector(record_store).select_candidates()

        assert len(candidates) == 1
        assert candidates[0].shipping_operation_id == "op-1"
        assert candidates[0].capture_id == "cap-9"
        assert candidates[0].record is None

    @pytest.mark.asyncio
    async def test_skips_acknowledged_and_exhausted(self, record_store, add_operation, add_record):
        for op_id in ("op-ack", "op-done", "op-retry", "op-stuck"):
            add_operation(op_id)
        add_record("op-ack", DispatchStatus.acknowledged, 1, transaction_id="tx")
        add_record("op-done", DispatchStatus.failed, 3)
        add_record("op-retry", DispatchStatus.retrying, 1)
        add_record("op-stuck", DispatchStatus.processing, 3)

        candidates = await CandidateSelector(record_store).select_candidates(max_attempts=3)

        selected = {c.shipping_operation_id: c for c in candidates}
        assert set(selected) == {"op-retry", "op-stuck"}
        assert selected["op-retry"].attempt_count == 1
        assert selected["op-stuck"].record.status is DispatchStatus.processing

    @pytest.mark.asyncio
    async def test_failed_below_ceiling_reselected(self, record_store, add_operation, add_record):
        add_operation("op-1")
        add_record("op-1", DispatchStatus.failed, 1)

        candidates = await CandidateSelector(record_store).select_candidates(max_attempts=3)
        assert [c.shipping_operation_id for c in candidates] == ["op-1"]

    @pytest.mark.asyncio
    async def test_ignores_unapproved_operations(self, record_store, add_operation):
        add_operation("op-draft", status=ShippingOperationStatus.draft)
        add_operation("op-cancel", status=ShippingOperationStatus.cancelled)

        assert await CandidateSelector(record_store).select_candidates() == []

    @pytest.mark.asyncio
    async def test_batch_size_oldest_first(self, record_store, add_operation):
        add_operation("op-c", created_at="2026-01-03T00:00:00+00:00")
        add_operation("op-a", created_at="2026-01-01T00:00:00+00:00")
        add_operation("op-b", created_at="2026-01-02T00:00:00+00:00")

        candidates = await CandidateSelector(record_store).select_candidates(batch_size=2)

        assert [c.shipping_operation_id for c in candidates] == ["op-a", "op-b"]

    @pytest.mark.asyncio
    async def test_delivered_backlog_does_not_starve_newer_operations(
        self, record_store, add_operation, add_record
    ):
        """Older finished operations never fill the fetch window."""
        for i in range(25):
            op_id = f"op-old-{i:02d}"
            add_operation(op_id, created_at="2026-01-01T00:00:00+00:00")
            add_record(op_id, DispatchStatus.acknowledged, 1, transaction_id=f"tx-{i}")
        add_operation("op-old-failed", created_at="2026-01-01T00:00:00+00:00")
        add_record("op-old-failed", DispatchStatus.failed, 3)
        add_operation("op-new", created_at="2026-02-01T00:00:00+00:00")

        candidates = await CandidateSelector(record_store).select_candidates(
            batch_size=10, max_attempts=3
        )

        assert [c.shipping_operation_id for c in candidates] == ["op-new"]

    @pytest.mark.asyncio
    async def test_malformed_operation_skipped(self, record_store, add_operation):
        add_operation("op-bad", capture_id=None, created_at="2026-01-01T00:00:00+00:00")
        for i in range(3):
            add_operation(f"op-{i}", created_at=f"2026-01-0{i + 2}T00:00:00+00:00")

        candidates = await CandidateSelector(record_store).select_candidates()

        assert [c.shipping_operation_id for c in candidates] == ["op-0", "op-1", "op-2"]

    @pytest.mark.asyncio
    async def test_mostly_malformed_aborts(self, record_store, add_operation):
        add_operation("op-bad-1", capture_id=None)
        add_operation("op-bad-2", capture_id="")
        add_operation("op-ok", created_at="2026-02-01T00:00:00+00:00")

        with pytest.raises(BatchThresholdExceeded) as exc_info:
            await CandidateSelector(record_store).select_candidates(failure_threshold=0.5)

        assert exc_info.value.operation == "select_candidates"
        assert exc_info.value.failed == 2

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, record_store, add_operation):
        add_operation("op-1")
        event = asyncio.Event()
        event.set()

        with pytest.raises(DispatchCancelled):
            await CandidateSelector(record_store).select_candidates(cancel_event=event)

    @pytest.mark.asyncio
    async def test_rejects_invalid_batch_size(self, record_store):
        with pytest.raises(ValueError):
            await CandidateSelector(record_store).select_candidates(batch_size=0)

    @pytest.mark.asyncio
    async def test_numeric_ids_normalized(self):
        """Numeric document-store ids match string-keyed records."""
        existing = _snapshot(DispatchStatus.retrying, 1)
        store = MagicMock()
        store.query_approved_operations.return_value = [
            {"id": 240001.0, "capture_id": 77},
        ]
        store.get_records_for_operations.return_value = {"240001": existing}

        candidates = await CandidateSelector(store).select_candidates()

        store.query_approved_operations.assert_called_once_with(limit=20, max_attempts=3)
        store.get_records_for_operations.assert_called_once_with(["240001"])
        assert candidates[0].shipping_operation_id == "240001"
        assert candidates[0].capture_id == "77"
        assert candidates[0].record is existing

    @pytest.mark.asyncio
    async def test_selection_never_writes(self):
        store = MagicMock()
        store.query_approved_operations.return_value = [{"id": "op-1", "capture_id": "c"}]
        store.get_records_for_operations.return_value = {}

        await CandidateSelector(store).select_candidates()

        store.begin_attempt.assert_not_called()
        store.record_outcome.assert_not_called()
