"""Tests for the SQL-backed dispatch ledger."""

from datetime import UTC, datetime

import pytest

from src.db.models import (
    ConfirmationState,
    DispatchRecord,
    DispatchStatus,
    ShippingOperationStatus,
)
from src.errors.domain import InvalidStateTransition, MissingTransactionId, NotFoundError
from src.services.record_store import VALID_TRANSITIONS, validate_transition


class TestValidTransitions:
    """Dispatch status transition table."""

    def test_acknowledged_is_terminal(self):
        assert VALID_TRANSITIONS[DispatchStatus.acknowledged] == []

    def test_failed_can_restart(self):
        validate_transition(DispatchStatus.failed, DispatchStatus.processing)

    def test_pending_cannot_jump_to_acknowledged(self):
        with pytest.raises(InvalidStateTransition) as exc_info:
            validate_transition(DispatchStatus.pending, DispatchStatus.acknowledged)
        assert exc_info.value.current_state is DispatchStatus.pending


class TestReads:
    """Selection-side queries."""

    def test_approved_operations_oldest_first(self, record_store, add_operation):
        """Only approved operations are returned, ordered by creation."""
        add_operation("op-2", created_at="2026-01-02T00:00:00+00:00")
        add_operation("op-1", created_at="2026-01-01T00:00:00+00:00")
        add_operation("op-3", status=ShippingOperationStatus.draft)

        ops = record_store.query_approved_operations(limit=10, max_attempts=3)

        assert [op["id"] for op in ops] == ["op-1", "op-2"]
        assert ops[0]["capture_id"] == "cap-1"

    def test_approved_operations_respects_limit(self, record_store, add_operation):
        for i in range(5):
            add_operation(f"op-{i}", created_at=f"2026-01-0{i + 1}T00:00:00+00:00")
        assert len(record_store.query_approved_operations(limit=3, max_attempts=3)) == 3

    def test_approved_operations_exclude_finished(self, record_store, add_operation, add_record):
        """Acknowledged and exhausted operations are filtered before the limit."""
        for op_id in ("op-ack", "op-failed", "op-retry", "op-stuck", "op-again", "op-new"):
            add_operation(op_id)
        add_record("op-ack", DispatchStatus.acknowledged, 1, transaction_id="tx")
        add_record("op-failed", DispatchStatus.failed, 3)
        add_record("op-retry", DispatchStatus.retrying, 4)
        add_record("op-stuck", DispatchStatus.processing, 3)
        add_record("op-again", DispatchStatus.failed, 2)

        ops = record_store.query_approved_operations(limit=10, max_attempts=3)

        assert sorted(op["id"] for op in ops) == ["op-again", "op-new", "op-stuck"]

    def test_records_keyed_by_operation(self, record_store, add_record):
        add_record("op-1", DispatchStatus.retrying, attempt_count=1)

        records = record_store.get_records_for_operations(["op-1", "op-missing"])

        assert set(records) == {"op-1"}
        assert records["op-1"].status is DispatchStatus.retrying
        assert records["op-1"].attempt_count == 1

    def test_records_accept_numeric_ids(self, record_store, add_record):
        """Numeric operation ids match their string form."""
        add_record("240001")
        records = record_store.get_records_for_operations([240001])
        assert "240001" in records

    def test_empty_id_list_skips_query(self, record_store):
        assert record_store.get_records_for_operations([]) == {}

    def test_unconfirmed_acknowledged(self, record_store, add_record):
        """Acknowledged records without a terminal partner status are returned."""
        add_record("op-1", DispatchStatus.acknowledged, 1, transaction_id="tx-1")
        add_record(
            "op-2", DispatchStatus.acknowledged, 1, transaction_id="tx-2",
            partner_status=ConfirmationState.pending.value,
        )
        add_record(
            "op-3", DispatchStatus.acknowledged, 1, transaction_id="tx-3",
            partner_status=ConfirmationState.confirmed.value,
        )
        add_record("op-4", DispatchStatus.retrying, 1)

        targets = record_store.query_unconfirmed_acknowledged(limit=50)

        assert sorted(t.transaction_id for t in targets) == ["tx-1", "tx-2"]

    def test_exhausted_failures(self, record_store, add_record):
        add_record("op-1", DispatchStatus.failed, attempt_count=3)
        add_record("op-2", DispatchStatus.failed, attempt_count=1)

        exhausted = record_store.query_exhausted_failures(max_attempts=3, limit=100)

        assert [r.shipping_operation_id for r in exhausted] == ["op-1"]

    def test_get_record_not_found(self, record_store):
        with pytest.raises(NotFoundError):
            record_store.get_record("999")


class TestBeginAttempt:
    """Phase 1: attempt consumption before any external call."""

    def test_creates_record_at_one(self, record_store):
        snapshot = record_store.begin_attempt("op-1", "cap-1", None)

        assert snapshot.attempt_count == 1
        assert snapshot.status is DispatchStatus.processing

    def test_increments_existing(self, record_store, add_record):
        add_record("op-1", DispatchStatus.retrying, attempt_count=1)

        snapshot = record_store.begin_attempt("op-1", "cap-1", "0614141000005")

        assert snapshot.attempt_count == 2
        assert snapshot.status is DispatchStatus.processing
        assert snapshot.target_gln == "0614141000005"

    def test_resumed_processing_consumes_another_attempt(self, record_store, add_record):
        """A crash mid-send leaves processing; resuming counts a new attempt."""
        add_record("op-1", DispatchStatus.processing, attempt_count=1)
        assert record_store.begin_attempt("op-1", "cap-1", None).attempt_count == 2

    def test_acknowledged_rejected(self, record_store, add_record):
        add_record("op-1", DispatchStatus.acknowledged, 1, transaction_id="tx-1")

        with pytest.raises(InvalidStateTransition):
            record_store.begin_attempt("op-1", "cap-1", None)

        assert record_store.get_records_for_operations(["op-1"])["op-1"].attempt_count == 1

    def test_attempt_count_never_decreases(self, record_store):
        counts = [record_store.begin_attempt("op-1", "cap-1", None).attempt_count for _ in range(3)]
        assert counts == [1, 2, 3]


class TestRecordOutcome:
    """Phase 2: terminal and transient outcomes."""

    def test_acknowledged_sets_transaction(self, record_store, session_factory):
        snapshot = record_store.begin_attempt("op-1", "cap-1", None)
        accepted = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

        applied = record_store.record_outcome(
            snapshot.record_id,
            DispatchStatus.acknowledged,
            target_gln="0614141000005",
            transaction_id="tx-1",
            accepted_at=accepted,
            http_status_code=200,
        )

        assert applied is True
        with session_factory() as db:
            record = db.get(DispatchRecord, int(snapshot.record_id))
            assert record.status == "acknowledged"
            assert record.transaction_id == "tx-1"
            assert record.acknowledged_at == accepted.isoformat()
            assert record.dispatched_at is not None
            assert record.target_gln == "0614141000005"
            assert record.http_status_code == 200

    def test_acknowledged_without_transaction_rejected(self, record_store):
        snapshot = record_store.begin_attempt("op-1", "cap-1", None)
        with pytest.raises(MissingTransactionId):
            record_store.record_outcome(snapshot.record_id, DispatchStatus.acknowledged)

    def test_failure_message_sanitized(self, record_store, session_factory):
        snapshot = record_store.begin_attempt("op-1", "cap-1", None)

        record_store.record_outcome(
            snapshot.record_id,
            DispatchStatus.retrying,
            http_status_code=503,
            error_message="upstream said password=hunter2",
        )

        with session_factory() as db:
            record = db.get(DispatchRecord, int(snapshot.record_id))
            assert record.status == "retrying"
            assert "hunter2" not in record.last_error_message
            assert record.attempt_count == 1

    def test_stale_outcome_discarded_after_acknowledgement(self, record_store, session_factory):
        """A late retrying outcome never overwrites acknowledged."""
        snapshot = record_store.begin_attempt("op-1", "cap-1", None)
        record_store.record_outcome(
            snapshot.record_id, DispatchStatus.acknowledged, transaction_id="tx-1"
        )

        applied = record_store.record_outcome(
            snapshot.record_id, DispatchStatus.retrying, error_message="late"
        )

        assert applied is False
        with session_factory() as db:
            assert db.get(DispatchRecord, int(snapshot.record_id)).status == "acknowledged"

    def test_outcome_requires_processing(self, record_store, add_record):
        record_id = add_record("op-1", DispatchStatus.retrying, attempt_count=1)
        with pytest.raises(InvalidStateTransition):
            record_store.record_outcome(str(record_id), DispatchStatus.failed)

    def test_outcome_unknown_record(self, record_store):
        with pytest.raises(NotFoundError):
            record_store.record_outcome("424242", DispatchStatus.failed)


class TestRecordConfirmation:
    """Reconciliation writes."""

    def test_delivered_sets_confirmed_at(self, record_store, add_record, session_factory):
        record_id = add_record("op-1", DispatchStatus.acknowledged, 1, transaction_id="tx-1")
        checked = datetime(2026, 3, 2, tzinfo=UTC)

        record_store.record_confirmation(
            str(record_id),
            ConfirmationState.confirmed,
            status_code=200,
            status_message="Acknowledged",
            checked_at=checked,
            delivered=True,
        )

        with session_factory() as db:
            record = db.get(DispatchRecord, record_id)
            assert record.partner_status == "confirmed"
            assert record.confirmed_at == checked.isoformat()
            assert record.status == "acknowledged"
            assert record.attempt_count == 1

    def test_pending_leaves_confirmed_at_empty(self, record_store, add_record, session_factory):
        record_id = add_record("op-1", DispatchStatus.acknowledged, 1, transaction_id="tx-1")

        record_store.record_confirmation(
            record_id,
            ConfirmationState.pending,
            status_code=200,
            status_message="Processing",
            checked_at=datetime.now(UTC),
            delivered=False,
        )

        with session_factory() as db:
            record = db.get(DispatchRecord, record_id)
            assert record.partner_status == "pending"
            assert record.partner_status_message == "Processing"
            assert record.confirmed_at is None
