"""SQL-backed dispatch ledger implementing the RecordStore protocol.

Every mutation is a single conditional UPDATE (or INSERT for a first
attempt) inside its own transaction, so attempt counts never double
increment and an acknowledged record is never overwritten by a stale
retrying/failed outcome, even when two relay processes share a database.
"""

import logging
import threading
from datetime import datetime

from sqlalchemy import and_, not_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from src.db.connection import get_db_context
from src.db.models import (
    ConfirmationState,
    DispatchRecord,
    DispatchStatus,
    ShippingOperation,
    ShippingOperationStatus,
    utc_now_iso,
)
from src.dispatch.models import (
    DispatchRecordSnapshot,
    ReconciliationTarget,
    normalize_record_id,
)
from src.errors.domain import InvalidStateTransition, MissingTransactionId, NotFoundError
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)


# Valid dispatch status transitions
VALID_TRANSITIONS: dict[DispatchStatus, list[DispatchStatus]] = {
    DispatchStatus.pending: [DispatchStatus.processing],
    DispatchStatus.processing: [
        DispatchStatus.processing,  # resumed after a crash mid-send
        DispatchStatus.acknowledged,
        DispatchStatus.retrying,
        DispatchStatus.failed,
    ],
    DispatchStatus.retrying: [DispatchStatus.processing],
    DispatchStatus.failed: [DispatchStatus.processing],
    DispatchStatus.acknowledged: [],  # terminal
}


def validate_transition(current: DispatchStatus, target: DispatchStatus) -> None:
    """Raise InvalidStateTransition unless ``current -> target`` is allowed."""
    allowed = VALID_TRANSITIONS[current]
    if target not in allowed:
        raise InvalidStateTransition(current, target, allowed)


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def snapshot(record: DispatchRecord) -> DispatchRecordSnapshot:
    """Detached, immutable copy of an ORM record."""
    return DispatchRecordSnapshot(
        record_id=normalize_record_id(record.id),
        shipping_operation_id=record.shipping_operation_id,
        status=DispatchStatus(record.status),
        attempt_count=record.attempt_count,
        transaction_id=record.transaction_id,
        target_gln=record.target_gln,
    )


class SqlRecordStore:
    """Dispatch ledger on SQLAlchemy.

    Attributes:
        _session_factory: Factory producing one session per operation.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._lock = threading.Lock()

    # =========================================================================
    # Reads
    # =========================================================================

    def query_approved_operations(self, limit: int, max_attempts: int) -> list[dict]:
        """Approved operations still needing dispatch, oldest first.

        Acknowledged operations and those that exhausted ``max_attempts``
        are filtered out before the LIMIT, so they never crowd newer
        operations out of the window.
        """
        exhausted = and_(
            DispatchRecord.status.in_(
                [DispatchStatus.failed.value, DispatchStatus.retrying.value]
            ),
            DispatchRecord.attempt_count >= max_attempts,
        )
        with get_db_context(self._session_factory) as db:
            rows = db.scalars(
                select(ShippingOperation)
                .outerjoin(
                    DispatchRecord,
                    DispatchRecord.shipping_operation_id == ShippingOperation.id,
                )
                .where(ShippingOperation.status == ShippingOperationStatus.approved.value)
                .where(
                    or_(
                        DispatchRecord.id.is_(None),
                        and_(
                            DispatchRecord.status != DispatchStatus.acknowledged.value,
                            not_(exhausted),
                        ),
                    )
                )
                .order_by(ShippingOperation.created_at, ShippingOperation.id)
                .limit(limit)
            ).all()
            return [{"id": row.id, "capture_id": row.capture_id} for row in rows]

    def get_records_for_operations(
        self, operation_ids: list[str]
    ) -> dict[str, DispatchRecordSnapshot]:
        ids = [normalize_record_id(op_id) for op_id in operation_ids]
        if not ids:
            return {}
        with get_db_context(self._session_factory) as db:
            records = db.scalars(
                select(DispatchRecord).where(
                    DispatchRecord.shipping_operation_id.in_(ids)
                )
            ).all()
            return {r.shipping_operation_id: snapshot(r) for r in records}

    def query_unconfirmed_acknowledged(self, limit: int) -> list[ReconciliationTarget]:
        with get_db_context(self._session_factory) as db:
            records = db.scalars(
                select(DispatchRecord)
                .where(DispatchRecord.status == DispatchStatus.acknowledged.value)
                .where(DispatchRecord.transaction_id.is_not(None))
                .where(
                    or_(
                        DispatchRecord.partner_status.is_(None),
                        DispatchRecord.partner_status
                        == ConfirmationState.pending.value,
                    )
                )
                .order_by(DispatchRecord.dispatched_at, DispatchRecord.id)
                .limit(limit)
            ).all()
            return [
                ReconciliationTarget(
                    record_id=normalize_record_id(r.id),
                    shipping_operation_id=r.shipping_operation_id,
                    transaction_id=r.transaction_id,
                )
                for r in records
            ]

    def query_exhausted_failures(
        self, max_attempts: int, limit: int
    ) -> list[DispatchRecordSnapshot]:
        with get_db_context(self._session_factory) as db:
            records = db.scalars(
                select(DispatchRecord)
                .where(DispatchRecord.status == DispatchStatus.failed.value)
                .where(DispatchRecord.attempt_count >= max_attempts)
                .order_by(DispatchRecord.last_attempted_at, DispatchRecord.id)
                .limit(limit)
            ).all()
            return [snapshot(r) for r in records]

    def get_record(self, record_id: str | int) -> DispatchRecordSnapshot:
        """Load one record by ledger id.

        Raises:
            NotFoundError: No record with that id.
        """
        with get_db_context(self._session_factory) as db:
            record = db.get(DispatchRecord, int(normalize_record_id(record_id)))
            if record is None:
                raise NotFoundError("DispatchRecord", normalize_record_id(record_id))
            return snapshot(record)

    # =========================================================================
    # Writes
    # =========================================================================

    def begin_attempt(
        self,
        shipping_operation_id: str,
        capture_id: str,
        target_gln: str | None,
    ) -> DispatchRecordSnapshot:
        """Consume one attempt before any external call.

        Increments attempt_count in SQL (``attempt_count + 1``) and moves the
        record to processing, or inserts it at count 1.

        Raises:
            InvalidStateTransition: The record is already acknowledged.
        """
        op_id = normalize_record_id(shipping_operation_id)
        with self._lock:
            try:
                return self._begin_attempt(op_id, capture_id, target_gln)
            except IntegrityError:
                # Another process inserted the record first; increment theirs
                logger.info(
                    "Dispatch record for %s created concurrently, retrying increment",
                    op_id,
                )
                return self._begin_attempt(op_id, capture_id, target_gln)

    def _begin_attempt(
        self, op_id: str, capture_id: str, target_gln: str | None
    ) -> DispatchRecordSnapshot:
        now = utc_now_iso()
        values: dict = {
            "attempt_count": DispatchRecord.attempt_count + 1,
            "status": DispatchStatus.processing.value,
            "last_attempted_at": now,
            "capture_id": capture_id,
        }
        if target_gln:
            values["target_gln"] = target_gln

        with get_db_context(self._session_factory) as db:
            result = db.execute(
                update(DispatchRecord)
                .where(DispatchRecord.shipping_operation_id == op_id)
                .where(DispatchRecord.status != DispatchStatus.acknowledged.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            record = db.scalars(
                select(DispatchRecord).where(
                    DispatchRecord.shipping_operation_id == op_id
                )
            ).first()

            if result.rowcount == 0:
                if record is not None:
                    validate_transition(
                        DispatchStatus(record.status), DispatchStatus.processing
                    )
                record = DispatchRecord(
                    shipping_operation_id=op_id,
                    capture_id=capture_id,
                    status=DispatchStatus.processing.value,
                    attempt_count=1,
                    target_gln=target_gln,
                    created_at=now,
                    last_attempted_at=now,
                )
                db.add(record)
                db.flush()
                logger.info("Created dispatch record %s for shipping operation %s", record.id, op_id)

            return snapshot(record)

    def record_outcome(
        self,
        record_id: str,
        status: DispatchStatus,
        *,
        target_gln: str | None = None,
        transaction_id: str | None = None,
        accepted_at: datetime | None = None,
        http_status_code: int | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Move a processing record to acknowledged, retrying, or failed.

        Returns:
            False when the record was already acknowledged (stale outcome
            discarded), True otherwise.

        Raises:
            MissingTransactionId: Acknowledged without a transaction id.
            InvalidStateTransition: Record is not processing.
            NotFoundError: Record does not exist.
        """
        rid = normalize_record_id(record_id)
        validate_transition(DispatchStatus.processing, status)
        if status is DispatchStatus.acknowledged and not transaction_id:
            raise MissingTransactionId(rid)

        now = utc_now_iso()
        values: dict = {
            "status": status.value,
            "http_status_code": http_status_code,
        }
        if target_gln:
            values["target_gln"] = target_gln
        if status is DispatchStatus.acknowledged:
            values.update(
                transaction_id=transaction_id,
                dispatched_at=now,
                acknowledged_at=_to_iso(accepted_at) or now,
                last_error_message=None,
            )
        else:
            values["last_error_message"] = sanitize_error_message(error_message)

        with self._lock, get_db_context(self._session_factory) as db:
            result = db.execute(
                update(DispatchRecord)
                .where(DispatchRecord.id == int(rid))
                .where(DispatchRecord.status == DispatchStatus.processing.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return True

            record = db.get(DispatchRecord, int(rid))
            if record is None:
                raise NotFoundError("DispatchRecord", rid)
            current = DispatchStatus(record.status)
            if current is DispatchStatus.acknowledged:
                logger.warning(
                    "Discarding stale %s outcome for acknowledged dispatch record %s",
                    status.value,
                    rid,
                )
                return False
            raise InvalidStateTransition(current, status, VALID_TRANSITIONS[current])

    def record_confirmation(
        self,
        record_id: str,
        state: ConfirmationState,
        *,
        status_code: int,
        status_message: str,
        checked_at: datetime,
        delivered: bool,
    ) -> None:
        """Persist a partner status; never touches attempt_count or status."""
        rid = normalize_record_id(record_id)
        values: dict = {
            "partner_status": state.value,
            "partner_status_code": status_code,
            "partner_status_message": status_message,
            "partner_status_checked_at": checked_at.isoformat(),
        }
        with self._lock, get_db_context(self._session_factory) as db:
            record = db.get(DispatchRecord, int(rid))
            if record is None:
                raise NotFoundError("DispatchRecord", rid)
            if delivered and record.confirmed_at is None:
                values["confirmed_at"] = checked_at.isoformat()
            db.execute(
                update(DispatchRecord)
                .where(DispatchRecord.id == int(rid))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
