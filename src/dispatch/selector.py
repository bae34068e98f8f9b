"""Candidate selection for the dispatch cycle.

Decides which approved shipping operations need a transmission attempt,
from the operations themselves and their existing dispatch records. Reads
only; never writes to the ledger.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from src.db.models import DispatchStatus
from src.dispatch.cancellation import raise_if_cancelled
from src.dispatch.guard import DEFAULT_FAILURE_THRESHOLD, BatchGuard
from src.dispatch.interfaces import RecordStore
from src.dispatch.models import (
    DispatchCandidate,
    DispatchRecordSnapshot,
    normalize_record_id,
)
from src.errors.formatter import RelayError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class SelectionStats:
    """Counters logged at the end of candidate selection."""

    examined: int = 0
    selected: int = 0
    new: int = 0
    resumed: int = 0
    retried: int = 0
    skipped_acknowledged: int = 0
    skipped_exhausted: int = 0
    skipped_malformed: int = 0
    deferred: int = 0
    malformed_ids: list[str] = field(default_factory=list)


def is_eligible(record: DispatchRecordSnapshot | None, max_attempts: int) -> bool:
    """Eligibility rule for one shipping operation.

    - no record: first attempt
    - acknowledged: already delivered, never again
    - failed / retrying: only below the attempt ceiling
    - pending / processing: interrupted attempt, resume
    """
    if record is None:
        return True
    if record.status is DispatchStatus.acknowledged:
        return False
    if record.status in (DispatchStatus.failed, DispatchStatus.retrying):
        return record.attempt_count < max_attempts
    return True


class CandidateSelector:
    """Selects dispatch candidates from approved shipping operations.

    Attributes:
        _store: Record store for operations and dispatch records
    """

    def __init__(self, record_store: RecordStore) -> None:
        self._store = record_store

    async def select_candidates(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        cancel_event: asyncio.Event | None = None,
        failure_threshold: float = DEFAULT_FAILURE_THRESHOLD,
    ) -> list[DispatchCandidate]:
        """Return at most ``batch_size`` operations needing a dispatch attempt.

        The store excludes acknowledged and exhausted operations before its
        limit, and twice the batch size is fetched so malformed operations
        do not starve the batch. Operations beyond ``batch_size`` are deferred to the next
        cycle.

        Raises:
            BatchThresholdExceeded: Too many malformed operations.
            DispatchCancelled: ``cancel_event`` was set.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        guard = BatchGuard("select_candidates", failure_threshold)
        raise_if_cancelled(cancel_event)

        operations = self._store.query_approved_operations(
            limit=batch_size * 2, max_attempts=max_attempts
        )
        op_ids = [
            normalize_record_id(op["id"]) for op in operations if op.get("id") is not None
        ]
        records = self._store.get_records_for_operations(op_ids)

        stats = SelectionStats()
        candidates: list[DispatchCandidate] = []

        for op in operations:
            raise_if_cancelled(cancel_event)
            stats.examined += 1

            raw_id = op.get("id")
            capture_id = op.get("capture_id")
            if raw_id is None or raw_id == "" or not capture_id:
                op_label = "<missing id>" if raw_id in (None, "") else normalize_record_id(raw_id)
                stats.skipped_malformed += 1
                stats.malformed_ids.append(op_label)
                error = RelayError.from_code("E-1002", operation_id=op_label)
                guard.record_failure(op_label, error)
                continue

            op_id = normalize_record_id(raw_id)
            record = records.get(op_id)
            if not is_eligible(record, max_attempts):
                if record is not None and record.status is DispatchStatus.acknowledged:
                    stats.skipped_acknowledged += 1
                else:
                    stats.skipped_exhausted += 1
                continue

            guard.record_success()
            if len(candidates) >= batch_size:
                stats.deferred += 1
                continue

            if record is None:
                stats.new += 1
            elif record.status in (DispatchStatus.failed, DispatchStatus.retrying):
                stats.retried += 1
            else:
                stats.resumed += 1

            candidates.append(
                DispatchCandidate(
                    shipping_operation_id=op_id,
                    capture_id=normalize_record_id(capture_id),
                    record=record,
                )
            )

        stats.selected = len(candidates)
        logger.info(
            "Candidate selection examined=%d selected=%d new=%d resumed=%d retried=%d "
            "skipped_acknowledged=%d skipped_exhausted=%d skipped_malformed=%d deferred=%d",
            stats.examined,
            stats.selected,
            stats.new,
            stats.resumed,
            stats.retried,
            stats.skipped_acknowledged,
            stats.skipped_exhausted,
            stats.skipped_malformed,
            stats.deferred,
        )
        guard.check()
        return candidates
