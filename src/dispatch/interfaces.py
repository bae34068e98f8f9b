"""Collaborator protocols consumed by the dispatch engine.

The engine never talks to a database, HTTP client, or document store
directly; it goes through these narrow interfaces. Production
implementations live in src/services/.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from src.db.models import ConfirmationState, DispatchStatus
from src.dispatch.models import (
    DispatchCandidate,
    DispatchDocument,
    DispatchRecordSnapshot,
    PartnerStatusReport,
    ReconciliationTarget,
    SubmissionReceipt,
)


@runtime_checkable
class RecordStore(Protocol):
    """Dispatch ledger plus the upstream shipping operations it keys on.

    Identities may be passed as strings or numbers; implementations
    normalize them with normalize_record_id.
    """

    def query_approved_operations(self, limit: int, max_attempts: int) -> list[dict]:
        """Approved shipping operations that may still need dispatch, oldest first.

        Operations whose record is acknowledged, or failed / retrying at
        ``max_attempts`` or more, are excluded before ``limit`` applies.

        Each dict carries ``id`` and ``capture_id`` (either may be missing
        or None for malformed upstream rows).
        """
        ...

    def get_records_for_operations(
        self, operation_ids: list[str]
    ) -> dict[str, DispatchRecordSnapshot]:
        """Existing dispatch records keyed by normalized operation id."""
        ...

    def begin_attempt(
        self,
        shipping_operation_id: str,
        capture_id: str,
        target_gln: str | None,
    ) -> DispatchRecordSnapshot:
        """Consume one attempt and mark the record processing.

        Creates the record at attempt_count 1 when none exists. Must be a
        single atomic read-modify-write.
        """
        ...

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
        """Persist a dispatch outcome.

        Returns:
            False when the record was already acknowledged and the stale
            outcome was discarded.
        """
        ...

    def query_unconfirmed_acknowledged(self, limit: int) -> list[ReconciliationTarget]:
        """Acknowledged records with no terminal partner status."""
        ...

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
        """Persist a mapped partner status."""
        ...

    def query_exhausted_failures(
        self, max_attempts: int, limit: int
    ) -> list[DispatchRecordSnapshot]:
        """Failed records at or past the attempt ceiling."""
        ...


@runtime_checkable
class SubmissionChannel(Protocol):
    """Secure channel that delivers a document to the partner network."""

    async def submit(self, payload: bytes) -> SubmissionReceipt:
        """Submit a document.

        Raises:
            PartnerServiceError: Partner answered with an error status.
            PartnerConnectionError: Partner could not be reached.
            TimeoutError: Partner did not answer in time.
        """
        ...


@runtime_checkable
class StatusChannel(Protocol):
    """Partner dashboard that reports delivery status per transaction."""

    async def query_status(self, transaction_id: str) -> PartnerStatusReport:
        """Return the raw status for a transaction id."""
        ...


@runtime_checkable
class DocumentSource(Protocol):
    """Supplies the already-built EPCIS payload for a candidate."""

    async def load(self, candidate: DispatchCandidate) -> DispatchDocument:
        """Load payload bytes and target location for ``candidate``."""
        ...
