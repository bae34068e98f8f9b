"""Data models for the dispatch engine.

Defines the ephemeral dataclasses passed between candidate selection,
dispatch execution, and confirmation reconciliation. Persistent state
lives only in the DispatchRecord table.
"""

from dataclasses import dataclass, field
from datetime import datetime

from src.db.models import ConfirmationState, DispatchStatus


def normalize_record_id(value: object) -> str:
    """Canonical string identity for a record or operation id.

    The document store returns ids as strings or numbers (JSON floats
    included), so ``"240001"``, ``240001`` and ``240001.0`` must compare
    equal.
    """
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


@dataclass(frozen=True)
class DispatchRecordSnapshot:
    """Read-only copy of a DispatchRecord taken during candidate selection."""

    record_id: str
    """Ledger identity of the record."""

    shipping_operation_id: str
    """Upstream shipping operation this record tracks."""

    status: DispatchStatus
    """Lifecycle status at selection time."""

    attempt_count: int
    """Submissions started so far."""

    transaction_id: str | None = None
    """Partner transaction id, when acknowledged."""

    target_gln: str | None = None
    """GLN of the receiving location from the previous attempt."""


@dataclass(frozen=True)
class DispatchCandidate:
    """A shipping operation that needs a transmission attempt this cycle."""

    shipping_operation_id: str
    """Upstream shipping operation identity."""

    capture_id: str
    """EPCIS capture batch holding the operation's events."""

    record: DispatchRecordSnapshot | None = None
    """Existing ledger entry, None for a first attempt."""

    @property
    def attempt_count(self) -> int:
        return self.record.attempt_count if self.record else 0


@dataclass(frozen=True)
class DispatchDocument:
    """Payload supplied by the document source for one candidate."""

    payload: bytes
    """Serialized EPCIS document, sent verbatim."""

    target_gln: str
    """GLN of the receiving location."""


@dataclass(frozen=True)
class SubmissionReceipt:
    """Partner acknowledgement of a submitted document."""

    transaction_id: str
    """Partner-assigned id used for later status queries."""

    accepted_at: datetime | None = None
    """Acceptance time reported by the partner, when present."""


@dataclass(frozen=True)
class PartnerStatusReport:
    """Raw status entry from the partner dashboard."""

    status_code: int
    status_message: str


@dataclass
class DispatchOutcome:
    """Result of one dispatch attempt."""

    shipping_operation_id: str
    """Upstream shipping operation identity."""

    record_id: str
    """Ledger identity of the record that was updated."""

    status: DispatchStatus
    """acknowledged, retrying, or failed."""

    attempt_count: int
    """Attempt count after this attempt was consumed."""

    transaction_id: str | None = None
    """Partner transaction id for acknowledged outcomes."""

    http_status_code: int | None = None
    """Partner HTTP status, None for transport failures."""

    error_code: str | None = None
    """Relay error code (E-XXXX) for failures."""

    error_message: str | None = None
    """Sanitized failure detail."""

    @property
    def acknowledged(self) -> bool:
        return self.status is DispatchStatus.acknowledged

    @property
    def permanently_failed(self) -> bool:
        return self.status is DispatchStatus.failed


@dataclass
class DispatchResult:
    """Outcomes of one dispatch call, split into the success set and the rest."""

    succeeded: list[DispatchOutcome] = field(default_factory=list)
    """Acknowledged outcomes; the only ones passed on to reconciliation."""

    failed: list[DispatchOutcome] = field(default_factory=list)
    """Retrying and failed outcomes, already logged and persisted."""


@dataclass(frozen=True)
class ConfirmationStatus:
    """Mapped result of a partner status query."""

    state: ConfirmationState
    """pending, confirmed, or failed."""

    delivered: bool
    """Partner confirmed receipt."""

    permanent: bool
    """No further status queries will change the outcome."""

    status_code: int
    """Raw partner status code."""

    status_message: str
    """Raw partner status message."""

    checked_at: datetime
    """When the status was queried."""

    @property
    def is_terminal(self) -> bool:
        return self.state is not ConfirmationState.pending


@dataclass(frozen=True)
class ReconciliationTarget:
    """A record whose partner status should be queried this cycle."""

    record_id: str
    shipping_operation_id: str
    transaction_id: str


@dataclass
class ReconciliationSummary:
    """Aggregate result of one reconciliation pass."""

    queried: int = 0
    """Status queries issued."""

    confirmed: list[str] = field(default_factory=list)
    """Record ids confirmed delivered."""

    pending: list[str] = field(default_factory=list)
    """Record ids still awaiting a terminal partner status."""

    failed: list[ReconciliationTarget] = field(default_factory=list)
    """Records the partner reported as permanently failed."""

    errored: list[str] = field(default_factory=list)
    """Record ids whose status query itself failed."""
