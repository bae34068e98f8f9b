"""Dispatch reliability engine.

Selects shipping operations that need a transmission attempt, submits
their EPCIS documents to the partner network, reconciles asynchronous
delivery confirmations, and reports failures to the operator.
"""

from src.dispatch.cancellation import DispatchCancelled, await_cancellable
from src.dispatch.executor import DispatchExecutor
from src.dispatch.guard import BatchGuard, BatchThresholdExceeded
from src.dispatch.interfaces import (
    DocumentSource,
    RecordStore,
    StatusChannel,
    SubmissionChannel,
)
from src.dispatch.models import (
    ConfirmationStatus,
    DispatchCandidate,
    DispatchDocument,
    DispatchOutcome,
    DispatchRecordSnapshot,
    DispatchResult,
    PartnerStatusReport,
    ReconciliationSummary,
    ReconciliationTarget,
    SubmissionReceipt,
    normalize_record_id,
)
from src.dispatch.notifier import FailureReport, notify_on_errors
from src.dispatch.pipeline import CycleResult, run_from_config, run_outbound_cycle
from src.dispatch.reconciler import ConfirmationReconciler, map_partner_status
from src.dispatch.selector import CandidateSelector, is_eligible

__all__ = [
    # Models
    "DispatchRecordSnapshot",
    "DispatchCandidate",
    "DispatchDocument",
    "DispatchOutcome",
    "DispatchResult",
    "SubmissionReceipt",
    "PartnerStatusReport",
    "ConfirmationStatus",
    "ReconciliationTarget",
    "ReconciliationSummary",
    "normalize_record_id",
    # Interfaces
    "RecordStore",
    "SubmissionChannel",
    "StatusChannel",
    "DocumentSource",
    # Engine
    "CandidateSelector",
    "is_eligible",
    "DispatchExecutor",
    "ConfirmationReconciler",
    "map_partner_status",
    "notify_on_errors",
    "FailureReport",
    "run_outbound_cycle",
    "run_from_config",
    "CycleResult",
    # Guard and cancellation
    "BatchGuard",
    "BatchThresholdExceeded",
    "DispatchCancelled",
    "await_cancellable",
]
