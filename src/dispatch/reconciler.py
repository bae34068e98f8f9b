"""Confirmation reconciliation against the partner dashboard.

After a document is acknowledged, the partner network delivers it to the
receiving location asynchronously. The reconciler queries the partner
status of acknowledged records and writes the mapped result back to the
ledger. It never changes attempt_count or the dispatch status, and never
triggers a new dispatch: a partner-confirmed failure is surfaced for
operator notification only.
"""

import asyncio
import logging
from datetime import UTC, datetime

from src.db.models import ConfirmationState
from src.dispatch.cancellation import await_cancellable, raise_if_cancelled
from src.dispatch.guard import DEFAULT_FAILURE_THRESHOLD, BatchGuard
from src.dispatch.interfaces import RecordStore, StatusChannel
from src.dispatch.models import (
    ConfirmationStatus,
    DispatchOutcome,
    ReconciliationSummary,
    ReconciliationTarget,
    normalize_record_id,
)
from src.errors.formatter import RelayError
from src.services.errors import StatusNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_STATUS_TIMEOUT_SECONDS = 30.0
DEFAULT_CANDIDATE_LIMIT = 50

# Partner status messages that mean the receiving location has the document
_DELIVERED_MARKERS = ("acknowledged", "delivered")


def map_partner_status(
    status_code: int,
    status_message: str | None,
    checked_at: datetime | None = None,
) -> ConfirmationStatus:
    """Map a raw partner status to a ConfirmationStatus.

    Mapping:
      200 + "acknowledged"/"delivered" in message -> confirmed (delivered, permanent)
      200 + "processing" in message                -> pending
      4xx                                          -> failed (permanent)
      5xx                                          -> pending (transient)
      anything else                                -> pending
    """
    message = status_message or ""
    lowered = message.lower()
    checked_at = checked_at or datetime.now(UTC)

    state = ConfirmationState.pending
    delivered = False
    permanent = False
    if status_code == 200 and any(m in lowered for m in _DELIVERED_MARKERS):
        state, delivered, permanent = ConfirmationState.confirmed, True, True
    elif 400 <= status_code < 500:
        state, permanent = ConfirmationState.failed, True

    return ConfirmationStatus(
        state=state,
        delivered=delivered,
        permanent=permanent,
        status_code=status_code,
        status_message=message,
        checked_at=checked_at,
    )


class ConfirmationReconciler:
    """Queries partner status for acknowledged records.

    Attributes:
        _store: Dispatch ledger
        _channel: Partner dashboard status channel
        _status_timeout: Timeout per status query, in seconds
        _candidate_limit: Stored unconfirmed records examined per pass
    """

    def __init__(
        self,
        record_store: RecordStore,
        status_channel: StatusChannel,
        status_timeout: float = DEFAULT_STATUS_TIMEOUT_SECONDS,
        candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> None:
        self._store = record_store
        self._channel = status_channel
        self._status_timeout = status_timeout
        self._candidate_limit = candidate_limit

    def collect_targets(
        self, recent_outcomes: list[DispatchOutcome] | None
    ) -> list[ReconciliationTarget]:
        """Union of this run's acknowledged outcomes and stored unconfirmed records.

        Deduplicated by normalized record id, this run's outcomes first.
        """
        targets: dict[str, ReconciliationTarget] = {}
        for outcome in recent_outcomes or []:
            if not outcome.acknowledged or not outcome.transaction_id:
                continue
            rid = normalize_record_id(outcome.record_id)
            targets.setdefault(
                rid,
                ReconciliationTarget(
                    record_id=rid,
                    shipping_operation_id=outcome.shipping_operation_id,
                    transaction_id=outcome.transaction_id,
                ),
            )

        fresh = len(targets)
        for stored in self._store.query_unconfirmed_acknowledged(self._candidate_limit):
            targets.setdefault(normalize_record_id(stored.record_id), stored)

        logger.info(
            "Reconciliation targets total=%d from_this_run=%d from_ledger=%d",
            len(targets),
            fresh,
            len(targets) - fresh,
        )
        return list(targets.values())

    async def reconcile(
        self,
        recent_outcomes: list[DispatchOutcome] | None = None,
        cancel_event: asyncio.Event | None = None,
        failure_threshold: float = DEFAULT_FAILURE_THRESHOLD,
    ) -> ReconciliationSummary:
        """Query and persist partner status, once per record per pass.

        Raises:
            BatchThresholdExceeded: Too many status queries failed.
            DispatchCancelled: ``cancel_event`` was set.
        """
        guard = BatchGuard("reconcile", failure_threshold)
        raise_if_cancelled(cancel_event)
        summary = ReconciliationSummary()

        for target in self.collect_targets(recent_outcomes):
            raise_if_cancelled(cancel_event)
            summary.queried += 1

            try:
                report = await await_cancellable(
                    self._channel.query_status(target.transaction_id),
                    cancel_event,
                    self._status_timeout,
                )
            except StatusNotFoundError:
                # Not indexed by the dashboard yet; stays unconfirmed until next pass
                logger.info(
                    "No partner log entry yet for record %s transaction_id=%s",
                    target.record_id,
                    target.transaction_id,
                )
                guard.record_success()
                summary.pending.append(target.record_id)
                continue
            except Exception as e:
                error = RelayError.from_code(
                    "E-4004", transaction_id=target.transaction_id, reason=str(e)
                )
                guard.record_failure(target.record_id, error)
                summary.errored.append(target.record_id)
                continue

            status = map_partner_status(report.status_code, report.status_message)
            try:
                self._store.record_confirmation(
                    target.record_id,
                    status.state,
                    status_code=status.status_code,
                    status_message=status.status_message,
                    checked_at=status.checked_at,
                    delivered=status.delivered,
                )
            except Exception as e:
                error = RelayError.from_code("E-4001", reason=str(e))
                guard.record_failure(target.record_id, error)
                summary.errored.append(target.record_id)
                continue

            guard.record_success()
            if status.state is ConfirmationState.confirmed:
                summary.confirmed.append(target.record_id)
                logger.info(
                    "Record %s confirmed delivered transaction_id=%s",
                    target.record_id,
                    target.transaction_id,
                )
            elif status.state is ConfirmationState.failed:
                summary.failed.append(target)
                logger.warning(
                    "Record %s reported failed by partner status=%d message=%s",
                    target.record_id,
                    status.status_code,
                    status.status_message,
                )
            else:
                summary.pending.append(target.record_id)

        logger.info(
            "Reconciliation complete queried=%d confirmed=%d pending=%d failed=%d errored=%d",
            summary.queried,
            len(summary.confirmed),
            len(summary.pending),
            len(summary.failed),
            len(summary.errored),
        )
        guard.check()
        return summary
