"""Dispatch execution for selected candidates.

Each candidate goes through a two-phase state machine:

  Phase 1: begin_attempt commits attempt_count + 1 and status processing
           BEFORE any external call, so a crash mid-send is visible as a
           consumed attempt and the record is resumed next cycle.
  Phase 2: after the partner answers, the record moves to acknowledged,
           retrying, or failed.

Example:
    executor = DispatchExecutor(store, partner_client, documents, max_attempts=3)
    result = await executor.dispatch(candidates, cancel_event=stop)
"""

import asyncio
import logging
import os
from datetime import datetime

from src.db.models import DispatchStatus
from src.dispatch.cancellation import await_cancellable, raise_if_cancelled
from src.dispatch.guard import DEFAULT_FAILURE_THRESHOLD, BatchGuard
from src.dispatch.interfaces import DocumentSource, RecordStore, SubmissionChannel
from src.dispatch.models import (
    DispatchCandidate,
    DispatchDocument,
    DispatchOutcome,
    DispatchResult,
)
from src.dispatch.selector import DEFAULT_MAX_ATTEMPTS
from src.errors.formatter import RelayError
from src.errors.partner_translation import translate_partner_error
from src.gs1.identifiers import GLN_LENGTH, is_valid_check_digit, parse_location
from src.services.errors import PartnerConnectionError, PartnerServiceError
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

DEFAULT_SUBMIT_TIMEOUT_SECONDS = 30.0
DEFAULT_LOAD_TIMEOUT_SECONDS = 30.0


def routing_gln(value: str | None) -> str:
    """Canonical GLN for routing, or "" when ``value`` does not yield one."""
    if not value:
        return ""
    value = value.strip()
    if len(value) == GLN_LENGTH and value.isdigit():
        return value if is_valid_check_digit(value) else ""
    return parse_location(value)


class DispatchExecutor:
    """Submits candidate documents and records each outcome.

    Attributes:
        _store: Dispatch ledger
        _channel: Secure submission channel to the partner
        _documents: Source of prebuilt EPCIS payloads
        _max_attempts: Attempt ceiling for transient failures
    """

    def __init__(
        self,
        record_store: RecordStore,
        submission_channel: SubmissionChannel,
        document_source: DocumentSource,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        submit_timeout: float = DEFAULT_SUBMIT_TIMEOUT_SECONDS,
        load_timeout: float = DEFAULT_LOAD_TIMEOUT_SECONDS,
    ) -> None:
        self._store = record_store
        self._channel = submission_channel
        self._documents = document_source
        self._max_attempts = max_attempts
        self._submit_timeout = submit_timeout
        self._load_timeout = load_timeout

    @staticmethod
    def _resolve_concurrency(batch_len: int) -> int:
        """Concurrency ceiling: the batch size, lowered by DISPATCH_CONCURRENCY."""
        ceiling = max(1, batch_len)
        raw = os.environ.get("DISPATCH_CONCURRENCY", "")
        if not raw:
            return ceiling
        try:
            value = int(raw)
        except ValueError:
            logger.warning("Invalid DISPATCH_CONCURRENCY=%r, using batch size", raw)
            return ceiling
        return max(1, min(value, ceiling))

    async def dispatch(
        self,
        candidates: list[DispatchCandidate],
        cancel_event: asyncio.Event | None = None,
        failure_threshold: float = DEFAULT_FAILURE_THRESHOLD,
    ) -> DispatchResult:
        """Attempt delivery of every candidate.

        Returns:
            DispatchResult whose ``succeeded`` list holds only acknowledged
            outcomes, in candidate order. Retrying and failed outcomes are
            excluded from it and returned in ``failed`` for the notifier.
            Items that failed before an outcome could be recorded are logged
            and omitted from both.

        Raises:
            BatchThresholdExceeded: Failed items exceed ``failure_threshold``.
            DispatchCancelled: ``cancel_event`` was set. In-flight records
                stay processing and are resumed next cycle.
        """
        guard = BatchGuard("dispatch", failure_threshold)
        if not candidates:
            return DispatchResult()
        raise_if_cancelled(cancel_event)

        semaphore = asyncio.Semaphore(self._resolve_concurrency(len(candidates)))
        db_lock = asyncio.Lock()

        async def _dispatch_one(candidate: DispatchCandidate) -> DispatchOutcome | None:
            async with semaphore:
                raise_if_cancelled(cancel_event)
                outcome = await self._attempt(candidate, cancel_event, db_lock)
            if outcome is None:
                guard.record_failure(
                    candidate.shipping_operation_id, "no outcome recorded"
                )
            elif outcome.acknowledged:
                guard.record_success()
            else:
                guard.record_failure(
                    candidate.shipping_operation_id,
                    outcome.error_message or outcome.status.value,
                )
            return outcome

        tasks = [asyncio.ensure_future(_dispatch_one(c)) for c in candidates]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        outcomes = [o for o in results if o is not None]
        logger.info(
            "Dispatch complete candidates=%d acknowledged=%d retrying=%d failed=%d",
            len(candidates),
            sum(1 for o in outcomes if o.status is DispatchStatus.acknowledged),
            sum(1 for o in outcomes if o.status is DispatchStatus.retrying),
            sum(1 for o in outcomes if o.status is DispatchStatus.failed),
        )
        guard.check()
        return DispatchResult(
            succeeded=[o for o in outcomes if o.acknowledged],
            failed=[o for o in outcomes if not o.acknowledged],
        )

    async def _attempt(
        self,
        candidate: DispatchCandidate,
        cancel_event: asyncio.Event | None,
        db_lock: asyncio.Lock,
    ) -> DispatchOutcome | None:
        """Run one candidate through the two-phase state machine.

        State transitions:
          none/pending/retrying/failed -> processing (Phase 1, attempt consumed)
          processing -> acknowledged (partner accepted)
          processing -> failed (4xx, unusable payload or GLN, ceiling reached)
          processing -> retrying (5xx, timeout, connection error)
        Cancellation leaves the record processing and records nothing.
        """
        op_id = candidate.shipping_operation_id
        previous_gln = candidate.record.target_gln if candidate.record else None

        # PHASE 1: consume the attempt BEFORE any external call
        try:
            async with db_lock:
                record = self._store.begin_attempt(op_id, candidate.capture_id, previous_gln)
        except Exception as e:
            logger.error("Could not start dispatch attempt for %s: %s", op_id, e)
            return None

        logger.info(
            "Dispatch attempt %d/%d for shipping operation %s (record %s)",
            record.attempt_count,
            self._max_attempts,
            op_id,
            record.record_id,
        )

        # Load the prebuilt document; unreadable payloads are permanent failures
        try:
            document: DispatchDocument = await await_cancellable(
                self._documents.load(candidate), cancel_event, self._load_timeout
            )
        except Exception as e:
            error = RelayError.from_code("E-4002", operation_id=op_id, reason=str(e))
            return await self._finish(
                candidate,
                record.record_id,
                record.attempt_count,
                DispatchStatus.failed,
                db_lock,
                error_code=error.code,
                error_message=error.message,
            )

        # Routing GLN: accept a bare 13-digit code or a URN / digital link
        target_gln = routing_gln(document.target_gln)
        if not target_gln:
            if document.target_gln:
                error = RelayError.from_code("E-1001", value=document.target_gln)
            else:
                error = RelayError.from_code("E-1003", operation_id=op_id)
            return await self._finish(
                candidate,
                record.record_id,
                record.attempt_count,
                DispatchStatus.failed,
                db_lock,
                error_code=error.code,
                error_message=error.message,
            )

        # --- PARTNER CALL BOUNDARY ---
        # Error taxonomy:
        #   PartnerServiceError 4xx -> failed (permanent)
        #   PartnerServiceError 5xx -> retrying, failed at the ceiling
        #   PartnerConnectionError / TimeoutError -> retrying, failed at the ceiling
        #   DispatchCancelled -> propagates, nothing recorded
        status_code: int | None = None
        try:
            receipt = await await_cancellable(
                self._channel.submit(document.payload), cancel_event, self._submit_timeout
            )
        except PartnerServiceError as e:
            status_code = e.status_code
            failure = str(e)
        except (PartnerConnectionError, TimeoutError) as e:
            failure = f"{type(e).__name__}: {e}"
        except Exception as e:
            logger.error(
                "Unexpected submission error for %s: %s [%s]", op_id, e, type(e).__name__
            )
            failure = f"{type(e).__name__}: {e}"
        else:
            return await self._finish(
                candidate,
                record.record_id,
                record.attempt_count,
                DispatchStatus.acknowledged,
                db_lock,
                target_gln=target_gln,
                transaction_id=receipt.transaction_id,
                accepted_at=receipt.accepted_at,
                http_status_code=200,
            )

        code, message, permanent = translate_partner_error(status_code, failure)
        if permanent:
            status = DispatchStatus.failed
        elif record.attempt_count >= self._max_attempts:
            status = DispatchStatus.failed
            message = f"{message} (attempt ceiling {self._max_attempts} reached)"
        else:
            status = DispatchStatus.retrying

        return await self._finish(
            candidate,
            record.record_id,
            record.attempt_count,
            status,
            db_lock,
            target_gln=target_gln,
            http_status_code=status_code,
            error_code=code,
            error_message=message,
        )

    async def _finish(
        self,
        candidate: DispatchCandidate,
        record_id: str,
        attempt_count: int,
        status: DispatchStatus,
        db_lock: asyncio.Lock,
        *,
        target_gln: str | None = None,
        transaction_id: str | None = None,
        accepted_at: datetime | None = None,
        http_status_code: int | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> DispatchOutcome | None:
        """PHASE 2: persist the outcome and build the result."""
        op_id = candidate.shipping_operation_id
        error_message = sanitize_error_message(error_message)
        try:
            async with db_lock:
                applied = self._store.record_outcome(
                    record_id,
                    status,
                    target_gln=target_gln,
                    transaction_id=transaction_id,
                    accepted_at=accepted_at,
                    http_status_code=http_status_code,
                    error_message=error_message,
                )
        except Exception as e:
            logger.error(
                "Could not record %s outcome for %s (record %s): %s",
                status.value,
                op_id,
                record_id,
                e,
            )
            return None

        if not applied:
            return None

        if status is DispatchStatus.acknowledged:
            logger.info(
                "Shipping operation %s acknowledged transaction_id=%s",
                op_id,
                transaction_id,
            )
        else:
            logger.warning(
                "Shipping operation %s %s on attempt %d: %s",
                op_id,
                status.value,
                attempt_count,
                error_message,
            )

        return DispatchOutcome(
            shipping_operation_id=op_id,
            record_id=record_id,
            status=status,
            attempt_count=attempt_count,
            transaction_id=transaction_id,
            http_status_code=http_status_code,
            error_code=error_code,
            error_message=error_message,
        )
