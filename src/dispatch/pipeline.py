"""Outbound dispatch cycle.

Runs the named steps in order:

  select_candidates -> dispatch -> reconcile -> notify_on_errors

A BatchThresholdExceeded raised by a step aborts the cycle at that step;
later steps do not run. Cancellation propagates unchanged.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from src.dispatch.executor import DispatchExecutor
from src.dispatch.guard import DEFAULT_FAILURE_THRESHOLD, BatchThresholdExceeded
from src.dispatch.interfaces import DocumentSource, RecordStore
from src.dispatch.models import (
    DispatchCandidate,
    DispatchResult,
    ReconciliationSummary,
)
from src.dispatch.notifier import FailureReport, notify_on_errors
from src.dispatch.reconciler import ConfirmationReconciler
from src.dispatch.selector import DEFAULT_BATCH_SIZE, DEFAULT_MAX_ATTEMPTS, CandidateSelector

if TYPE_CHECKING:
    from src.config import RelayConfig

logger = logging.getLogger(__name__)

PIPELINE_STEPS = ("select_candidates", "dispatch", "reconcile", "notify_on_errors")


@dataclass
class CycleResult:
    """Everything one outbound cycle produced."""

    candidates: list[DispatchCandidate] = field(default_factory=list)
    dispatch: DispatchResult = field(default_factory=DispatchResult)
    reconciliation: ReconciliationSummary | None = None
    report: FailureReport | None = None
    completed_steps: list[str] = field(default_factory=list)


async def run_outbound_cycle(
    selector: CandidateSelector,
    executor: DispatchExecutor,
    reconciler: ConfirmationReconciler,
    record_store: RecordStore,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    failure_threshold: float = DEFAULT_FAILURE_THRESHOLD,
    cancel_event: asyncio.Event | None = None,
) -> CycleResult:
    """Run one select/dispatch/reconcile/notify cycle.

    Raises:
        BatchThresholdExceeded: A step's failure rate exceeded the threshold.
        DispatchCancelled: ``cancel_event`` was set.
    """
    result = CycleResult()
    cycle_start = time.monotonic()

    try:
        step = "select_candidates"
        logger.info("Pipeline step %s started", step)
        result.candidates = await selector.select_candidates(
            batch_size=batch_size,
            max_attempts=max_attempts,
            cancel_event=cancel_event,
            failure_threshold=failure_threshold,
        )
        result.completed_steps.append(step)

        step = "dispatch"
        logger.info("Pipeline step %s started candidates=%d", step, len(result.candidates))
        result.dispatch = await executor.dispatch(
            result.candidates,
            cancel_event=cancel_event,
            failure_threshold=failure_threshold,
        )
        result.completed_steps.append(step)

        step = "reconcile"
        logger.info("Pipeline step %s started", step)
        result.reconciliation = await reconciler.reconcile(
            result.dispatch.succeeded,
            cancel_event=cancel_event,
            failure_threshold=failure_threshold,
        )
        result.completed_steps.append(step)

        step = "notify_on_errors"
        logger.info("Pipeline step %s started", step)
        result.report = notify_on_errors(
            result.dispatch.failed,
            record_store,
            max_attempts,
            reconciliation=result.reconciliation,
        )
        result.completed_steps.append(step)
    except BatchThresholdExceeded as e:
        logger.error("Pipeline aborted at step %s: %s", step, e)
        raise
    except asyncio.CancelledError:
        logger.warning("Pipeline cancelled during step %s", step)
        raise

    logger.info(
        "Pipeline cycle complete in %.2fs candidates=%d acknowledged=%d failures=%d",
        time.monotonic() - cycle_start,
        len(result.candidates),
        len(result.dispatch.succeeded),
        result.report.total if result.report else 0,
    )
    return result


async def run_from_config(
    config: "RelayConfig",
    document_source: DocumentSource,
    cancel_event: asyncio.Event | None = None,
) -> CycleResult:
    """Build the production collaborators from ``config`` and run one cycle."""
    from src.db.connection import create_db_engine, create_session_factory, init_db
    from src.services.partner_client import PartnerClient
    from src.services.record_store import SqlRecordStore
    from src.services.status_client import PartnerStatusClient

    engine = create_db_engine(config.database.url)
    init_db(bind=engine)
    store = SqlRecordStore(create_session_factory(engine))
    partner = config.partner
    dispatch = config.dispatch

    try:
        submission_client = PartnerClient(
            endpoint=partner.endpoint,
            cert_file=partner.cert_file,
            key_file=partner.key_file,
            ca_file=partner.ca_file,
            timeout=dispatch.submit_timeout_seconds,
        )
        status_client = PartnerStatusClient(
            dashboard_url=partner.dashboard_url,
            username=partner.username,
            password=partner.password,
            client_id=partner.client_id,
            company_id=partner.company_id,
            timeout=dispatch.status_timeout_seconds,
        )
        async with submission_client as submission, status_client as status:
            return await run_outbound_cycle(
                CandidateSelector(store),
                DispatchExecutor(
                    store,
                    submission,
                    document_source,
                    max_attempts=dispatch.max_attempts,
                    submit_timeout=dispatch.submit_timeout_seconds,
                ),
                ConfirmationReconciler(
                    store, status, status_timeout=dispatch.status_timeout_seconds
                ),
                store,
                batch_size=dispatch.batch_size,
                max_attempts=dispatch.max_attempts,
                failure_threshold=dispatch.failure_threshold,
                cancel_event=cancel_event,
            )
    finally:
        engine.dispose()
