"""Operator notification for failed dispatches.

Collects what an operator needs to act on after a cycle: documents the
partner rejected this run, documents the partner later reported as
undeliverable, and the ledger backlog of records that exhausted their
attempts. Failures are grouped by error code and logged at error level;
nothing is retried from here.
"""

import logging
from dataclasses import dataclass, field

from src.dispatch.interfaces import RecordStore
from src.dispatch.models import (
    DispatchOutcome,
    DispatchRecordSnapshot,
    ReconciliationSummary,
    ReconciliationTarget,
)
from src.errors.formatter import RelayError, format_error_summary, group_errors
from src.errors.registry import get_error

logger = logging.getLogger(__name__)

EXHAUSTED_BACKLOG_LIMIT = 100


@dataclass
class FailureReport:
    """Failures surfaced to the operator for one cycle."""

    dispatch_failures: list[DispatchOutcome] = field(default_factory=list)
    """Outcomes of this run that ended failed."""

    delivery_failures: list[ReconciliationTarget] = field(default_factory=list)
    """Acknowledged records the partner reported as failed."""

    exhausted: list[DispatchRecordSnapshot] = field(default_factory=list)
    """Stored failed records at or past the attempt ceiling."""

    errors: list[RelayError] = field(default_factory=list)
    """Grouped relay errors, one per distinct code and message."""

    @property
    def total(self) -> int:
        return len(self.dispatch_failures) + len(self.delivery_failures) + len(self.exhausted)

    @property
    def has_failures(self) -> bool:
        return self.total > 0

    def summary(self) -> str:
        return format_error_summary(self.errors)


def _outcome_error(outcome: DispatchOutcome) -> RelayError:
    code = outcome.error_code or "E-3003"
    error_def = get_error(code)
    return RelayError(
        code=code,
        message=outcome.error_message or (error_def.title if error_def else code),
        remediation=error_def.remediation if error_def else "Contact support.",
        operations=[outcome.shipping_operation_id],
        is_retryable=False,
    )


def notify_on_errors(
    outcomes: list[DispatchOutcome],
    record_store: RecordStore,
    max_attempts: int,
    reconciliation: ReconciliationSummary | None = None,
) -> FailureReport:
    """Log every failure an operator must handle and return them."""
    report = FailureReport(
        dispatch_failures=[o for o in outcomes if o.permanently_failed],
        delivery_failures=list(reconciliation.failed) if reconciliation else [],
        exhausted=record_store.query_exhausted_failures(
            max_attempts, EXHAUSTED_BACKLOG_LIMIT
        ),
    )

    errors = [_outcome_error(o) for o in report.dispatch_failures]
    for target in report.delivery_failures:
        errors.append(
            RelayError.from_code(
                "E-3005",
                partner_message="the receiving location did not accept the document",
                operations=[target.shipping_operation_id],
            )
        )
    report.errors = group_errors(errors)

    if report.errors:
        logger.error("Dispatch failures this cycle:\n%s", report.summary())

    if report.exhausted:
        logger.error(
            "%d dispatch record(s) exhausted %d attempts: %s",
            len(report.exhausted),
            max_attempts,
            ", ".join(r.shipping_operation_id for r in report.exhausted),
        )

    if report.has_failures:
        logger.warning(
            "Failure report dispatch=%d delivery=%d exhausted=%d",
            len(report.dispatch_failures),
            len(report.delivery_failures),
            len(report.exhausted),
        )
    else:
        logger.info("No failures to report")
    return report
