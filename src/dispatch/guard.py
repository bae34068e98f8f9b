"""Batch failure-threshold guard.

Every batch operation (candidate selection, dispatch, reconciliation)
counts attempted and failed items. Individual failures are logged and
dropped from the result; when the failure rate exceeds the threshold the
whole operation aborts with BatchThresholdExceeded instead of silently
committing a mostly-failed batch.
"""

import logging

from src.errors.formatter import RelayError

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 0.5


def validate_threshold(threshold: float) -> float:
    """Return ``threshold`` or raise ValueError when outside 0.0-1.0."""
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"Failure threshold must be between 0.0 and 1.0, got {threshold}")
    return threshold


class BatchThresholdExceeded(Exception):
    """Too many items of a batch operation failed.

    Attributes:
        operation: Name of the aborted operation.
        attempted: Items attempted.
        failed: Items that failed.
        threshold: Configured failure threshold.
        error: Registry-backed RelayError (E-4003).
    """

    def __init__(self, operation: str, attempted: int, failed: int, threshold: float) -> None:
        self.operation = operation
        self.attempted = attempted
        self.failed = failed
        self.threshold = threshold
        self.error = RelayError.from_code(
            "E-4003", operation=operation, failed=failed, attempted=attempted
        )
        super().__init__(
            f"{operation} aborted: {failed}/{attempted} items failed "
            f"({self.failure_rate:.1%}), exceeding threshold {threshold:.1%}"
        )

    @property
    def failure_rate(self) -> float:
        return self.failed / self.attempted if self.attempted else 0.0


class BatchGuard:
    """Failure accounting for one batch operation.

    Example:
        guard = BatchGuard("dispatch", threshold=0.5)
        for item in items:
            try:
                results.append(process(item))
                guard.record_success()
            except Exception as e:
                guard.record_failure(item.id, e)
        guard.check()
    """

    def __init__(self, operation: str, threshold: float = DEFAULT_FAILURE_THRESHOLD) -> None:
        self.operation = operation
        self.threshold = validate_threshold(threshold)
        self.attempted = 0
        self.failed = 0
        self.failures: list[tuple[str, str]] = []

    def record_success(self) -> None:
        self.attempted += 1

    def record_failure(self, item_id: str, error: BaseException | str) -> None:
        """Count and log one failed item."""
        self.attempted += 1
        self.failed += 1
        message = str(error)
        self.failures.append((item_id, message))
        logger.warning("%s: item %s failed: %s", self.operation, item_id, message)

    @property
    def failure_rate(self) -> float:
        return self.failed / self.attempted if self.attempted else 0.0

    def exceeded(self) -> bool:
        return self.attempted > 0 and self.failure_rate > self.threshold

    def check(self) -> None:
        """Raise BatchThresholdExceeded when the failure rate is over threshold."""
        if self.exceeded():
            error = BatchThresholdExceeded(
                self.operation, self.attempted, self.failed, self.threshold
            )
            logger.error("%s", error)
            raise error
        if self.failed:
            logger.info(
                "%s: %d/%d items failed, below threshold %.0f%%",
                self.operation,
                self.failed,
                self.attempted,
                self.threshold * 100,
            )
