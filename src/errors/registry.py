"""Error code registry with E-XXXX format codes.

This module defines the error code system for the EPCIS relay, organizing
errors into categories:
- E-1xxx: Source data errors (identifiers, missing references)
- E-3xxx: Partner network errors
- E-4xxx: System/internal errors
- E-5xxx: Authentication errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    DATA = "data"  # E-1xxx: Source data errors
    PARTNER_API = "partner_api"  # E-3xxx: Partner network errors
    SYSTEM = "system"  # E-4xxx: System/internal errors
    AUTH = "auth"  # E-5xxx: Authentication errors


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action an operator should take to resolve.
        is_retryable: Whether the dispatch may be retried automatically.
    """

    code: str  # E-XXXX format
    category: ErrorCategory
    title: str  # Short title for display
    message_template: str  # Message with {placeholders}
    remediation: str  # Action operator should take
    is_retryable: bool = False  # Retried by the next dispatch cycle


# Error registry - all defined error codes
ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Data errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.DATA,
        title="Malformed Identifier",
        message_template="Could not parse GS1 identifier '{value}'.",
        remediation="Correct the identifier in the source EPCIS events and re-approve the shipment.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.DATA,
        title="Missing Capture Reference",
        message_template="Shipping operation {operation_id} has no capture id.",
        remediation="Link the shipping operation to its EPCIS capture before approving it.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.DATA,
        title="Missing Target Location",
        message_template="No receiving location GLN found for shipping operation {operation_id}.",
        remediation="Add a destination SGLN to the shipping event and re-approve the shipment.",
    ),
    # Partner network errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.PARTNER_API,
        title="Partner Service Unavailable",
        message_template="Partner network is temporarily unavailable: {partner_message}",
        remediation="The dispatch will be retried automatically on the next cycle.",
        is_retryable=True,
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.PARTNER_API,
        title="Document Rejected",
        message_template="Partner network rejected the document: {partner_message}",
        remediation="Inspect the EPCIS document for schema or master-data errors, fix, and re-approve.",
    ),
    "E-3004": ErrorCode(
        code="E-3004",
        category=ErrorCategory.PARTNER_API,
        title="Partner Transport Error",
        message_template="Could not reach the partner network: {partner_message}",
        remediation="Check network connectivity and certificates. The dispatch will be retried.",
        is_retryable=True,
    ),
    "E-3005": ErrorCode(
        code="E-3005",
        category=ErrorCategory.PARTNER_API,
        title="Delivery Failed",
        message_template="Partner reported delivery failure: {partner_message}",
        remediation="Review the partner dashboard entry and resend manually if appropriate.",
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Record Store Error",
        message_template="Dispatch ledger operation failed: {reason}",
        remediation="This is a system error. Retry the operation. Contact support if issue persists.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Payload Read Error",
        message_template="Could not load the document for shipping operation {operation_id}: {reason}",
        remediation="Verify the EPCIS document exists in the document store.",
    ),
    "E-4003": ErrorCode(
        code="E-4003",
        category=ErrorCategory.SYSTEM,
        title="Batch Failure Threshold Exceeded",
        message_template="{operation} aborted: {failed}/{attempted} items failed.",
        remediation="Investigate the individual item failures in the log before the next run.",
    ),
    "E-4004": ErrorCode(
        code="E-4004",
        category=ErrorCategory.SYSTEM,
        title="Status Lookup Failed",
        message_template="Could not query partner status for transaction {transaction_id}: {reason}",
        remediation="Status will be queried again on the next reconciliation cycle.",
        is_retryable=True,
    ),
    # Auth errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.AUTH,
        title="Partner Authentication Failed",
        message_template="Partner network refused the credentials: {partner_message}",
        remediation="Check the client certificate, key, and dashboard credentials in configuration.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category."""
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
