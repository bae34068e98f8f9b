"""Error handling framework for the EPCIS relay.

This package provides:
- Error code registry with E-XXXX format codes
- Partner network failure translation
- Error formatting and grouping utilities
- Typed domain exceptions

Error categories:
- E-1xxx: Source data errors
- E-3xxx: Partner network errors
- E-4xxx: System/internal errors
- E-5xxx: Authentication errors
"""

from src.errors.domain import (
    DomainError,
    InvalidStateTransition,
    MissingTransactionId,
    NotFoundError,
)
from src.errors.formatter import (
    RelayError,
    format_error,
    format_error_summary,
    group_errors,
)
from src.errors.partner_translation import (
    error_code_for_status,
    is_client_error,
    is_permanent_failure,
    is_server_error,
    translate_partner_error,
)
from src.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Partner translation
    "translate_partner_error",
    "error_code_for_status",
    "is_client_error",
    "is_server_error",
    "is_permanent_failure",
    # Formatter
    "RelayError",
    "format_error",
    "group_errors",
    "format_error_summary",
    # Domain
    "DomainError",
    "NotFoundError",
    "InvalidStateTransition",
    "MissingTransactionId",
]
