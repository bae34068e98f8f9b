"""Typed domain exceptions for the dispatch engine.

Usage:
    # In the record store
    raise NotFoundError("DispatchRecord", record_id)

    # In a transition site
    raise InvalidStateTransition(current, attempted)
"""

from src.db.models import DispatchStatus


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource was not found."""

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class InvalidStateTransition(DomainError):
    """Raised when a dispatch record transition is not allowed.

    Attributes:
        current_state: The record's current status.
        attempted_state: The status that was attempted.
        allowed_transitions: Valid targets from the current status.
    """

    def __init__(
        self,
        current_state: DispatchStatus,
        attempted_state: DispatchStatus,
        allowed_transitions: list[DispatchStatus],
    ) -> None:
        self.current_state = current_state
        self.attempted_state = attempted_state
        self.allowed_transitions = allowed_transitions
        allowed_str = ", ".join(s.value for s in allowed_transitions) or "none (terminal)"
        super().__init__(
            f"Cannot transition from '{current_state.value}' to '{attempted_state.value}'. "
            f"Allowed transitions: {allowed_str}"
        )


class MissingTransactionId(DomainError):
    """An acknowledged record must carry the partner transaction id."""

    def __init__(self, record_id: str) -> None:
        super().__init__(
            f"DispatchRecord '{record_id}' cannot be acknowledged without a transaction id"
        )
        self.record_id = record_id
