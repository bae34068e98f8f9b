"""Shared service-layer error types.

Provides error types raised by the partner submission and status channels.
Centralised here to avoid circular imports between service modules.
"""

from dataclasses import dataclass

from src.errors.partner_translation import (
    is_client_error,
    is_server_error,
    translate_partner_error,
)


@dataclass
class PartnerServiceError(Exception):
    """Partner network answered with an error status.

    Attributes:
        status_code: HTTP status returned by the partner
        message: Response body or summary
        details: Raw error details
    """

    status_code: int
    message: str
    details: dict | None = None

    def __str__(self) -> str:
        """Return formatted error message."""
        return f"[HTTP {self.status_code}] {self.message}"

    @property
    def is_client_error(self) -> bool:
        return is_client_error(self.status_code)

    @property
    def is_server_error(self) -> bool:
        return is_server_error(self.status_code)

    @property
    def code(self) -> str:
        """Relay error code (E-XXXX) for this failure."""
        return translate_partner_error(self.status_code, self.message)[0]


class PartnerConnectionError(Exception):
    """Could not reach the partner network (DNS, TLS, connection reset).

    Attributes:
        endpoint: The URL that was attempted.
        reason: Description of why the connection failed.
    """

    def __init__(self, endpoint: str, reason: str) -> None:
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"Failed to connect to partner endpoint '{endpoint}': {reason}")


class StatusNotFoundError(Exception):
    """The partner dashboard has no log entry for a transaction id."""

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"No partner log entry found for transaction {transaction_id}")
