"""Partner network failure translation to relay error codes.

Maps HTTP-like status codes and transport failures reported by the partner
submission and status channels onto the E-XXXX registry, and decides
whether a failure is permanent (client-class) or transient.
"""

from src.errors.registry import get_error

# Status codes with a dedicated relay error code
PARTNER_STATUS_MAP: dict[int, str] = {
    401: "E-5001",
    403: "E-5001",
}

# Code used when no HTTP status is available (DNS, TLS, reset, timeout)
TRANSPORT_ERROR_CODE = "E-3004"


def is_client_error(status_code: int | None) -> bool:
    """True for 4xx-class statuses."""
    return status_code is not None and 400 <= status_code < 500


def is_server_error(status_code: int | None) -> bool:
    """True for 5xx-class statuses."""
    return status_code is not None and status_code >= 500


def is_permanent_failure(status_code: int | None) -> bool:
    """Whether a submission failure should never be retried.

    Client-class responses are permanent regardless of remaining attempts.
    Server-class responses and transport failures (no status) are transient.
    """
    return is_client_error(status_code)


def error_code_for_status(status_code: int | None) -> str:
    """Pick the registry code describing a partner failure."""
    if status_code is None:
        return TRANSPORT_ERROR_CODE
    if status_code in PARTNER_STATUS_MAP:
        return PARTNER_STATUS_MAP[status_code]
    if is_client_error(status_code):
        return "E-3003"
    if is_server_error(status_code):
        return "E-3001"
    return TRANSPORT_ERROR_CODE


def translate_partner_error(
    status_code: int | None,
    partner_message: str | None,
) -> tuple[str, str, bool]:
    """Translate a partner failure to a relay error.

    Args:
        status_code: HTTP status returned by the partner, None for
            transport failures.
        partner_message: Response body or transport error text.

    Returns:
        Tuple of (error_code, formatted_message, permanent).
    """
    code = error_code_for_status(status_code)
    permanent = is_permanent_failure(status_code)
    detail = partner_message or (
        f"HTTP {status_code}" if status_code is not None else "Unknown error"
    )

    error = get_error(code)
    if error is None:
        return (code, f"Partner error: {detail}", permanent)

    try:
        message = error.message_template.format(partner_message=detail)
    except KeyError:
        message = error.message_template
    return (code, message, permanent)
