"""Keep partner credentials out of the log and the dispatch ledger.

Two entry points: redact_for_logging masks secret-looking keys in the
effective config before it is logged at startup, and
sanitize_error_message scrubs free text before it is stored in
DispatchRecord.last_error_message.
"""

import re
from typing import Any

REDACTED = "***REDACTED***"
MAX_ERROR_LENGTH = 2000

# Config keys containing any of these (case-insensitive) are masked
SECRET_KEY_PARTS = ("password", "secret", "token", "private_key", "key_file", "credential")

_SECRET_WORD = r"\w*(?:password|secret|token|api_key|authorization|credential)\w*"

# Applied in order; Bearer must run before the generic key: value rule
_SECRET_TEXT_RULES = (
    (
        re.compile(
            r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----", re.S
        ),
        REDACTED,
    ),
    (re.compile(r"\bBearer\s+\S+", re.I), f"Bearer {REDACTED}"),
    (re.compile(rf'"({_SECRET_WORD})"\s*:\s*"[^"]*"', re.I), rf'"\1": "{REDACTED}"'),
    (re.compile(rf'\b({_SECRET_WORD})(\s*[=:]\s*)(?:"[^"]*"|\S+)', re.I), rf"\1\2{REDACTED}"),
)


def _is_secret_key(key: str, parts: tuple[str, ...]) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in parts)


def _redact_value(value: Any, parts: tuple[str, ...]) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if _is_secret_key(str(k), parts) else _redact_value(v, parts)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_redact_value(item, parts) for item in value]
    return value


def redact_for_logging(config: dict, secret_key_parts: tuple[str, ...] = SECRET_KEY_PARTS) -> dict:
    """Return a copy of ``config`` with secret values masked.

    Example:
        >>> redact_for_logging({"partner": {"username": "u", "password": "p"}})
        {'partner': {'username': 'u', 'password': '***REDACTED***'}}
    """
    return _redact_value(config, secret_key_parts)


def sanitize_error_message(msg: str | None, max_length: int = MAX_ERROR_LENGTH) -> str | None:
    """Scrub secrets from ``msg`` and cap it at ``max_length`` characters."""
    if msg is None:
        return None
    for pattern, replacement in _SECRET_TEXT_RULES:
        msg = pattern.sub(replacement, msg)
    if len(msg) > max_length:
        msg = msg[:max_length - 3] + "..."
    return msg
