"""Relay error type and formatting utilities.

This module provides:
- RelayError exception class for application errors
- Error formatting for operator display
- Error grouping to combine duplicates across shipping operations
"""

from dataclasses import dataclass, field

from src.errors.registry import get_error


@dataclass
class RelayError(Exception):
    """Application error with code, message, and context.

    Attributes:
        code: Error code in E-XXXX format.
        message: Human-readable error message.
        remediation: Action an operator should take to resolve.
        operations: Affected shipping operation ids.
        is_retryable: Whether the dispatch may be retried automatically.
        details: Additional context dictionary.
    """

    code: str
    message: str
    remediation: str
    operations: list[str] = field(default_factory=list)
    is_retryable: bool = False
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        """Return string representation of the error."""
        return f"{self.code}: {self.message}"

    @classmethod
    def from_code(cls, code: str, **kwargs: object) -> "RelayError":
        """Create error from registry code with context substitution.

        Args:
            code: Error code in E-XXXX format.
            **kwargs: Context values for message template substitution.
                Special keys 'operations' and 'details' populate the
                corresponding fields instead.

        Returns:
            RelayError instance with formatted message.
        """
        operations = kwargs.get("operations", [])
        if not isinstance(operations, list):
            operations = []
        details = kwargs.get("details", {})
        if not isinstance(details, dict):
            details = {}

        error_def = get_error(code)
        if not error_def:
            return cls(
                code=code,
                message=f"Unknown error: {code}",
                remediation="Contact support.",
                operations=operations,
                details=details,
            )

        template_kwargs = {
            k: v for k, v in kwargs.items() if k not in ("operations", "details")
        }
        try:
            message = error_def.message_template.format(**template_kwargs)
        except KeyError:
            # Keep template if some placeholders are missing
            message = error_def.message_template

        return cls(
            code=error_def.code,
            message=message,
            remediation=error_def.remediation,
            operations=operations,
            is_retryable=error_def.is_retryable,
            details=details,
        )


def format_error(error: RelayError, include_remediation: bool = True) -> str:
    """Format error for display to an operator.

    Returns:
        Multi-line formatted string.
    """
    lines = [f"{error.code}: {error.message}"]

    if error.operations:
        ops = ", ".join(error.operations[:10])
        if len(error.operations) > 10:
            ops += f" (and {len(error.operations) - 10} more)"
        lines.append(f"  Shipping operations: {ops}")

    if include_remediation:
        lines.append(f"  Action: {error.remediation}")

    return "\n".join(lines)


def group_errors(errors: list[RelayError]) -> list[RelayError]:
    """Group errors by code and message, combining operation ids.

    Example:
        3 identical "Document Rejected" errors for ops A, B, C
        -> 1 error with operations=[A, B, C]
    """
    groups: dict[str, RelayError] = {}

    for error in errors:
        key = f"{error.code}|{error.message}"
        if key in groups:
            groups[key].operations.extend(error.operations)
        else:
            groups[key] = RelayError(
                code=error.code,
                message=error.message,
                remediation=error.remediation,
                operations=list(error.operations),  # Copy to avoid mutation
                is_retryable=error.is_retryable,
                details=error.details.copy(),
            )

    result = list(groups.values())
    for error in result:
        error.operations = sorted(set(error.operations))

    return result


def format_error_summary(errors: list[RelayError]) -> str:
    """Format a list of errors for display, grouping duplicates."""
    if not errors:
        return "No errors."

    grouped = group_errors(errors)

    if len(grouped) == 1:
        return format_error(grouped[0])

    lines = [f"{len(grouped)} error type(s) found:\n"]
    for i, error in enumerate(grouped, 1):
        lines.append(f"{i}. {format_error(error)}")
        lines.append("")  # Blank line between errors

    return "\n".join(lines)
