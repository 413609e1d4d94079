"""Error formatting and grouping utilities.

This module provides:
- VoiceOpsError exception class for application errors
- Error formatting for user display
- Error grouping to combine duplicates across conversations
"""

from dataclasses import dataclass, field

from src.errors.registry import get_error


@dataclass
class VoiceOpsError(Exception):
    """Application error with code, message, and context.

    Attributes:
        code: Error code in E-XXXX format.
        message: Human-readable error message.
        remediation: Action user should take to resolve.
        external_ids: Provider conversation IDs affected by this error.
        status_code: Provider HTTP status, if applicable.
        is_retryable: Whether the operation can be retried without user action.
        details: Additional context dictionary.
    """

    code: str
    message: str
    remediation: str
    external_ids: list[str] = field(default_factory=list)
    status_code: int | None = None
    is_retryable: bool = False
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        """Return string representation of the error."""
        return f"{self.code}: {self.message}"

    @classmethod
    def from_code(cls, code: str, **kwargs: object) -> "VoiceOpsError":
        """Create error from registry code with context substitution.

        Args:
            code: Error code in E-XXXX format.
            **kwargs: Context values for message template substitution.
                Special keys 'external_ids', 'status_code' and 'details_dict' are used for
                VoiceOpsError fields rather than message substitution.

        Returns:
            VoiceOpsError instance with formatted message.
        """
        external_ids = kwargs.get("external_ids", [])
        if not isinstance(external_ids, list):
            external_ids = []
        details = kwargs.get("details_dict", {})
        if not isinstance(details, dict):
            details = {}
        status_code = kwargs.get("status_code")
        if not isinstance(status_code, int):
            status_code = None

        error_def = get_error(code)
        if not error_def:
            return cls(
                code=code,
                message=f"Unknown error: {code}",
                remediation="Contact support.",
                external_ids=external_ids,
                status_code=status_code,
                details=details,
            )

        message = error_def.message_template
        try:
            template_kwargs = {
                k: v for k, v in kwargs.items()
                if k not in ("external_ids", "details_dict")
            }
            message = message.format(**template_kwargs)
        except KeyError:
            # Keep template if some placeholders are missing
            pass

        return cls(
            code=error_def.code,
            message=message,
            remediation=error_def.remediation,
            external_ids=external_ids,
            status_code=status_code,
            is_retryable=error_def.is_retryable,
            details=details,
        )


def format_error(error: VoiceOpsError, include_remediation: bool = True) -> str:
    """Format error for display to user.

    Args:
        error: The VoiceOpsError to format.
        include_remediation: Whether to include remediation steps.

    Returns:
        Multi-line formatted string suitable for user display.
    """
    lines = [f"{error.code}: {error.message}"]

    if error.external_ids:
        if len(error.external_ids) == 1:
            lines.append(f"  Conversation: {error.external_ids[0]}")
        else:
            ids_str = ", ".join(error.external_ids[:10])
            if len(error.external_ids) > 10:
                ids_str += f" (and {len(error.external_ids) - 10} more)"
            lines.append(f"  Conversations: {ids_str}")

    if error.status_code is not None:
        lines.append(f"  HTTP status: {error.status_code}")

    if include_remediation:
        lines.append(f"  Action: {error.remediation}")

    return "\n".join(lines)


def group_errors(errors: list[VoiceOpsError]) -> list[VoiceOpsError]:
    """Group errors by code and status, combining conversation IDs.

    Example:
        5 "Provider Unavailable" errors with HTTP 503 on different conversations
        -> 1 error with external_ids=[...5 ids...]

    Args:
        errors: List of VoiceOpsError objects to group.

    Returns:
        List of grouped VoiceOpsError objects with combined IDs.
    """
    groups: dict[str, VoiceOpsError] = {}

    for error in errors:
        key = f"{error.code}|{error.status_code or ''}"

        if key in groups:
            groups[key].external_ids.extend(error.external_ids)
        else:
            groups[key] = VoiceOpsError(
                code=error.code,
                message=error.message,
                remediation=error.remediation,
                external_ids=list(error.external_ids),
                status_code=error.status_code,
                is_retryable=error.is_retryable,
                details=error.details.copy(),
            )

    result = list(groups.values())
    for error in result:
        error.external_ids = sorted(set(error.external_ids))

    return result


def format_error_summary(errors: list[VoiceOpsError]) -> str:
    """Format a list of errors for display, grouping duplicates.

    Args:
        errors: List of VoiceOpsError objects.

    Returns:
        User-friendly summary suitable for CLI display.
    """
    if not errors:
        return "No errors."

    grouped = group_errors(errors)

    if len(grouped) == 1:
        return format_error(grouped[0])

    lines = [f"{len(grouped)} error type(s) found:\n"]
    for i, error in enumerate(grouped, 1):
        lines.append(f"{i}. {format_error(error)}")
        lines.append("")

    return "\n".join(lines)
