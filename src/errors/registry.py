"""Error code registry with E-XXXX format codes.

This module defines the error code system for VoiceOps Sync, organizing
errors into categories that mirror the sync error taxonomy:
- E-1xxx: Credential errors (stored key cannot be decrypted)
- E-2xxx: Provider auth and request errors (4xx, non-JSON bodies)
- E-3xxx: Transient provider errors (5xx, network, timeouts)
- E-4xxx: Transcript errors (never fatal)
- E-5xxx: System errors (integration state, concurrency, database)

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    CREDENTIAL = "credential"  # E-1xxx
    PROVIDER = "provider"  # E-2xxx
    TRANSIENT = "transient"  # E-3xxx
    TRANSCRIPT = "transcript"  # E-4xxx
    SYSTEM = "system"  # E-5xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
    """

    code: str  # E-XXXX format
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Credential errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.CREDENTIAL,
        title="Credential Decryption Failed",
        message_template="Stored API key for {provider} could not be decrypted: {details}",
        remediation="Re-enter the provider API key in the integration settings.",
    ),
    # Provider auth/request errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.PROVIDER,
        title="Provider Rejected Credentials",
        message_template="{provider} rejected the API key (HTTP {status_code}): {details}",
        remediation="Check that the API key is valid and has Conversational AI permissions, then re-test the integration.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.PROVIDER,
        title="Unexpected Response Format",
        message_template="{provider} returned a non-JSON response ({content_type}).",
        remediation="Verify the provider base URL and that no proxy is intercepting requests.",
    ),
    "E-2003": ErrorCode(
        code="E-2003",
        category=ErrorCategory.PROVIDER,
        title="Provider Request Rejected",
        message_template="{provider} rejected the request (HTTP {status_code}): {details}",
        remediation="Check the request parameters. This request will not succeed on retry.",
    ),
    "E-2004": ErrorCode(
        code="E-2004",
        category=ErrorCategory.PROVIDER,
        title="Pagination Stalled",
        message_template="Listing cursor did not advance after page {page}.",
        remediation="Retry the sync later. Contact support if the issue persists.",
    ),
    # Transient errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.TRANSIENT,
        title="Provider Unavailable",
        message_template="{provider} returned HTTP {status_code} after {attempts} attempt(s).",
        remediation="Wait a few minutes and run the sync again.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.TRANSIENT,
        title="Network Error",
        message_template="Could not reach {provider} after {attempts} attempt(s): {details}",
        remediation="Check network connectivity and run the sync again.",
        is_retryable=True,
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.TRANSIENT,
        title="Invalid JSON Response",
        message_template="{provider} returned a body that is not valid JSON after {attempts} attempt(s).",
        remediation="Run the sync again. Contact support if the issue persists.",
        is_retryable=True,
    ),
    # Transcript errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.TRANSCRIPT,
        title="Malformed Transcript",
        message_template="Transcript for conversation {external_id} could not be parsed; raw text preserved.",
        remediation="No action required. The raw transcript is stored as a system message.",
    ),
    # System errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.SYSTEM,
        title="No Active Integration",
        message_template="Organization {organization_id} has no active {provider} integration (status: {status}).",
        remediation="Save an API key and run a connectivity test before syncing.",
    ),
    "E-5002": ErrorCode(
        code="E-5002",
        category=ErrorCategory.SYSTEM,
        title="Sync Already Running",
        message_template="A sync is already running for organization {organization_id}.",
        remediation="Wait for the current sync to finish and try again.",
        is_retryable=True,
    ),
    "E-5003": ErrorCode(
        code="E-5003",
        category=ErrorCategory.SYSTEM,
        title="Database Error",
        message_template="Database operation failed: {details}",
        remediation="This is a system error. Retry the operation. Contact support if issue persists.",
        is_retryable=True,
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
    """Get all errors in a category.

    Args:
        category: The error category to filter by.

    Returns:
        List of ErrorCode objects in the specified category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
