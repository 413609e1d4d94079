"""Error handling framework for VoiceOps Sync.

This package provides:
- Error code registry with E-XXXX format codes
- Error formatting and grouping utilities
- Typed domain exceptions for HTTP status mapping

Error categories:
- E-1xxx: Credential errors
- E-2xxx: Provider auth/request errors
- E-3xxx: Transient provider errors
- E-4xxx: Transcript errors
- E-5xxx: System errors
"""

from src.errors.domain import (
    ConflictError,
    DomainError,
    NoActiveIntegrationError,
    NotFoundError,
    SyncInProgressError,
    ValidationError,
)
from src.errors.formatter import (
    VoiceOpsError,
    format_error,
    format_error_summary,
    group_errors,
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
    # Formatter
    "VoiceOpsError",
    "format_error",
    "group_errors",
    "format_error_summary",
    # Domain
    "DomainError",
    "NotFoundError",
    "NoActiveIntegrationError",
    "ConflictError",
    "ValidationError",
    "SyncInProgressError",
]
