"""Typed domain exceptions for API error mapping.

These exceptions provide stronger API contract guarantees than
string-based error message matching. Routes can catch specific
exception types to return appropriate HTTP status codes.

Usage:
    # In service layer
    raise NotFoundError("Integration", organization_id)

    # In route handler
    try:
        status = service.get_status(organization_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Resource conflict (e.g., concurrent run). Maps to HTTP 409."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NoActiveIntegrationError(ValidationError):
    """Organization has no integration in a syncable state. Maps to HTTP 400."""

    def __init__(self, organization_id: str, provider: str, status: str | None = None) -> None:
        state = status or "missing"
        super().__init__(
            f"Organization '{organization_id}' has no active {provider} integration (status: {state})"
        )
        self.organization_id = organization_id
        self.provider = provider
        self.status = state


class SyncInProgressError(ConflictError):
    """A sync run is already in progress for the organization. Maps to HTTP 409."""

    def __init__(self, organization_id: str) -> None:
        super().__init__(f"A sync is already running for organization '{organization_id}'")
        self.organization_id = organization_id
