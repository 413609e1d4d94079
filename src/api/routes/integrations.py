"""API routes for provider integration management.

Save an API key, approve a pending integration, run a connectivity test,
and read status. API keys are write-only: no response ever contains one,
and error messages are sanitized before they are returned.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from src.api.dependencies import get_engine
from src.errors import ConflictError, NotFoundError, ValidationError
from src.services.engine_provider import EngineContext
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["integrations"])


class SaveApiKeyRequest(BaseModel):
    """Request body for storing a provider API key."""

    organization_id: str = Field(..., min_length=1)
    api_key: str = Field(..., min_length=1, description="Provider API key (write-only)")
    provider: str = Field("elevenlabs", min_length=1)
    requires_approval: bool = Field(False, description="Hold in PENDING_APPROVAL until approved")


def _error(status_code: int, code: str, e: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": sanitize_error_message(str(e))}},
    )


def _internal_error(e: Exception, operation: str) -> JSONResponse:
    logger.error(
        "Unexpected error during %s: %s: %s",
        operation, type(e).__name__, sanitize_error_message(str(e)),
        exc_info=True,
    )
    return _error(500, "INTERNAL_ERROR", e)


@router.post("")
async def save_api_key(body: SaveApiKeyRequest, engine: EngineContext = Depends(get_engine)):
    """Encrypt and store an API key. Status resets to INACTIVE or PENDING_APPROVAL."""
    try:
        return await engine.integrations.save_api_key(
            body.organization_id,
            body.api_key,
            provider=body.provider,
            requires_approval=body.requires_approval,
        )
    except ValidationError as e:
        return _error(400, "VALIDATION_ERROR", e)
    except Exception as e:
        return _internal_error(e, "save api key")


@router.get("/{organization_id}")
async def get_integration_status(
    organization_id: str,
    provider: str = "elevenlabs",
    engine: EngineContext = Depends(get_engine),
):
    """Integration status without key material."""
    try:
        return await engine.integrations.get_status(organization_id, provider)
    except ValidationError as e:
        return _error(400, "VALIDATION_ERROR", e)
    except Exception as e:
        return _internal_error(e, "get integration status")


@router.post("/{organization_id}/approve")
async def approve_integration(
    organization_id: str,
    provider: str = "elevenlabs",
    engine: EngineContext = Depends(get_engine),
):
    """Move a PENDING_APPROVAL integration to INACTIVE."""
    try:
        return await engine.integrations.approve(organization_id, provider)
    except NotFoundError as e:
        return _error(404, "NOT_FOUND", e)
    except ConflictError as e:
        return _error(409, "INVALID_STATE", e)
    except ValidationError as e:
        return _error(400, "VALIDATION_ERROR", e)
    except Exception as e:
        return _internal_error(e, "approve integration")


@router.post("/{organization_id}/test")
async def test_integration(
    organization_id: str,
    provider: str = "elevenlabs",
    engine: EngineContext = Depends(get_engine),
):
    """Verify the stored key against the provider. ACTIVE on success, ERROR on failure."""
    try:
        return await engine.integrations.test_connection(organization_id, provider)
    except NotFoundError as e:
        return _error(404, "NOT_FOUND", e)
    except ConflictError as e:
        return _error(409, "INVALID_STATE", e)
    except ValidationError as e:
        return _error(400, "VALIDATION_ERROR", e)
    except Exception as e:
        return _internal_error(e, "test integration")
