"""API route that triggers a conversation sync for one organization.

Returns the run summary with HTTP 200 once pre-flight passes, including when
the listing fails (the summary then carries ``error`` and a "Sync failed"
message). Pre-flight failures map to 4xx.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from src.api.dependencies import get_engine
from src.errors import NoActiveIntegrationError, SyncInProgressError
from src.services.credential_encryption import CredentialDecryptionError
from src.services.engine_provider import EngineContext
from src.services.sync_engine import SyncFailedError
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


class SyncRequest(BaseModel):
    """Request body for triggering a sync."""

    organization_id: str = Field(..., min_length=1, description="Organization to sync")
    agent_id: str | None = Field(None, description="Restrict to one provider agent")


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": sanitize_error_message(message)}},
    )


@router.post("/sync")
async def run_sync(body: SyncRequest, engine: EngineContext = Depends(get_engine)):
    """Run one sync and return its summary."""
    try:
        run = await engine.orchestrator.run(body.organization_id, agent_id=body.agent_id)
    except SyncInProgressError as e:
        return _error(409, "E-5002", str(e))
    except NoActiveIntegrationError as e:
        return _error(400, "E-5001", str(e))
    except CredentialDecryptionError:
        return _error(
            422, "E-1001",
            "Stored API key could not be decrypted. Please re-enter your API key.",
        )
    except SyncFailedError as e:
        return e.run.to_summary()
    except Exception as e:
        logger.error(
            "Unexpected sync failure: %s: %s",
            type(e).__name__, sanitize_error_message(str(e)), exc_info=True,
        )
        return _error(500, "INTERNAL_ERROR", f"Failed to sync calls: {e}")
    return run.to_summary()
