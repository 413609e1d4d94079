"""FastAPI application for the VoiceOps Sync API.

Provides the application factory with routers, middleware, and exception
handlers configured. The engine context (store, vault, provider client,
orchestrator) is created in the lifespan unless one is supplied.
"""

import logging
import os
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.middleware.auth import maybe_require_api_key, validate_api_key_strength
from src.api.routes import conversations, integrations, sync
from src.errors import VoiceOpsError
from src.services.engine_provider import EngineContext

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("src").setLevel(logging.INFO)

logger = logging.getLogger(__name__)


def _parse_allowed_origins() -> list[str]:
    """Parse comma-separated CORS allowlist from ALLOWED_ORIGINS env var."""
    raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
    if not raw:
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the engine context on startup and release it on shutdown."""
    app.state.startup_time = _time.time()
    validate_api_key_strength()

    owns_engine = app.state.engine is None
    if owns_engine:
        from src.cli.config import load_config
        from src.services.engine_provider import create_engine_context

        config = load_config(config_path=os.environ.get("VOICEOPS_CONFIG_PATH"))
        app.state.engine = await create_engine_context(config)

    yield

    if owns_engine and app.state.engine is not None:
        await app.state.engine.aclose()
        app.state.engine = None


async def voiceops_error_handler(request: Request, exc: VoiceOpsError) -> JSONResponse:
    """Render VoiceOpsError with code, message, and remediation."""
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message,
                "remediation": exc.remediation,
            }
        },
    )


def create_app(engine: EngineContext | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        engine: Pre-built engine context. When None, one is created from
            configuration during startup.
    """
    application = FastAPI(
        title="VoiceOps Sync API",
        description="Conversation synchronization for hosted voice-AI agents",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.engine = engine
    application.state.startup_time = _time.time()

    # Optional API auth for /api/* when VOICEOPS_API_KEY is configured.
    application.middleware("http")(maybe_require_api_key)

    allowed_origins = _parse_allowed_origins()
    if allowed_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "X-API-Key"],
        )

    application.add_exception_handler(VoiceOpsError, voiceops_error_handler)

    application.include_router(sync.router, prefix="/api/v1")
    application.include_router(integrations.router, prefix="/api/v1")
    application.include_router(conversations.router, prefix="/api/v1")

    @application.get("/health")
    def health_check() -> dict:
        """Liveness check with version and uptime."""
        try:
            version = _pkg_version("voiceops-sync")
        except PackageNotFoundError:
            version = "unknown"
        return {
            "status": "ok",
            "version": version,
            "uptime_seconds": int(_time.time() - application.state.startup_time),
        }

    return application


app = create_app()
