"""FastAPI dependencies shared by route modules."""

from fastapi import Request

from src.services.engine_provider import EngineContext


def get_engine(request: Request) -> EngineContext:
    """Return the EngineContext created during application startup."""
    return request.app.state.engine
