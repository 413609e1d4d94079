"""API routes for local agents and synchronized conversation records.

Agents map provider agent IDs to local records; the sync engine only keeps
conversations for registered agents unless configured otherwise.
"""

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from starlette.responses import JSONResponse

from src.api.dependencies import get_engine
from src.services.engine_provider import EngineContext

logger = logging.getLogger(__name__)

router = APIRouter(tags=["conversations"])


class AddAgentRequest(BaseModel):
    """Request body for registering a provider agent."""

    organization_id: str = Field(..., min_length=1)
    external_agent_id: str = Field(..., min_length=1, description="Provider agent ID")
    name: str = Field("", description="Display name")


@router.get("/agents/{organization_id}")
async def list_agents(organization_id: str, engine: EngineContext = Depends(get_engine)):
    """Agents registered for an organization."""
    agents = await engine.store.get_agents(organization_id)
    return [a.to_dict() for a in agents]


@router.post("/agents")
async def add_agent(body: AddAgentRequest, engine: EngineContext = Depends(get_engine)):
    """Register a provider agent for an organization."""
    try:
        agent = await engine.store.add_agent(
            body.organization_id, body.external_agent_id, body.name,
        )
    except IntegrityError:
        return JSONResponse(
            status_code=409,
            content={"error": {
                "code": "DUPLICATE",
                "message": f"Agent '{body.external_agent_id}' is already registered",
            }},
        )
    return agent.to_dict()


@router.get("/conversations/{organization_id}")
async def list_conversations(
    organization_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    engine: EngineContext = Depends(get_engine),
):
    """Synchronized conversations, most recent first."""
    records = await engine.store.list_conversations(organization_id, limit=limit, offset=offset)
    return [r.to_dict() for r in records]
