"""Persistence contract for the sync engine and its SQLAlchemy implementation.

The engine reads integrations and agents, checks for existing conversation
records, and appends new ones. Each store call opens its own short-lived
AsyncSession, so concurrent existence checks never share a session.
"""

import logging
from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import (
    Agent,
    ConversationRecord,
    Integration,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


class DuplicateConversationError(Exception):
    """A record with the same (organization, provider, external ID) already exists."""

    def __init__(self, external_id: str) -> None:
        super().__init__(f"Conversation '{external_id}' already recorded")
        self.external_id = external_id


@runtime_checkable
class ConversationStore(Protocol):
    """Storage operations used by the sync engine and integration service."""

    async def get_integration(self, organization_id: str, provider: str) -> Integration | None:
        """Integration row for the organization, or None."""
        ...

    async def upsert_integration(
        self, organization_id: str, provider: str, encrypted_api_key: str, status: str,
    ) -> Integration:
        """Create or replace the stored key, resetting status."""
        ...

    async def update_integration_status(
        self,
        organization_id: str,
        provider: str,
        status: str,
        error_code: str | None = None,
        tested_at: str | None = None,
    ) -> None:
        """Set status, last error code, and optionally last_tested_at."""
        ...

    async def get_agents(self, organization_id: str) -> list[Agent]:
        """Agents registered for the organization."""
        ...

    async def add_agent(self, organization_id: str, external_agent_id: str, name: str) -> Agent:
        """Register a provider agent locally."""
        ...

    async def find_conversation_by_external_id(
        self, organization_id: str, provider: str, external_id: str,
    ) -> ConversationRecord | None:
        """Existing record for the dedup key, or None."""
        ...

    async def insert_conversation_record(self, record: ConversationRecord) -> ConversationRecord:
        """Append a record. Raises DuplicateConversationError on key collision."""
        ...

    async def list_conversations(
        self, organization_id: str, limit: int = 50, offset: int = 0,
    ) -> list[ConversationRecord]:
        """Most recent records first."""
        ...


class SqlConversationStore:
    """ConversationStore backed by SQLAlchemy async sessions.

    Args:
        session_factory: async_sessionmaker bound to the state database.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_integration(self, organization_id: str, provider: str) -> Integration | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Integration).where(
                    Integration.organization_id == organization_id,
                    Integration.provider == provider,
                )
            )
            return result.scalar_one_or_none()

    async def upsert_integration(
        self, organization_id: str, provider: str, encrypted_api_key: str, status: str,
    ) -> Integration:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Integration).where(
                    Integration.organization_id == organization_id,
                    Integration.provider == provider,
                )
            )
            row = result.scalar_one_or_none()
            now = utc_now_iso()
            if row is None:
                row = Integration(
                    organization_id=organization_id,
                    provider=provider,
                    encrypted_api_key=encrypted_api_key,
                    status=status,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
            else:
                row.encrypted_api_key = encrypted_api_key
                row.status = status
                row.last_error_code = None
                row.last_tested_at = None
                row.updated_at = now
            await session.commit()
            return row

    async def update_integration_status(
        self,
        organization_id: str,
        provider: str,
        status: str,
        error_code: str | None = None,
        tested_at: str | None = None,
    ) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Integration).where(
                    Integration.organization_id == organization_id,
                    Integration.provider == provider,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                logger.warning(
                    "Status update for missing integration org=%s provider=%s",
                    organization_id, provider,
                )
                return
            row.status = status
            row.last_error_code = error_code
            if tested_at is not None:
                row.last_tested_at = tested_at
            row.updated_at = utc_now_iso()
            await session.commit()

    async def get_agents(self, organization_id: str) -> list[Agent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Agent)
                .where(Agent.organization_id == organization_id)
                .order_by(Agent.created_at)
            )
            return list(result.scalars().all())

    async def add_agent(self, organization_id: str, external_agent_id: str, name: str) -> Agent:
        async with self._session_factory() as session:
            agent = Agent(
                organization_id=organization_id,
                external_agent_id=external_agent_id,
                name=name,
            )
            session.add(agent)
            await session.commit()
            return agent

    async def find_conversation_by_external_id(
        self, organization_id: str, provider: str, external_id: str,
    ) -> ConversationRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ConversationRecord).where(
                    ConversationRecord.organization_id == organization_id,
                    ConversationRecord.provider == provider,
                    ConversationRecord.external_conversation_id == external_id,
                )
            )
            return result.scalar_one_or_none()

    async def insert_conversation_record(self, record: ConversationRecord) -> ConversationRecord:
        async with self._session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateConversationError(record.external_conversation_id) from e
            return record

    async def list_conversations(
        self, organization_id: str, limit: int = 50, offset: int = 0,
    ) -> list[ConversationRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ConversationRecord)
                .where(ConversationRecord.organization_id == organization_id)
                .order_by(ConversationRecord.started_at.desc(), ConversationRecord.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())
