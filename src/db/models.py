"""SQLAlchemy ORM models for the VoiceOps state database.

This module defines provider integrations, local agents, and synchronized
conversation records. Uses SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


class IntegrationStatus(str, Enum):
    """Status values for provider integrations.

    Lifecycle: INACTIVE -> (PENDING_APPROVAL) -> ACTIVE on successful test
               ACTIVE -> ERROR on auth/credential failure
               ERROR -> ACTIVE on successful re-test or sync
    """

    INACTIVE = "INACTIVE"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    ERROR = "ERROR"


class MessageRole(str, Enum):
    """Speaker roles in a normalized transcript."""

    agent = "agent"
    user = "user"
    system = "system"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Integration(Base):
    """Encrypted provider API key for one organization.

    Attributes:
        id: UUID4 text primary key.
        organization_id: Owning tenant.
        provider: Provider identifier (e.g. 'elevenlabs').
        encrypted_api_key: Vault blob, never plaintext.
        status: IntegrationStatus value.
        last_tested_at: ISO8601 UTC timestamp of the last connectivity test.
        last_error_code: Structured error code from last failure.
        created_at: ISO8601 UTC timestamp.
        updated_at: ISO8601 UTC timestamp, service-managed.
    """

    __tablename__ = "integrations"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted_api_key: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=IntegrationStatus.INACTIVE.value
    )
    last_tested_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)

    __table_args__ = (
        UniqueConstraint("organization_id", "provider", name="uq_integrations_org_provider"),
    )

    def __repr__(self) -> str:
        return (
            f"<Integration(org={self.organization_id!r}, "
            f"provider={self.provider!r}, status={self.status!r})>"
        )


class Agent(Base):
    """Local record of a provider-hosted voice agent."""

    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    external_agent_id: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)

    __table_args__ = (
        Index("idx_agents_org", "organization_id"),
        UniqueConstraint("organization_id", "external_agent_id", name="uq_agents_org_external"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "externalAgentId": self.external_agent_id,
            "name": self.name,
        }

    def __repr__(self) -> str:
        return f"<Agent(external_id={self.external_agent_id!r}, name={self.name!r})>"


class ConversationRecord(Base):
    """One synchronized provider conversation. Append-only.

    Attributes:
        id: UUID4 text primary key.
        organization_id: Owning tenant.
        agent_id: Local Agent id, None when the provider agent is unknown.
        provider: Provider identifier.
        external_conversation_id: Provider-assigned conversation ID.
        started_at: ISO8601 UTC start time, if reported.
        duration_seconds: Call length in seconds.
        status: Provider call status (default 'completed').
        cost_estimate: Decimal string with 4 decimal places.
        audio_reference: Provider audio URL or local proxy pointer.
        transcript: JSON list of {role, message, offset_seconds}.
        created_at: ISO8601 UTC timestamp.
    """

    __tablename__ = "conversation_records"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    agent_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    external_conversation_id: Mapped[str] = mapped_column(Text, nullable=False)
    started_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="completed")
    cost_estimate: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "provider", "external_conversation_id",
            name="uq_conversation_records_external",
        ),
        Index("idx_conversation_records_agent", "agent_id"),
        Index("idx_conversation_records_started", "started_at"),
    )

    def to_dict(self) -> dict:
        """API representation with camelCase keys."""
        return {
            "id": self.id,
            "agentId": self.agent_id,
            "provider": self.provider,
            "externalConversationId": self.external_conversation_id,
            "startedAt": self.started_at,
            "durationSeconds": self.duration_seconds,
            "status": self.status,
            "costEstimate": self.cost_estimate,
            "audioReference": self.audio_reference,
            "transcript": self.transcript,
            "createdAt": self.created_at,
        }

    def __repr__(self) -> str:
        return (
            f"<ConversationRecord(external_id={self.external_conversation_id!r}, "
            f"status={self.status!r}, duration={self.duration_seconds})>"
        )
