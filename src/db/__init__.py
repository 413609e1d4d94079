"""Database module for VoiceOps state management and persistence."""

from src.db.connection import (
    async_init_db,
    create_engine_for_url,
    create_session_factory,
    get_database_url,
)
from src.db.models import (
    Agent,
    ConversationRecord,
    Integration,
    IntegrationStatus,
    MessageRole,
)

__all__ = [
    # Models
    "Integration",
    "Agent",
    "ConversationRecord",
    # Enums
    "IntegrationStatus",
    "MessageRole",
    # Connection
    "get_database_url",
    "async_init_db",
    "create_engine_for_url",
    "create_session_factory",
]
