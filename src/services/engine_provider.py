"""Centralized construction of the sync engine and its collaborators.

API routes and CLI commands obtain the store, vault, provider client,
orchestrator, and integration service from an ``EngineContext`` built HERE.
The orchestrator owns the single-flight registry, so one context must be
shared by every caller in a process.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from src.cli.config import VoiceOpsConfig
from src.db.connection import async_init_db, create_engine_for_url, create_session_factory
from src.services.conversation_store import ConversationStore, SqlConversationStore
from src.services.credential_encryption import CredentialVault
from src.services.http_retry import RetryPolicy
from src.services.integration_service import IntegrationService
from src.services.provider_client import ProviderClient
from src.services.provider_types import PROVIDERS
from src.services.sync_engine import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class EngineContext:
    """Process-wide engine objects."""

    config: VoiceOpsConfig
    store: ConversationStore
    vault: CredentialVault
    client: ProviderClient
    orchestrator: SyncOrchestrator
    integrations: IntegrationService
    db_engine: AsyncEngine | None = None

    async def aclose(self) -> None:
        """Release the HTTP client and database pool."""
        await self.client.aclose()
        if self.db_engine is not None:
            await self.db_engine.dispose()


def build_provider_client(config: VoiceOpsConfig, **overrides) -> ProviderClient:
    """Provider client configured from the provider and sync sections."""
    kwargs = {
        "base_url": config.provider.base_url,
        "timeout": config.provider.timeout_seconds,
        "page_size": config.provider.page_size,
        "retry_policy": RetryPolicy(
            max_retries=config.sync.max_retries,
            base_delay=config.sync.base_delay_seconds,
        ),
    }
    kwargs.update(overrides)
    return ProviderClient(PROVIDERS[config.provider.name], **kwargs)


def build_context(
    config: VoiceOpsConfig,
    *,
    store: ConversationStore,
    vault: CredentialVault,
    client: ProviderClient,
    db_engine: AsyncEngine | None = None,
) -> EngineContext:
    """Wire an orchestrator and integration service around existing parts."""
    orchestrator = SyncOrchestrator(
        store=store,
        vault=vault,
        client=client,
        window=config.sync.window,
        batch_delay=config.sync.batch_delay_ms / 1000,
        dedup_concurrency=config.sync.dedup_concurrency,
        require_known_agent=config.sync.require_known_agent,
    )
    return EngineContext(
        config=config,
        store=store,
        vault=vault,
        client=client,
        orchestrator=orchestrator,
        integrations=IntegrationService(store=store, vault=vault, client=client),
        db_engine=db_engine,
    )


async def create_engine_context(config: VoiceOpsConfig) -> EngineContext:
    """Build the production context: SQL store, key-file vault, httpx client.

    Creates database tables if they do not exist.
    """
    from src.db.connection import get_database_url

    db_engine = create_engine_for_url(config.database.url or get_database_url())
    await async_init_db(db_engine)
    logger.info("Engine context ready (provider=%s)", config.provider.name)
    return build_context(
        config,
        store=SqlConversationStore(create_session_factory(db_engine)),
        vault=CredentialVault.from_environment(),
        client=build_provider_client(config),
        db_engine=db_engine,
    )
