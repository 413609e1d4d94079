"""Root-level pytest fixtures for all tests.

Provides shared fixtures for:
- Credential vault with a throwaway key
- In-memory conversation store and fake provider API
- File-based SQLite for store tests
"""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from src.services.credential_encryption import CredentialVault
from tests.helpers import FakeProvider, InMemoryConversationStore, make_summary


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests that take a long time to run"
    )


# ============================================================================
# Core fixtures
# ============================================================================


@pytest.fixture
def vault() -> CredentialVault:
    """Vault with a random 32-byte key and no legacy secret."""
    return CredentialVault(os.urandom(32))


@pytest.fixture
def store() -> InMemoryConversationStore:
    """Empty in-memory conversation store."""
    return InMemoryConversationStore()


@pytest.fixture
def provider() -> FakeProvider:
    """Fake provider listing ten conversations for agent-1."""
    return FakeProvider([make_summary(i) for i in range(10)])


# ============================================================================
# Database fixtures
# ============================================================================


@pytest_asyncio.fixture
async def sql_session_factory(tmp_path) -> AsyncGenerator:
    """Session factory bound to a fresh file-based SQLite database."""
    from src.db.connection import async_init_db, create_engine_for_url, create_session_factory

    engine = create_engine_for_url(f"sqlite:///{tmp_path / 'voiceops.db'}")
    await async_init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()
