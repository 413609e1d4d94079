"""Pytest fixtures for API tests.

Provides an engine context wired to the in-memory store and fake provider,
and a TestClient for the application built around it.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from src.api.main import create_app
from src.api.middleware.auth import reset_rate_limiter
from src.cli.config import SyncConfig, VoiceOpsConfig
from src.services.engine_provider import EngineContext, build_context


@pytest.fixture(autouse=True)
def _no_api_key(monkeypatch):
    """API auth disabled unless a test sets VOICEOPS_API_KEY."""
    monkeypatch.delenv("VOICEOPS_API_KEY", raising=False)
    monkeypatch.delenv("VOICEOPS_TRUST_PROXY", raising=False)
    reset_rate_limiter()
    yield
    reset_rate_limiter()


@pytest.fixture
def engine_ctx(store, vault, provider) -> EngineContext:
    """Engine context with no batch delay."""
    config = VoiceOpsConfig(sync=SyncConfig(batch_delay_ms=0))
    return build_context(config, store=store, vault=vault, client=provider.client())


@pytest.fixture
def client(engine_ctx) -> Generator[TestClient, None, None]:
    """TestClient running the app lifespan around the supplied context."""
    with TestClient(create_app(engine=engine_ctx)) as test_client:
        yield test_client
