"""Service layer for VoiceOps Sync.

Provides the credential vault, provider client, sync orchestrator, and
integration lifecycle management.
"""

from src.services.credential_encryption import CredentialDecryptionError, CredentialVault
from src.services.integration_service import IntegrationService
from src.services.sync_engine import SyncFailedError, SyncOrchestrator, SyncRun

__all__ = [
    "CredentialVault",
    "CredentialDecryptionError",
    "SyncOrchestrator",
    "SyncRun",
    "SyncFailedError",
    "IntegrationService",
]
