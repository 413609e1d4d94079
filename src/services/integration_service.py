"""IntegrationService: API key storage, approval, and connectivity tests.

Manages the lifecycle of a provider integration:

    save key -> INACTIVE (or PENDING_APPROVAL when approval is required)
    PENDING_APPROVAL -> INACTIVE on approval
    connectivity test -> ACTIVE on success, ERROR on a rejected key

A transient connectivity failure (5xx, timeout) records the test time and
error code but leaves the status unchanged.

Keys are encrypted with AAD bound to "organization_id:provider" and are never
returned by any method.
"""

import logging
from src.db.models import Integration, IntegrationStatus, utc_now_iso
from src.errors import ConflictError, NotFoundError, ValidationError
from src.services.conversation_store import ConversationStore
from src.services.credential_encryption import CredentialDecryptionError, CredentialVault
from src.services.http_retry import ProviderRequestError, SyncErrorKind
from src.services.provider_client import ProviderClient
from src.services.provider_types import PROVIDERS
from src.services.sync_engine import integration_aad

logger = logging.getLogger(__name__)

MAX_API_KEY_LENGTH = 1024

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    IntegrationStatus.INACTIVE.value: frozenset({
        IntegrationStatus.ACTIVE.value, IntegrationStatus.ERROR.value,
    }),
    IntegrationStatus.PENDING_APPROVAL.value: frozenset({IntegrationStatus.INACTIVE.value}),
    IntegrationStatus.ACTIVE.value: frozenset({
        IntegrationStatus.ACTIVE.value, IntegrationStatus.ERROR.value,
    }),
    IntegrationStatus.ERROR.value: frozenset({
        IntegrationStatus.ACTIVE.value, IntegrationStatus.ERROR.value,
    }),
}


def _status_dict(organization_id: str, provider: str, row: Integration | None) -> dict:
    if row is None:
        return {
            "organizationId": organization_id,
            "provider": provider,
            "configured": False,
            "status": IntegrationStatus.INACTIVE.value,
            "lastTestedAt": None,
            "lastErrorCode": None,
            "updatedAt": None,
        }
    return {
        "organizationId": row.organization_id,
        "provider": row.provider,
        "configured": True,
        "status": row.status,
        "lastTestedAt": row.last_tested_at,
        "lastErrorCode": row.last_error_code,
        "updatedAt": row.updated_at,
    }


class IntegrationService:
    """Store, approve, and verify provider API keys for organizations.

    Args:
        store: Persistence contract implementation.
        vault: Encrypts and decrypts API keys.
        client: Provider client used for connectivity tests.
    """

    def __init__(
        self, store: ConversationStore, vault: CredentialVault, client: ProviderClient,
    ) -> None:
        self._store = store
        self._vault = vault
        self._client = client

    def _check_provider(self, provider: str) -> None:
        if provider not in PROVIDERS:
            raise ValidationError(
                f"Unknown provider '{provider}'. Expected one of: {', '.join(sorted(PROVIDERS))}"
            )

    async def _require(self, organization_id: str, provider: str) -> Integration:
        row = await self._store.get_integration(organization_id, provider)
        if row is None:
            raise NotFoundError("Integration", f"{organization_id}:{provider}")
        return row

    async def _transition(
        self,
        row: Integration,
        status: str,
        error_code: str | None = None,
        tested_at: str | None = None,
    ) -> None:
        allowed = VALID_TRANSITIONS.get(row.status, frozenset())
        if status not in allowed:
            raise ConflictError(
                f"Integration cannot move from {row.status} to {status}"
            )
        await self._store.update_integration_status(
            row.organization_id, row.provider, status,
            error_code=error_code, tested_at=tested_at,
        )

    async def save_api_key(
        self,
        organization_id: str,
        api_key: str,
        provider: str = "elevenlabs",
        requires_approval: bool = False,
    ) -> dict:
        """Encrypt and store an API key, resetting the integration status.

        Returns:
            Status dict (never contains key material).

        Raises:
            ValidationError: Empty or oversized key, or unknown provider.
        """
        self._check_provider(provider)
        api_key = (api_key or "").strip()
        if not api_key:
            raise ValidationError("API key must not be empty")
        if len(api_key) > MAX_API_KEY_LENGTH:
            raise ValidationError(f"API key exceeds {MAX_API_KEY_LENGTH} characters")

        status = (
            IntegrationStatus.PENDING_APPROVAL.value if requires_approval
            else IntegrationStatus.INACTIVE.value
        )
        blob = self._vault.encrypt(api_key, aad=integration_aad(organization_id, provider))
        row = await self._store.upsert_integration(organization_id, provider, blob, status)
        logger.info(
            "Saved %s API key for org=%s (status=%s)", provider, organization_id, status,
        )
        return _status_dict(organization_id, provider, row)

    async def approve(self, organization_id: str, provider: str = "elevenlabs") -> dict:
        """Release a PENDING_APPROVAL integration so it can be tested.

        Raises:
            NotFoundError: No integration stored.
            ConflictError: Integration is not awaiting approval.
        """
        self._check_provider(provider)
        row = await self._require(organization_id, provider)
        await self._transition(row, IntegrationStatus.INACTIVE.value)
        logger.info("Approved %s integration for org=%s", provider, organization_id)
        return await self.get_status(organization_id, provider)

    async def test_connection(self, organization_id: str, provider: str = "elevenlabs") -> dict:
        """Verify the stored key against the provider and update status.

        Returns:
            Dict with 'valid', 'status', 'message', and 'errorCode'.

        Raises:
            NotFoundError: No integration stored.
            ConflictError: Integration is awaiting approval.
        """
        self._check_provider(provider)
        row = await self._require(organization_id, provider)
        if row.status == IntegrationStatus.PENDING_APPROVAL.value:
            raise ConflictError(
                f"Integration for '{organization_id}' is awaiting approval and cannot be tested"
            )

        tested_at = utc_now_iso()
        try:
            api_key = self._vault.decrypt_text(
                row.encrypted_api_key, aad=integration_aad(organization_id, provider),
            )
        except CredentialDecryptionError as e:
            logger.warning("Stored key for org=%s could not be decrypted: %s", organization_id, e)
            await self._transition(row, IntegrationStatus.ERROR.value, "E-1001", tested_at)
            return {
                "valid": False,
                "status": IntegrationStatus.ERROR.value,
                "message": "Stored API key could not be decrypted. Re-enter the API key.",
                "errorCode": "E-1001",
            }

        try:
            await self._client.get_user(api_key)
        except ProviderRequestError as e:
            error = e.to_voiceops_error(provider)
            logger.warning(
                "Connectivity test failed for org=%s (HTTP %s): %s",
                organization_id, e.status_code, e.detail,
            )
            if e.kind in (SyncErrorKind.AUTH_ERROR, SyncErrorKind.CREDENTIAL_ERROR):
                status = IntegrationStatus.ERROR.value
                await self._transition(row, status, e.code, tested_at)
            else:
                status = row.status
                await self._store.update_integration_status(
                    organization_id, provider, status, error_code=e.code, tested_at=tested_at,
                )
            return {
                "valid": False,
                "status": status,
                "message": error.message,
                "errorCode": e.code,
            }

        await self._transition(row, IntegrationStatus.ACTIVE.value, None, tested_at)
        logger.info("Connectivity test passed for org=%s provider=%s", organization_id, provider)
        return {
            "valid": True,
            "status": IntegrationStatus.ACTIVE.value,
            "message": f"Successfully connected to {provider}",
            "errorCode": None,
        }

    async def get_status(self, organization_id: str, provider: str = "elevenlabs") -> dict:
        """Integration status without key material. INACTIVE when none is stored."""
        self._check_provider(provider)
        row = await self._store.get_integration(organization_id, provider)
        return _status_dict(organization_id, provider, row)
