"""Conversation synchronization engine.

Pulls completed conversations from the provider and appends one
ConversationRecord per external conversation:

    START -> LIST -> FILTER -> FETCH_DETAILS -> PERSIST -> SUMMARIZE -> DONE

Only pre-flight and LIST can fail the run. Per-conversation failures during
FETCH_DETAILS and PERSIST are counted in the summary and never abort it.

Example:
    async with ProviderClient() as client:
        orchestrator = SyncOrchestrator(store=store, vault=vault, client=client)
        run = await orchestrator.run("org-1")
        print(run.to_summary())
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from src.db.models import ConversationRecord, IntegrationStatus, utc_now_iso
from src.errors import (
    NoActiveIntegrationError,
    SyncInProgressError,
    VoiceOpsError,
    format_error_summary,
    get_error,
    group_errors,
)
from src.services.call_cost import estimate_call_cost, format_cost
from src.services.conversation_store import ConversationStore, DuplicateConversationError
from src.services.credential_encryption import CredentialDecryptionError, CredentialVault
from src.services.http_retry import ProviderRequestError, SyncErrorKind
from src.services.provider_client import ProviderClient
from src.services.provider_types import ConversationDetail, ConversationSummary
from src.services.transcript_normalizer import normalize_with_report
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

SYNCABLE_STATUSES: frozenset[str] = frozenset({
    IntegrationStatus.ACTIVE.value,
    IntegrationStatus.ERROR.value,
})

DEFAULT_WINDOW = 5
DEFAULT_BATCH_DELAY_SECONDS = 0.1
DEFAULT_DEDUP_CONCURRENCY = 10
AUDIO_PROXY_PATH = "/api/audio/{external_id}"


def integration_aad(organization_id: str, provider: str) -> str:
    """Additional authenticated data binding a stored key to its owner."""
    return f"{organization_id}:{provider}"


# --- Run summary ---


@dataclass
class SyncError:
    """One per-conversation failure recorded in a run summary."""

    external_id: str | None
    code: str
    kind: str
    message: str
    status_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "externalId": self.external_id,
            "code": self.code,
            "kind": self.kind,
            "message": self.message,
            "statusCode": self.status_code,
        }


def _as_voiceops_error(error: SyncError) -> VoiceOpsError:
    definition = get_error(error.code)
    return VoiceOpsError(
        code=error.code,
        message=error.message,
        remediation=definition.remediation if definition else "Contact support.",
        external_ids=[error.external_id] if error.external_id else [],
        status_code=error.status_code,
        is_retryable=definition.is_retryable if definition else False,
    )


@dataclass
class SyncRun:
    """Counters and errors for one sync invocation."""

    organization_id: str
    provider: str
    started_at: str = field(default_factory=utc_now_iso)
    listed: int = 0
    new_count: int = 0
    synced_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    unmatched_count: int = 0
    elapsed_ms: int = 0
    errors: list[SyncError] = field(default_factory=list)
    error: str | None = None

    @property
    def total_processed(self) -> int:
        return self.synced_count + self.error_count + self.skipped_count

    @property
    def message(self) -> str:
        if self.error:
            return f"Sync failed: {self.error}"
        if self.synced_count > 0:
            return f"Successfully synced {self.synced_count} new call logs"
        if self.error_count > 0:
            return f"Sync completed with {self.error_count} errors. No new calls found."
        return "No new calls found to sync"

    def add_error(self, error: SyncError) -> None:
        self.errors.append(error)
        self.error_count += 1

    def grouped_errors(self) -> list[VoiceOpsError]:
        """Per-conversation errors combined by code and HTTP status."""
        return group_errors([_as_voiceops_error(e) for e in self.errors])

    def to_summary(self) -> dict[str, Any]:
        """Wire form returned by the API and printed by the CLI."""
        summary: dict[str, Any] = {
            "message": self.message,
            "totalSynced": self.synced_count,
            "totalErrors": self.error_count,
            "totalSkipped": self.skipped_count,
            "totalProcessed": self.total_processed,
            "timeMs": self.elapsed_ms,
            "listed": self.listed,
            "newCount": self.new_count,
            "unmatched": self.unmatched_count,
            "startedAt": self.started_at,
            "errors": [e.to_dict() for e in self.errors],
        }
        if self.error:
            summary["error"] = self.error
        return summary


class SyncFailedError(Exception):
    """The run failed before any conversation was persisted.

    Attributes:
        run: Partial run summary (counters so far plus the error).
        cause: The classified provider failure.
    """

    def __init__(self, run: SyncRun, cause: ProviderRequestError) -> None:
        super().__init__(run.error or str(cause))
        self.run = run
        self.cause = cause


# --- Single-flight ---


class SingleFlightRegistry:
    """Tracks organizations with a sync in progress.

    A second acquire for the same organization is rejected, not queued.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._active: set[str] = set()

    async def acquire(self, organization_id: str) -> None:
        async with self._lock:
            if organization_id in self._active:
                raise SyncInProgressError(organization_id)
            self._active.add(organization_id)

    async def release(self, organization_id: str) -> None:
        async with self._lock:
            self._active.discard(organization_id)

    def is_running(self, organization_id: str) -> bool:
        return organization_id in self._active


# --- Dedup filter ---


class DedupFilter:
    """Drops conversations that already have a persisted record.

    Existence checks are read-only and run concurrently, bounded by a semaphore.
    """

    def __init__(
        self, store: ConversationStore, max_concurrency: int = DEFAULT_DEDUP_CONCURRENCY,
    ) -> None:
        self._store = store
        self._max_concurrency = max(1, max_concurrency)

    async def filter_new(
        self,
        organization_id: str,
        provider: str,
        summaries: list[ConversationSummary],
    ) -> tuple[list[ConversationSummary], int]:
        """Return (new summaries in listing order, count skipped as existing)."""
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _exists(summary: ConversationSummary) -> bool:
            async with semaphore:
                existing = await self._store.find_conversation_by_external_id(
                    organization_id, provider, summary.external_id,
                )
                return existing is not None

        flags = await asyncio.gather(*[_exists(s) for s in summaries])
        new = [s for s, exists in zip(summaries, flags) if not exists]
        return new, len(summaries) - len(new)


# --- Detail fetcher ---


@dataclass(frozen=True)
class FetchOutcome:
    """Result of fetching one conversation's detail."""

    external_id: str
    detail: ConversationDetail | None = None
    error: ProviderRequestError | None = None

    @property
    def ok(self) -> bool:
        return self.detail is not None


class DetailFetcher:
    """Fetches conversation detail in batches of at most ``window`` requests.

    Every request in a batch is issued concurrently and the whole batch
    settles before the next one starts. A fixed delay separates batches.
    """

    def __init__(
        self,
        client: ProviderClient,
        window: int = DEFAULT_WINDOW,
        batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._window = max(1, window)
        self._batch_delay = batch_delay
        self._sleep = sleep

    async def _fetch_one(self, api_key: str, summary: ConversationSummary) -> FetchOutcome:
        try:
            detail = await self._client.get_conversation(api_key, summary.external_id)
        except ProviderRequestError as e:
            logger.warning(
                "Detail fetch failed for %s (HTTP %s): %s",
                summary.external_id, e.status_code, e.detail,
            )
            return FetchOutcome(external_id=summary.external_id, error=e)
        return FetchOutcome(external_id=summary.external_id, detail=detail)

    async def fetch_all(
        self, api_key: str, summaries: list[ConversationSummary],
    ) -> list[FetchOutcome]:
        """Fetch detail for every summary. Outcomes are in input order."""
        outcomes: list[FetchOutcome] = []
        for start in range(0, len(summaries), self._window):
            if start > 0 and self._batch_delay > 0:
                await self._sleep(self._batch_delay)
            batch = summaries[start:start + self._window]
            outcomes.extend(
                await asyncio.gather(*[self._fetch_one(api_key, s) for s in batch])
            )
        return outcomes


# --- Orchestrator ---


def _iso_from_unix(seconds: float | None) -> str | None:
    if seconds is None:
        return None
    try:
        return datetime.fromtimestamp(seconds, UTC).isoformat()
    except (OverflowError, OSError, ValueError):
        return None


class SyncOrchestrator:
    """Sequences list, filter, fetch, and persist for one organization.

    Args:
        store: Persistence contract implementation.
        vault: Decrypts the stored provider API key.
        client: Provider API client.
        window: Maximum concurrent detail requests.
        batch_delay: Seconds between detail batches.
        dedup_concurrency: Maximum concurrent existence checks.
        require_known_agent: Drop conversations whose provider agent is not
            registered locally.
        registry: Single-flight registry; one is created when omitted.
        sleep: Delay function used between detail batches.
    """

    def __init__(
        self,
        store: ConversationStore,
        vault: CredentialVault,
        client: ProviderClient,
        *,
        window: int = DEFAULT_WINDOW,
        batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
        dedup_concurrency: int = DEFAULT_DEDUP_CONCURRENCY,
        require_known_agent: bool = True,
        registry: SingleFlightRegistry | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._vault = vault
        self._client = client
        self._provider = client.adapter.name
        self._require_known_agent = require_known_agent
        self._registry = registry or SingleFlightRegistry()
        self._dedup = DedupFilter(store, max_concurrency=dedup_concurrency)
        self._fetcher = DetailFetcher(client, window=window, batch_delay=batch_delay, sleep=sleep)

    @property
    def provider(self) -> str:
        return self._provider

    def is_running(self, organization_id: str) -> bool:
        return self._registry.is_running(organization_id)

    async def run(self, organization_id: str, agent_id: str | None = None) -> SyncRun:
        """Synchronize new conversations for one organization.

        Args:
            organization_id: Tenant to sync.
            agent_id: Restrict the listing to one provider agent.

        Returns:
            Completed run summary.

        Raises:
            SyncInProgressError: A run for this organization is in progress.
            NoActiveIntegrationError: No integration in ACTIVE or ERROR state.
            CredentialDecryptionError: Stored key could not be decrypted.
            SyncFailedError: Listing failed; nothing was persisted.
        """
        await self._registry.acquire(organization_id)
        try:
            return await self._run(organization_id, agent_id)
        finally:
            await self._registry.release(organization_id)

    async def _run(self, organization_id: str, agent_id: str | None) -> SyncRun:
        provider = self._provider
        started = time.perf_counter()
        run = SyncRun(organization_id=organization_id, provider=provider)

        def _finish() -> SyncRun:
            run.elapsed_ms = int((time.perf_counter() - started) * 1000)
            return run

        # START: pre-flight
        integration = await self._store.get_integration(organization_id, provider)
        if integration is None or integration.status not in SYNCABLE_STATUSES:
            raise NoActiveIntegrationError(
                organization_id, provider, integration.status if integration else None,
            )

        try:
            api_key = self._vault.decrypt_text(
                integration.encrypted_api_key, aad=integration_aad(organization_id, provider),
            )
        except CredentialDecryptionError as e:
            logger.error(
                "Credential decryption failed for org=%s provider=%s: %s",
                organization_id, provider, e,
            )
            await self._store.update_integration_status(
                organization_id, provider, IntegrationStatus.ERROR.value, error_code="E-1001",
            )
            raise

        # LIST
        try:
            summaries = await self._client.list_all(api_key, agent_id=agent_id)
        except ProviderRequestError as e:
            if e.kind == SyncErrorKind.AUTH_ERROR:
                await self._store.update_integration_status(
                    organization_id, provider, IntegrationStatus.ERROR.value, error_code=e.code,
                )
            run.error = e.to_voiceops_error(provider).message
            run.errors.append(SyncError(
                external_id=None, code=e.code, kind=e.kind.value,
                message=run.error, status_code=e.status_code,
            ))
            logger.error("Listing failed for org=%s: %s", organization_id, e)
            raise SyncFailedError(_finish(), e) from e
        run.listed = len(summaries)

        agents = await self._store.get_agents(organization_id)
        agent_ids = {a.external_agent_id: a.id for a in agents}
        candidates = []
        for summary in summaries:
            provider_agent = summary.agent_id or agent_id
            if self._require_known_agent and provider_agent not in agent_ids:
                run.unmatched_count += 1
                continue
            candidates.append(summary)
        if run.unmatched_count:
            logger.info(
                "Dropped %d conversation(s) for unknown agents (org=%s)",
                run.unmatched_count, organization_id,
            )

        # FILTER
        new, skipped = await self._dedup.filter_new(organization_id, provider, candidates)
        run.new_count = len(new)
        run.skipped_count = skipped

        # FETCH_DETAILS
        outcomes = await self._fetcher.fetch_all(api_key, new)

        # PERSIST
        for summary, outcome in zip(new, outcomes):
            if outcome.error is not None:
                err = outcome.error
                run.add_error(SyncError(
                    external_id=summary.external_id, code=err.code, kind=err.kind.value,
                    message=err.detail, status_code=err.status_code,
                ))
                continue

            record = self._build_record(
                organization_id, summary, outcome.detail, agent_ids, agent_id,
            )
            try:
                await self._store.insert_conversation_record(record)
            except DuplicateConversationError:
                logger.info("Conversation %s recorded concurrently; skipping", summary.external_id)
                run.skipped_count += 1
                continue
            except SQLAlchemyError as e:
                error = VoiceOpsError.from_code(
                    "E-5003", details=sanitize_error_message(str(e), max_length=300),
                )
                logger.error("Insert failed for %s: %s", summary.external_id, error.message)
                run.add_error(SyncError(
                    external_id=summary.external_id, code=error.code,
                    kind="DATABASE_ERROR", message=error.message,
                ))
                continue
            run.synced_count += 1

        # SUMMARIZE
        if integration.status == IntegrationStatus.ERROR.value:
            await self._store.update_integration_status(
                organization_id, provider, IntegrationStatus.ACTIVE.value,
            )
            logger.info("Integration for org=%s recovered to ACTIVE", organization_id)

        _finish()
        logger.info(
            "Sync org=%s listed=%d new=%d synced=%d skipped=%d errors=%d unmatched=%d in %dms",
            organization_id, run.listed, run.new_count, run.synced_count,
            run.skipped_count, run.error_count, run.unmatched_count, run.elapsed_ms,
        )
        if run.errors:
            logger.warning(
                "Sync org=%s errors:\n%s",
                organization_id, format_error_summary(run.grouped_errors()),
            )
        return run

    def _build_record(
        self,
        organization_id: str,
        summary: ConversationSummary,
        detail: ConversationDetail,
        agent_ids: dict[str, str],
        requested_agent: str | None,
    ) -> ConversationRecord:
        external_id = summary.external_id
        transcript = normalize_with_report(detail.transcript)
        if transcript.degraded:
            logger.warning(
                "%s: %s", SyncErrorKind.MALFORMED_TRANSCRIPT.value,
                VoiceOpsError.from_code("E-4001", external_id=external_id),
            )

        duration = detail.duration_seconds
        if duration is None:
            duration = summary.duration_seconds or 0
        start = detail.start_time_unix_secs
        if start is None:
            start = summary.start_time_unix_secs
        cost = estimate_call_cost(
            duration,
            llm_cost=detail.llm_cost or summary.llm_cost,
            cost=detail.cost or summary.cost,
        )
        provider_agent = summary.agent_id or detail.agent_id or requested_agent

        return ConversationRecord(
            organization_id=organization_id,
            agent_id=agent_ids.get(provider_agent) if provider_agent else None,
            provider=self._provider,
            external_conversation_id=external_id,
            started_at=_iso_from_unix(start),
            duration_seconds=duration,
            status=detail.status or summary.status or "completed",
            cost_estimate=format_cost(cost),
            audio_reference=detail.audio_url or AUDIO_PROXY_PATH.format(external_id=external_id),
            transcript=[m.to_dict() for m in transcript.messages],
        )
