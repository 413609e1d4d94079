"""Tests for the sync orchestrator: dedup, bounded fetch, isolation, and status handling."""

import asyncio
import logging

import pytest

from src.db.models import IntegrationStatus
from src.errors import NoActiveIntegrationError, SyncInProgressError
from src.services.credential_encryption import CredentialDecryptionError
from src.services.provider_types import ConversationSummary
from src.services.sync_engine import (
    DedupFilter,
    DetailFetcher,
    SyncError,
    SyncFailedError,
    SyncOrchestrator,
    SyncRun,
)
from tests.helpers import (
    TEST_API_KEY,
    FakeProvider,
    InMemoryConversationStore,
    SleepRecorder,
    json_response,
    make_detail,
    make_summary,
)


def _orchestrator(store, vault, provider, **kwargs) -> SyncOrchestrator:
    kwargs.setdefault("batch_delay", 0)
    return SyncOrchestrator(store=store, vault=vault, client=provider.client(), **kwargs)


@pytest.fixture
def ready_store(store, vault):
    """Store with an ACTIVE integration and agent-1 registered."""
    store.seed_integration(vault)
    store.seed_agent()
    return store


class TestHappyPath:
    """Tests for a clean run against a fresh store."""

    @pytest.mark.asyncio
    async def test_syncs_every_listed_conversation(self, ready_store, vault, provider):
        run = await _orchestrator(ready_store, vault, provider).run("org-1")

        assert run.listed == 10
        assert run.new_count == 10
        assert run.synced_count == 10
        assert run.error_count == 0
        assert run.skipped_count == 0
        assert run.message == "Successfully synced 10 new call logs"
        assert len(ready_store.records) == 10

    @pytest.mark.asyncio
    async def test_record_fields(self, ready_store, vault, provider):
        await _orchestrator(ready_store, vault, provider).run("org-1")

        record = ready_store.records[("org-1", "elevenlabs", "conv-000")]
        agent = ready_store.agents[0]
        assert record.agent_id == agent.id
        assert record.duration_seconds == 60
        assert record.started_at == "2023-11-14T22:13:20+00:00"
        assert record.status == "done"
        assert record.cost_estimate == "0.3000"
        assert record.audio_reference == "/api/audio/conv-000"
        assert record.transcript == [
            {"role": "agent", "message": "Hello, how can I help?", "offset_seconds": 0.0},
            {"role": "user", "message": "I need to move my appointment", "offset_seconds": 4.2},
        ]

    @pytest.mark.asyncio
    async def test_reported_cost_and_audio_url_preferred(self, ready_store, vault, provider):
        detail = make_detail(make_summary(1))
        detail["metadata"]["cost"] = 0.042
        detail["recording_url"] = "https://cdn.example.com/conv-001.mp3"
        provider.details["conv-001"] = detail

        await _orchestrator(ready_store, vault, provider).run("org-1")

        record = ready_store.records[("org-1", "elevenlabs", "conv-001")]
        assert record.cost_estimate == "0.0420"
        assert record.audio_reference == "https://cdn.example.com/conv-001.mp3"

    @pytest.mark.asyncio
    async def test_malformed_transcript_kept_as_raw_text(self, ready_store, vault, provider, caplog):
        detail = make_detail(make_summary(2))
        detail["transcript"] = "caller hung up <<garbled>>"
        provider.details["conv-002"] = detail

        with caplog.at_level(logging.WARNING, logger="src.services.sync_engine"):
            run = await _orchestrator(ready_store, vault, provider).run("org-1")

        assert "MALFORMED_TRANSCRIPT: E-4001" in caplog.text
        assert "conv-002" in caplog.text

        record = ready_store.records[("org-1", "elevenlabs", "conv-002")]
        assert run.synced_count == 10
        assert record.transcript == [
            {"role": "system", "message": "caller hung up <<garbled>>", "offset_seconds": None},
        ]

    @pytest.mark.asyncio
    async def test_empty_listing(self, ready_store, vault):
        run = await _orchestrator(ready_store, vault, FakeProvider()).run("org-1")

        assert run.listed == 0
        assert run.message == "No new calls found to sync"
        assert run.to_summary()["totalProcessed"] == 0


class TestDedup:
    """Existing records are never fetched or written again."""

    @pytest.mark.asyncio
    async def test_existing_records_skip_detail_fetch(self, ready_store, vault, provider):
        for i in (0, 3, 5, 9):
            ready_store.seed_record(f"conv-{i:03d}")

        run = await _orchestrator(ready_store, vault, provider).run("org-1")

        assert len(provider.detail_requests()) == 6
        assert run.skipped_count == 4
        assert run.synced_count == 6
        assert run.total_processed == 10

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, ready_store, vault, provider):
        orchestrator = _orchestrator(ready_store, vault, provider)
        await orchestrator.run("org-1")
        fetched_first = len(provider.detail_requests())

        second = await orchestrator.run("org-1")

        assert fetched_first == 10
        assert len(provider.detail_requests()) == 10
        assert second.synced_count == 0
        assert second.skipped_count == 10
        assert second.message == "No new calls found to sync"
        assert len(ready_store.records) == 10

    @pytest.mark.asyncio
    async def test_insert_race_counts_as_skipped(self, vault, provider):
        class RacyStore(InMemoryConversationStore):
            async def find_conversation_by_external_id(self, organization_id, provider, external_id):
                return None

        store = RacyStore()
        store.seed_integration(vault)
        store.seed_agent()
        store.seed_record("conv-004")

        run = await _orchestrator(store, vault, provider).run("org-1")

        assert run.synced_count == 9
        assert run.skipped_count == 1
        assert run.error_count == 0

    @pytest.mark.asyncio
    async def test_dedup_filter_preserves_order(self, store):
        store.seed_record("b")
        summaries = [ConversationSummary(external_id=x) for x in ("a", "b", "c")]

        new, skipped = await DedupFilter(store, max_concurrency=2).filter_new("org-1", "elevenlabs", summaries)

        assert [s.external_id for s in new] == ["a", "c"]
        assert skipped == 1


class TestBoundedFetch:
    """Detail requests run in windows of bounded size."""

    @pytest.mark.asyncio
    async def test_never_more_than_window_in_flight(self, store, vault):
        store.seed_integration(vault)
        store.seed_agent()
        provider = FakeProvider([make_summary(i) for i in range(20)], detail_delay=0.02)

        run = await _orchestrator(store, vault, provider, window=5).run("org-1")

        assert run.synced_count == 20
        assert provider.max_in_flight == 5

    @pytest.mark.asyncio
    async def test_delay_between_batches(self, provider):
        sleep = SleepRecorder()
        summaries = [ConversationSummary(external_id=f"conv-{i:03d}") for i in range(10)]
        fetcher = DetailFetcher(provider.client(), window=3, batch_delay=0.1, sleep=sleep)

        outcomes = await fetcher.fetch_all(TEST_API_KEY, summaries)

        assert sleep.delays == [0.1, 0.1, 0.1]
        assert [o.external_id for o in outcomes] == [s.external_id for s in summaries]
        assert all(o.ok for o in outcomes)


class TestErrorIsolation:
    """One bad conversation never aborts the run."""

    @pytest.mark.asyncio
    async def test_detail_failures_are_counted(self, ready_store, vault, provider):
        provider.detail_failures["conv-002"] = (404, {"detail": {"message": "Conversation not found"}})
        provider.detail_failures["conv-007"] = (500, {})

        run = await _orchestrator(ready_store, vault, provider).run("org-1")

        assert run.synced_count == 8
        assert run.error_count == 2
        assert run.message == "Successfully synced 8 new call logs"
        codes = {e.external_id: e.code for e in run.errors}
        assert codes == {"conv-002": "E-2003", "conv-007": "E-3001"}
        assert ("org-1", "elevenlabs", "conv-002") not in ready_store.records

        attempts = [r.url.path.rsplit("/", 1)[-1] for r in provider.detail_requests()]
        assert attempts.count("conv-002") == 1
        assert attempts.count("conv-007") == 3

    @pytest.mark.asyncio
    async def test_auth_error_on_detail_is_not_retried(self, ready_store, vault):
        provider = FakeProvider([make_summary(0)])
        provider.detail_failures["conv-000"] = (401, {"detail": {"message": "Invalid API key"}})

        run = await _orchestrator(ready_store, vault, provider).run("org-1")

        assert len(provider.detail_requests()) == 1
        assert run.error_count == 1
        assert run.synced_count == 0
        assert run.errors[0].status_code == 401

    @pytest.mark.asyncio
    async def test_all_details_fail(self, ready_store, vault):
        provider = FakeProvider([make_summary(0)])
        provider.detail_failures["conv-000"] = (400, {"message": "bad"})

        run = await _orchestrator(ready_store, vault, provider).run("org-1")

        assert run.message == "Sync completed with 1 errors. No new calls found."

    @pytest.mark.asyncio
    async def test_database_error_on_insert(self, ready_store, vault, provider):
        ready_store.failing_inserts.add("conv-003")

        run = await _orchestrator(ready_store, vault, provider).run("org-1")

        assert run.synced_count == 9
        assert run.errors[0].code == "E-5003"
        assert run.errors[0].external_id == "conv-003"

    @pytest.mark.asyncio
    async def test_failed_conversations_retried_next_run(self, ready_store, vault, provider):
        provider.detail_failures["conv-005"] = (503, {})
        orchestrator = _orchestrator(ready_store, vault, provider)
        await orchestrator.run("org-1")

        del provider.detail_failures["conv-005"]
        second = await orchestrator.run("org-1")

        assert second.synced_count == 1
        assert second.skipped_count == 9


class TestAgentMatching:
    """Conversations for unregistered agents are dropped by default."""

    @pytest.mark.asyncio
    async def test_unknown_agent_dropped(self, ready_store, vault):
        provider = FakeProvider([make_summary(0, "agent-1"), make_summary(1, "agent-9")])

        run = await _orchestrator(ready_store, vault, provider).run("org-1")

        assert run.synced_count == 1
        assert run.unmatched_count == 1
        assert len(provider.detail_requests()) == 1

    @pytest.mark.asyncio
    async def test_unknown_agent_kept_when_not_required(self, store, vault):
        store.seed_integration(vault)
        provider = FakeProvider([make_summary(0, "agent-9")])

        run = await _orchestrator(store, vault, provider, require_known_agent=False).run("org-1")

        assert run.synced_count == 1
        assert store.records[("org-1", "elevenlabs", "conv-000")].agent_id is None

    @pytest.mark.asyncio
    async def test_agent_filter(self, ready_store, vault):
        provider = FakeProvider([make_summary(0, "agent-1"), make_summary(1, "agent-2")])

        run = await _orchestrator(ready_store, vault, provider).run("org-1", agent_id="agent-1")

        assert run.listed == 1
        assert run.synced_count == 1


class TestPreflightAndStatus:
    """Integration status gates the run and is updated by it."""

    @pytest.mark.asyncio
    async def test_missing_integration(self, store, vault, provider):
        with pytest.raises(NoActiveIntegrationError) as exc_info:
            await _orchestrator(store, vault, provider).run("org-1")

        assert exc_info.value.status == "missing"
        assert provider.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["INACTIVE", "PENDING_APPROVAL"])
    async def test_non_syncable_status(self, store, vault, provider, status):
        store.seed_integration(vault, status=status)

        with pytest.raises(NoActiveIntegrationError):
            await _orchestrator(store, vault, provider).run("org-1")

    @pytest.mark.asyncio
    async def test_undecryptable_key_marks_error(self, store, vault, provider):
        foreign_blob = vault.encrypt(TEST_API_KEY, aad="org-2:elevenlabs")
        store.seed_integration(vault, encrypted_api_key=foreign_blob)

        with pytest.raises(CredentialDecryptionError):
            await _orchestrator(store, vault, provider).run("org-1")

        row = store.integrations[("org-1", "elevenlabs")]
        assert row.status == IntegrationStatus.ERROR.value
        assert row.last_error_code == "E-1001"
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_auth_failure_on_listing_marks_error(self, ready_store, vault, provider):
        provider.list_responses = [json_response(401, {"detail": {"message": "Invalid API key"}})]

        with pytest.raises(SyncFailedError) as exc_info:
            await _orchestrator(ready_store, vault, provider).run("org-1")

        row = ready_store.integrations[("org-1", "elevenlabs")]
        assert row.status == IntegrationStatus.ERROR.value
        assert row.last_error_code == "E-2001"
        summary = exc_info.value.run.to_summary()
        assert summary["error"].startswith("elevenlabs rejected the API key (HTTP 401)")
        assert summary["message"].startswith("Sync failed: ")
        assert summary["errors"][0]["code"] == "E-2001"
        assert ready_store.records == {}

    @pytest.mark.asyncio
    async def test_transient_listing_failure_keeps_status(self, ready_store, vault, provider):
        provider.list_responses = [json_response(503, {}) for _ in range(3)]

        with pytest.raises(SyncFailedError) as exc_info:
            await _orchestrator(ready_store, vault, provider).run("org-1")

        assert exc_info.value.cause.code == "E-3001"
        assert ready_store.integrations[("org-1", "elevenlabs")].status == IntegrationStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_successful_run_recovers_error_status(self, store, vault, provider):
        store.seed_integration(vault, status=IntegrationStatus.ERROR.value)
        store.seed_agent()

        await _orchestrator(store, vault, provider).run("org-1")

        row = store.integrations[("org-1", "elevenlabs")]
        assert row.status == IntegrationStatus.ACTIVE.value
        assert row.last_error_code is None


class TestSingleFlight:
    """At most one run per organization at a time."""

    @pytest.mark.asyncio
    async def test_concurrent_run_rejected(self, ready_store, vault):
        provider = FakeProvider([make_summary(i) for i in range(10)], detail_delay=0.05)
        orchestrator = _orchestrator(ready_store, vault, provider)

        first = asyncio.create_task(orchestrator.run("org-1"))
        while not orchestrator.is_running("org-1"):
            await asyncio.sleep(0)

        with pytest.raises(SyncInProgressError):
            await orchestrator.run("org-1")

        run = await first
        assert run.synced_count == 10
        assert not orchestrator.is_running("org-1")

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, store, vault, provider):
        orchestrator = _orchestrator(store, vault, provider)

        with pytest.raises(NoActiveIntegrationError):
            await orchestrator.run("org-1")

        assert not orchestrator.is_running("org-1")

    @pytest.mark.asyncio
    async def test_other_organizations_not_blocked(self, ready_store, vault):
        ready_store.seed_integration(vault, organization_id="org-2")
        ready_store.seed_agent(organization_id="org-2")
        provider = FakeProvider([make_summary(i) for i in range(3)], detail_delay=0.02)
        orchestrator = _orchestrator(ready_store, vault, provider)

        first, second = await asyncio.gather(orchestrator.run("org-1"), orchestrator.run("org-2"))

        assert first.synced_count == 3
        assert second.synced_count == 3


class TestRunSummary:
    """Tests for the wire summary."""

    def test_summary_keys(self):
        run = SyncRun(organization_id="org-1", provider="elevenlabs", synced_count=2, skipped_count=3)
        summary = run.to_summary()

        assert summary["totalSynced"] == 2
        assert summary["totalProcessed"] == 5
        assert "error" not in summary
        assert set(summary) >= {"message", "totalErrors", "totalSkipped", "timeMs", "errors"}

    def test_grouped_errors_combine_by_code_and_status(self):
        run = SyncRun(organization_id="org-1", provider="elevenlabs")
        for external_id in ("conv-2", "conv-1"):
            run.add_error(SyncError(external_id, "E-3001", "TRANSIENT_ERROR", "HTTP 503", 503))
        run.add_error(SyncError("conv-3", "E-2003", "REQUEST_ERROR", "HTTP 404", 404))

        grouped = run.grouped_errors()

        assert run.error_count == 3
        assert [(g.code, g.external_ids) for g in grouped] == [
            ("E-3001", ["conv-1", "conv-2"]),
            ("E-2003", ["conv-3"]),
        ]
        assert grouped[0].is_retryable is True
        assert grouped[1].remediation.startswith("Check the request parameters")
