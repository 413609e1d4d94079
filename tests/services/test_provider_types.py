"""Tests for decoding provider payloads into typed shapes."""

import json

import pytest

from src.services.provider_types import (
    ConversationDetail,
    ConversationSummary,
    DecodeError,
    decode_detail,
    decode_error_body,
    decode_list_page,
    decode_summary,
)


class TestDecodeSummary:
    """Listing entries normalize their ID to external_id."""

    def test_conversation_id(self):
        summary = decode_summary({"conversation_id": "c1", "agent_id": "a1", "call_duration_secs": 42})
        assert summary == ConversationSummary(external_id="c1", agent_id="a1", duration_seconds=42)

    def test_id_fallback(self):
        assert decode_summary({"id": 17}).external_id == "17"

    def test_missing_id(self):
        assert isinstance(decode_summary({"agent_id": "a1"}), DecodeError)

    def test_not_an_object(self):
        assert isinstance(decode_summary("c1"), DecodeError)

    @pytest.mark.parametrize("raw", ["1e400", "-1e400", "Infinity", "NaN", "\"nan\"", "\"inf\""])
    def test_non_finite_numbers_dropped(self, raw):
        payload = json.loads(
            f'{{"conversation_id": "c1", "call_duration_secs": {raw}, "start_time_unix_secs": {raw}}}'
        )
        summary = decode_summary(payload)
        assert summary.duration_seconds is None
        assert summary.start_time_unix_secs is None

    def test_non_finite_duration_in_list_page(self):
        body = '{"conversations":[{"conversation_id":"c1","call_duration_secs":1e400}],"has_more":false}'
        page = decode_list_page(json.loads(body))
        assert [c.external_id for c in page.conversations] == ["c1"]
        assert page.conversations[0].duration_seconds is None


class TestDecodeListPage:
    """Pages drop bad entries but reject a bad item field."""

    def test_drops_undecodable_entries(self):
        page = decode_list_page({
            "conversations": [{"conversation_id": "c1"}, {"nope": 1}, "junk"],
            "has_more": True,
            "next_cursor": "abc",
        })
        assert [c.external_id for c in page.conversations] == ["c1"]
        assert page.has_more is True
        assert page.next_cursor == "abc"

    def test_missing_items_is_empty_page(self):
        page = decode_list_page({})
        assert page.conversations == []
        assert page.has_more is False

    def test_items_not_a_list(self):
        result = decode_list_page({"conversations": {"c1": {}}})
        assert isinstance(result, DecodeError)
        assert result.shape == "ListPage"


class TestDecodeDetail:
    """Detail responses read fields from the top level or metadata."""

    def test_metadata_fields(self):
        detail = decode_detail({
            "conversation_id": "c1",
            "transcript": [],
            "metadata": {"start_time_unix_secs": 1700000000, "call_duration_secs": "75", "cost": 12},
        })
        assert isinstance(detail, ConversationDetail)
        assert detail.start_time_unix_secs == 1700000000.0
        assert detail.duration_seconds == 75
        assert detail.cost == 12

    def test_fallback_id(self):
        assert decode_detail({"transcript": []}, fallback_id="req-1").external_id == "req-1"

    def test_audio_from_recordings(self):
        detail = decode_detail({"conversation_id": "c1", "recordings": [{"url": "https://a/b.mp3"}]})
        assert detail.audio_url == "https://a/b.mp3"

    def test_metadata_audio_wins(self):
        detail = decode_detail({
            "conversation_id": "c1",
            "audio_url": "https://top",
            "metadata": {"audio_url": "https://meta"},
        })
        assert detail.audio_url == "https://meta"

    def test_not_an_object(self):
        assert isinstance(decode_detail([1, 2]), DecodeError)


class TestDecodeErrorBody:
    """Error messages come from the first field that has one."""

    def test_detail_object(self):
        body = decode_error_body({"detail": {"status": "quota_exceeded", "message": "Quota exceeded"}})
        assert body.message == "Quota exceeded"
        assert body.status == "quota_exceeded"

    def test_detail_string(self):
        assert decode_error_body({"detail": "Not authenticated"}).message == "Not authenticated"

    def test_message_and_error_keys(self):
        assert decode_error_body({"message": "m"}).message == "m"
        assert decode_error_body({"error": "e"}).message == "e"

    def test_raw_text_fallback(self):
        assert decode_error_body(None, "  Bad Gateway  ").message == "Bad Gateway"
        assert decode_error_body(None, "").message == "no error detail"
