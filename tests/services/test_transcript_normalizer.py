"""Tests for transcript normalization across provider encodings."""

import json

import pytest

from src.services.transcript_normalizer import normalize, normalize_with_report

TURNS = [
    {"role": "agent", "message": "Thanks for calling.", "time_in_call_secs": 0},
    {"role": "user", "message": "Hi, I need to reschedule.", "time_in_call_secs": 3.5},
]


def _as_tuples(messages):
    return [(m.role, m.message, m.offset_seconds) for m in messages]


EXPECTED = [
    ("agent", "Thanks for calling.", 0.0),
    ("user", "Hi, I need to reschedule.", 3.5),
]


class TestStructuredInputs:
    """Well-formed payloads in their various wrappers."""

    def test_list_of_turns(self):
        assert _as_tuples(normalize(TURNS)) == EXPECTED

    def test_json_string(self):
        assert _as_tuples(normalize(json.dumps(TURNS))) == EXPECTED

    @pytest.mark.parametrize("wrapper", ["messages", "transcript"])
    def test_wrapper_object(self, wrapper):
        result = normalize_with_report({wrapper: TURNS})
        assert result.parser == "collection"
        assert _as_tuples(result.messages) == EXPECTED

    def test_wrapper_json_string(self):
        assert _as_tuples(normalize(json.dumps({"messages": TURNS}))) == EXPECTED

    def test_numeric_keyed_object(self):
        payload = {"1": TURNS[1], "0": TURNS[0]}
        assert _as_tuples(normalize(payload)) == EXPECTED

    def test_single_record(self):
        result = normalize_with_report({"role": "assistant", "text": "Goodbye"})
        assert result.parser == "single_record"
        assert _as_tuples(result.messages) == [("agent", "Goodbye", None)]

    def test_ndjson(self):
        text = "\n".join(json.dumps(t) for t in TURNS)
        result = normalize_with_report(text)
        assert result.parser == "ndjson"
        assert _as_tuples(result.messages) == EXPECTED

    def test_ndjson_skips_unparsable_lines(self):
        text = "\n".join([json.dumps(TURNS[0]), "GARBAGE", json.dumps(TURNS[1])])
        result = normalize_with_report(text)
        assert result.parser == "ndjson"
        assert _as_tuples(result.messages) == EXPECTED

    def test_bytes_input(self):
        assert _as_tuples(normalize(json.dumps(TURNS).encode())) == EXPECTED


class TestDegradedText:
    """Text that was escaped one level too many."""

    def test_double_encoded_json(self):
        text = json.dumps(json.dumps(TURNS))
        assert _as_tuples(normalize(text)) == EXPECTED

    def test_escaped_fragments(self):
        text = (
            '{\\"role\\": \\"agent\\", \\"message\\": \\"Hello there\\", \\"time_in_call_secs\\": 0} '
            '{\\"role\\": \\"user\\", \\"message\\": \\"Hi\\", \\"time_in_call_secs\\": 2}'
        )
        result = normalize_with_report(text)
        assert result.parser == "degraded_text"
        assert _as_tuples(result.messages) == [("agent", "Hello there", 0.0), ("user", "Hi", 2.0)]

    def test_unescaped_records_in_surrounding_text(self):
        text = f"noise {json.dumps(TURNS[0])} more noise {json.dumps(TURNS[1])} tail"
        result = normalize_with_report(text)
        assert result.parser == "degraded_text"
        assert _as_tuples(result.messages) == EXPECTED

    def test_numeric_key_fragments(self):
        text = '"0": {"role": "agent", "message": "One"}, "1": {"role": "user", "message": "Two"}'
        assert _as_tuples(normalize(text)) == [("agent", "One", None), ("user", "Two", None)]


class TestRoleMapping:
    """Speaker roles collapse onto agent, user, or system."""

    @pytest.mark.parametrize("role,expected", [
        ("agent", "agent"), ("Assistant", "agent"), ("ai", "agent"), ("bot", "agent"),
        ("user", "user"), ("HUMAN", "user"), ("caller", "user"), ("customer", "user"),
        ("tool", "system"), ("narrator", "system"),
    ])
    def test_roles(self, role, expected):
        assert normalize([{"role": role, "message": "x"}])[0].role == expected

    def test_is_agent_flag(self):
        messages = normalize([
            {"is_agent": True, "message": "a"},
            {"is_agent": False, "message": "b"},
        ])
        assert [m.role for m in messages] == ["agent", "user"]

    def test_missing_role(self):
        assert normalize([{"message": "x"}])[0].role == "system"


class TestOrderingAndCleanup:
    """Messages are ordered by offset and blank turns dropped."""

    def test_sorted_by_offset(self):
        messages = normalize(list(reversed(TURNS)))
        assert [m.offset_seconds for m in messages] == [0.0, 3.5]

    def test_ties_keep_arrival_order(self):
        messages = normalize([
            {"role": "agent", "message": "first", "time_in_call_secs": 1},
            {"role": "user", "message": "second", "time_in_call_secs": 1},
        ])
        assert [m.message for m in messages] == ["first", "second"]

    def test_missing_offset_sorts_as_zero(self):
        messages = normalize([
            {"role": "user", "message": "later", "time_in_call_secs": 5},
            {"role": "agent", "message": "no offset"},
        ])
        assert [m.message for m in messages] == ["no offset", "later"]

    def test_negative_offset_clamped(self):
        assert normalize([{"role": "user", "message": "x", "time_in_call_secs": -3}])[0].offset_seconds == 0.0

    def test_blank_messages_dropped(self):
        messages = normalize([
            {"role": "agent", "message": "   "},
            {"role": "user", "message": None},
            {"role": "user", "message": "  kept  "},
        ])
        assert _as_tuples(messages) == [("user", "kept", None)]

    def test_all_blank_is_empty_not_fallback(self):
        result = normalize_with_report([{"role": "agent", "message": ""}])
        assert result.messages == []
        assert not result.degraded


class TestEmptyAndFallback:
    """Empty payloads yield nothing; unrecognized payloads are preserved."""

    @pytest.mark.parametrize("raw", [None, "", "   ", [], {}])
    def test_empty(self, raw):
        result = normalize_with_report(raw)
        assert result.messages == []
        assert result.parser == "empty"

    def test_plain_text_fallback(self):
        result = normalize_with_report("the call dropped")
        assert result.degraded
        assert _as_tuples(result.messages) == [("system", "the call dropped", None)]

    def test_unrecognized_object_fallback(self):
        result = normalize_with_report({"foo": "bar"})
        assert result.degraded
        assert json.loads(result.messages[0].message) == {"foo": "bar"}

    def test_list_without_records_fallback(self):
        result = normalize_with_report([1, 2, 3])
        assert result.degraded

    @pytest.mark.parametrize("raw", [42, 3.5, True, object()])
    def test_never_raises(self, raw):
        assert len(normalize(raw)) == 1
