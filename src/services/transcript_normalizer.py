"""Canonicalize provider transcript payloads into ordered messages.

Providers return transcripts in several encodings: a list of turn records,
a wrapper object, a JSON string of either, newline-delimited JSON, or text
that has been escaped one level too many. ``normalize`` tries a chain of
parsers and takes the first that matches. If none matches, the raw payload is
preserved as a single system message so nothing is lost.

``normalize`` never raises.
"""

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.db.models import MessageRole

logger = logging.getLogger(__name__)

MESSAGE_FIELDS = ("message", "text", "content")
OFFSET_FIELDS = ("time_in_call_secs", "offset_seconds")
WRAPPER_FIELDS = ("messages", "transcript")

AGENT_ROLES = frozenset({"agent", "assistant", "ai", "bot"})
USER_ROLES = frozenset({"user", "human", "caller", "customer"})

FALLBACK_PARSER = "fallback"


@dataclass(frozen=True)
class TranscriptMessage:
    """One normalized transcript turn."""

    role: str
    message: str
    offset_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "message": self.message,
            "offset_seconds": self.offset_seconds,
        }


@dataclass(frozen=True)
class NormalizedTranscript:
    """Normalization result with the parser that produced it."""

    messages: list[TranscriptMessage]
    parser: str

    @property
    def degraded(self) -> bool:
        """True when the raw payload was kept as a fallback system message."""
        return self.parser == FALLBACK_PARSER


# --- Record helpers ---


def _is_record(value: Any) -> bool:
    return isinstance(value, dict) and any(key in value for key in MESSAGE_FIELDS)


def _map_role(record: dict) -> str:
    role = record.get("role", record.get("speaker"))
    if isinstance(role, str):
        lowered = role.strip().lower()
        if lowered in AGENT_ROLES:
            return MessageRole.agent.value
        if lowered in USER_ROLES:
            return MessageRole.user.value
        return MessageRole.system.value
    is_agent = record.get("is_agent")
    if isinstance(is_agent, bool):
        return MessageRole.agent.value if is_agent else MessageRole.user.value
    return MessageRole.system.value


def _message_text(record: dict) -> str:
    for key in MESSAGE_FIELDS:
        value = record.get(key)
        if isinstance(value, str):
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return ""


def _offset(record: dict) -> float | None:
    for key in OFFSET_FIELDS:
        value = record.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return max(0.0, float(value))
        if isinstance(value, str):
            try:
                return max(0.0, float(value))
            except ValueError:
                continue
    return None


def _to_messages(records: list[dict]) -> list[TranscriptMessage]:
    messages = []
    for record in records:
        text = _message_text(record)
        if not text:
            continue
        messages.append(
            TranscriptMessage(role=_map_role(record), message=text, offset_seconds=_offset(record))
        )
    # sorted() is stable, so ties keep arrival order
    return sorted(messages, key=lambda m: m.offset_seconds or 0.0)


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def _numeric_keyed(value: dict) -> list | None:
    if value and all(isinstance(k, str) and k.isdigit() for k in value):
        return [value[k] for k in sorted(value, key=int)]
    return None


# --- Parsers: each returns a list of records, or None when it does not apply ---


def _parse_collection(raw: Any) -> list[dict] | None:
    value = _loads(raw) if isinstance(raw, str) else raw
    if isinstance(value, dict):
        for key in WRAPPER_FIELDS:
            if isinstance(value.get(key), list):
                value = value[key]
                break
        else:
            value = _numeric_keyed(value)
    if not isinstance(value, list):
        return None
    records = [item for item in value if isinstance(item, dict)]
    if value and not any(_is_record(item) for item in records):
        return None
    return records


def _parse_single_record(raw: Any) -> list[dict] | None:
    value = _loads(raw) if isinstance(raw, str) else raw
    return [value] if _is_record(value) else None


def _parse_ndjson(raw: Any) -> list[dict] | None:
    if not isinstance(raw, str):
        return None
    lines = [line.strip() for line in raw.splitlines() if line.strip()]
    if len(lines) < 2:
        return None
    records = [value for value in map(_loads, lines) if _is_record(value)]
    return records or None


_RECORD_START = re.compile(r'\{\s*\\*"(?:role|message|text|content|time_in_call_secs)\\*"')
_NUMERIC_KEY = re.compile(r'"\d+"\s*:\s*(?=\{)')
_FIELD_PATTERN = re.compile(
    r'\\*"(?P<key>role|message|text|content|time_in_call_secs)\\*"\s*:\s*'
    r'(?:\\*"(?P<str>(?:[^"\\]|\\.)*?)\\*"|(?P<num>-?\d+(?:\.\d+)?))'
)


def _unescape(fragment: str) -> str:
    # Peel one escaping level per pass until the fragment parses
    text = fragment
    for _ in range(3):
        decoded = _loads(f'"{text}"')
        if not isinstance(decoded, str) or decoded == text:
            break
        text = decoded
    return text


def _fragment_to_record(fragment: str) -> dict | None:
    end = fragment.rfind("}")
    if end == -1:
        return None
    candidate = fragment[:end + 1]
    for text in (candidate, _unescape(candidate)):
        value = _loads(text)
        if _is_record(value):
            return value

    record: dict[str, Any] = {}
    for match in _FIELD_PATTERN.finditer(candidate):
        if match.group("num") is not None:
            record[match.group("key")] = float(match.group("num"))
        else:
            record[match.group("key")] = _unescape(match.group("str"))
    return record if _is_record(record) else None


def _split_fragments(text: str) -> list[str]:
    starts = [m.start() for m in _RECORD_START.finditer(text)]
    if starts:
        bounds = starts + [len(text)]
        return [text[bounds[i]:bounds[i + 1]] for i in range(len(starts))]
    parts = _NUMERIC_KEY.split(text)
    if len(parts) > 1:
        return [part.strip().rstrip(",") for part in parts[1:]]
    return []


def _parse_degraded(raw: Any) -> list[dict] | None:
    if not isinstance(raw, str):
        return None
    records = []
    for fragment in _split_fragments(raw):
        record = _fragment_to_record(fragment)
        if record is not None:
            records.append(record)
    return records or None


PARSER_CHAIN: tuple[tuple[str, Callable[[Any], list[dict] | None]], ...] = (
    ("collection", _parse_collection),
    ("single_record", _parse_single_record),
    ("ndjson", _parse_ndjson),
    ("degraded_text", _parse_degraded),
)


def _is_empty(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, str):
        return not raw.strip()
    if isinstance(raw, (list, dict, tuple)):
        return len(raw) == 0
    return False


def _fallback_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    try:
        return json.dumps(raw, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(raw)


def normalize_with_report(raw: Any) -> NormalizedTranscript:
    """Normalize a transcript payload and report which parser matched."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if _is_empty(raw):
        return NormalizedTranscript(messages=[], parser="empty")

    for name, parser in PARSER_CHAIN:
        try:
            records = parser(raw)
        except (ValueError, TypeError, RecursionError) as e:
            logger.debug("Transcript parser %s raised %s; trying next", name, e)
            continue
        if records is not None:
            return NormalizedTranscript(messages=_to_messages(records), parser=name)

    return NormalizedTranscript(
        messages=[TranscriptMessage(role=MessageRole.system.value, message=_fallback_text(raw))],
        parser=FALLBACK_PARSER,
    )


def normalize(raw: Any) -> list[TranscriptMessage]:
    """Normalize a transcript payload to messages ordered by offset.

    Args:
        raw: Transcript as returned by the provider, any shape.

    Returns:
        Ordered messages. Empty or absent payloads yield []. Payloads no parser
        recognizes yield one system message holding the raw text.
    """
    return normalize_with_report(raw).messages
