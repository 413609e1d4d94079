"""Typed provider payloads and the provider adapter configuration.

Neutral module with no DB or network imports. Raw JSON from the provider is
decoded at the boundary into tagged shapes; a decoder returns either the shape
or a ``DecodeError`` and never raises.
"""

import math
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ProviderAdapter:
    """Field names and endpoints for one conversational-AI provider."""

    name: str
    base_url: str
    auth_header: str
    list_path: str
    detail_path: str
    user_path: str
    page_size_param: str = "page_size"
    cursor_param: str = "cursor"
    agent_param: str = "agent_id"
    items_field: str = "conversations"
    has_more_field: str = "has_more"
    next_cursor_field: str = "next_cursor"
    id_fields: tuple[str, ...] = ("conversation_id", "id")
    concurrency_headers: tuple[str, ...] = (
        "current-concurrent-requests",
        "maximum-concurrent-requests",
    )


ELEVENLABS_ADAPTER = ProviderAdapter(
    name="elevenlabs",
    base_url="https://api.elevenlabs.io",
    auth_header="xi-api-key",
    list_path="/v1/convai/conversations",
    detail_path="/v1/convai/conversations/{external_id}",
    user_path="/v1/user",
)

PROVIDERS: dict[str, ProviderAdapter] = {ELEVENLABS_ADAPTER.name: ELEVENLABS_ADAPTER}


# --- Decoded shapes ---


@dataclass(frozen=True)
class DecodeError:
    """A payload did not match the expected shape."""

    shape: str
    reason: str


@dataclass(frozen=True)
class ConversationSummary:
    """One entry of the conversation listing."""

    external_id: str
    agent_id: str | None = None
    status: str | None = None
    start_time_unix_secs: float | None = None
    duration_seconds: int | None = None
    llm_cost: Any = None
    cost: Any = None


@dataclass(frozen=True)
class ListPage:
    """One page of the conversation listing."""

    conversations: list[ConversationSummary]
    has_more: bool
    next_cursor: str | None


@dataclass(frozen=True)
class ConversationDetail:
    """Full detail for one conversation. ``transcript`` is left raw."""

    external_id: str
    agent_id: str | None = None
    status: str | None = None
    start_time_unix_secs: float | None = None
    duration_seconds: int | None = None
    transcript: Any = None
    audio_url: str | None = None
    llm_cost: Any = None
    cost: Any = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderErrorBody:
    """Human-readable error extracted from a non-success response."""

    message: str
    status: str | None = None


# --- Decoders ---


def _external_id(payload: dict, adapter: ProviderAdapter) -> str | None:
    for key in adapter.id_fields:
        value = payload.get(key)
        if isinstance(value, (str, int)) and str(value):
            return str(value)
    return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None
    # inf and nan survive json.loads and float()
    return number if math.isfinite(number) else None


def _optional_duration(*candidates: Any) -> int | None:
    for value in candidates:
        number = _optional_number(value)
        if number is not None:
            return max(0, int(number))
    return None


def decode_summary(
    payload: Any, adapter: ProviderAdapter = ELEVENLABS_ADAPTER,
) -> ConversationSummary | DecodeError:
    """Decode one listing entry, normalizing its ID to ``external_id``."""
    if not isinstance(payload, dict):
        return DecodeError("ConversationSummary", f"expected object, got {type(payload).__name__}")
    external_id = _external_id(payload, adapter)
    if external_id is None:
        return DecodeError("ConversationSummary", f"missing {' / '.join(adapter.id_fields)}")
    return ConversationSummary(
        external_id=external_id,
        agent_id=_optional_str(payload.get("agent_id")),
        status=_optional_str(payload.get("status")),
        start_time_unix_secs=_optional_number(payload.get("start_time_unix_secs")),
        duration_seconds=_optional_duration(payload.get("call_duration_secs")),
        llm_cost=payload.get("llm_cost"),
        cost=payload.get("cost"),
    )


def decode_list_page(
    payload: Any, adapter: ProviderAdapter = ELEVENLABS_ADAPTER,
) -> ListPage | DecodeError:
    """Decode a listing page.

    Entries that fail to decode are dropped; a page whose item field is not
    a list is a DecodeError.
    """
    if not isinstance(payload, dict):
        return DecodeError("ListPage", f"expected object, got {type(payload).__name__}")
    items = payload.get(adapter.items_field, [])
    if items is None:
        items = []
    if not isinstance(items, list):
        return DecodeError("ListPage", f"'{adapter.items_field}' is not a list")

    conversations = []
    for item in items:
        decoded = decode_summary(item, adapter)
        if isinstance(decoded, ConversationSummary):
            conversations.append(decoded)

    return ListPage(
        conversations=conversations,
        has_more=bool(payload.get(adapter.has_more_field, False)),
        next_cursor=_optional_str(payload.get(adapter.next_cursor_field)),
    )


def _audio_url(payload: dict, metadata: dict) -> str | None:
    for source in (metadata, payload):
        for key in ("audio_url", "recording_url"):
            url = _optional_str(source.get(key))
            if url:
                return url
    recordings = payload.get("recordings")
    if isinstance(recordings, list) and recordings and isinstance(recordings[0], dict):
        return _optional_str(recordings[0].get("url") or recordings[0].get("recording_url"))
    return None


def decode_detail(
    payload: Any,
    adapter: ProviderAdapter = ELEVENLABS_ADAPTER,
    fallback_id: str | None = None,
) -> ConversationDetail | DecodeError:
    """Decode a conversation detail response.

    Args:
        payload: Parsed JSON body.
        adapter: Provider field configuration.
        fallback_id: ID used when the body omits one (the requested ID).
    """
    if not isinstance(payload, dict):
        return DecodeError("ConversationDetail", f"expected object, got {type(payload).__name__}")
    external_id = _external_id(payload, adapter) or fallback_id
    if not external_id:
        return DecodeError("ConversationDetail", "missing conversation id")

    metadata = payload.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    return ConversationDetail(
        external_id=external_id,
        agent_id=_optional_str(payload.get("agent_id")),
        status=_optional_str(payload.get("status")),
        start_time_unix_secs=_optional_number(
            payload.get("start_time_unix_secs", metadata.get("start_time_unix_secs"))
        ),
        duration_seconds=_optional_duration(
            payload.get("call_duration_secs"), metadata.get("call_duration_secs"),
        ),
        transcript=payload.get("transcript"),
        audio_url=_audio_url(payload, metadata),
        llm_cost=payload.get("llm_cost", metadata.get("llm_cost")),
        cost=payload.get("cost", metadata.get("cost")),
        metadata=metadata,
    )


def decode_error_body(payload: Any, raw_text: str = "") -> ProviderErrorBody:
    """Extract an error message from ``detail.message``, ``message`` or ``error``.

    Falls back to the raw response text. Always succeeds.
    """
    if isinstance(payload, dict):
        detail = payload.get("detail")
        if isinstance(detail, dict):
            message = _optional_str(detail.get("message"))
            if message:
                return ProviderErrorBody(message=message, status=_optional_str(detail.get("status")))
        elif isinstance(detail, str) and detail.strip():
            return ProviderErrorBody(message=detail.strip())
        for key in ("message", "error"):
            message = _optional_str(payload.get(key))
            if message:
                return ProviderErrorBody(message=message)
    return ProviderErrorBody(message=raw_text.strip()[:500] or "no error detail")
