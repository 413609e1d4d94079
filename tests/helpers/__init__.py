"""Test helper utilities for sync engine testing."""

from tests.helpers.fakes import (
    BASE_URL,
    TEST_API_KEY,
    FakeProvider,
    InMemoryConversationStore,
    SleepRecorder,
    json_response,
    make_detail,
    make_summary,
    no_sleep,
)

__all__ = [
    "BASE_URL",
    "FakeProvider",
    "InMemoryConversationStore",
    "SleepRecorder",
    "TEST_API_KEY",
    "json_response",
    "make_detail",
    "make_summary",
    "no_sleep",
]
