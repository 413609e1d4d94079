"""Secret redaction for logs, persisted error fields, and API responses.

Provider API keys travel in the ``xi-api-key`` header and occasionally come
back echoed in provider error bodies. Everything that leaves the process as
text goes through ``sanitize_error_message`` first.
"""

import re

# Substring patterns matched case-insensitively against dict keys
_DEFAULT_SENSITIVE_PATTERNS = frozenset({
    "secret", "token", "authorization", "api_key", "api-key", "apikey",
    "password", "credential",
})

# Keys whose entire value is redacted
_CONTAINER_KEYS = frozenset({"headers"})

_REDACTED = "***REDACTED***"


def redact_for_logging(
    obj: dict,
    sensitive_patterns: frozenset[str] = _DEFAULT_SENSITIVE_PATTERNS,
) -> dict:
    """Return a copy of ``obj`` with sensitive values replaced.

    Matching is a case-insensitive substring test on keys. Nested dicts and
    lists of dicts are walked recursively.
    """
    result = {}
    for key, value in obj.items():
        key_lower = str(key).lower()
        if key_lower in _CONTAINER_KEYS or any(p in key_lower for p in sensitive_patterns):
            result[key] = _REDACTED
        elif isinstance(value, dict):
            result[key] = redact_for_logging(value, sensitive_patterns)
        elif isinstance(value, list):
            result[key] = [
                redact_for_logging(item, sensitive_patterns) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


_SENSITIVE_KEYWORDS = r"xi-api-key|api[_-]?key|secret|token|password|authorization|credential"
_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    r"Authorization\s*:\s*Bearer\s+\S+"
    r"|"
    r'"(?:' + _SENSITIVE_KEYWORDS + r')"\s*:\s*"[^"]*"'
    r"|"
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\"[^\"]*\""
    r"|"
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\S+"
    r"|"
    # Bare ElevenLabs keys (sk_ prefix)
    r"\bsk_[0-9a-f]{16,}\b"
    r")",
)


def sanitize_error_message(msg: str | None, max_length: int = 2000) -> str | None:
    """Redact key-like values and truncate to ``max_length``.

    Args:
        msg: Error message to sanitize (None passes through).
        max_length: Maximum length of the sanitized message.

    Returns:
        Sanitized and truncated message, or None.
    """
    if msg is None:
        return None
    sanitized = _SENSITIVE_VALUE_PATTERNS.sub(_REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + "..."
    return sanitized
