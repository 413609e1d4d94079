"""Error classification and exponential backoff for outbound provider calls.

Every HTTP request to the provider goes through ``send_with_retry``. Responses
and transport failures are classified into the sync error taxonomy; only
transient failures are retried.

Example:
    policy = RetryPolicy(max_retries=3, base_delay=1.0)
    data = await send_with_retry(
        lambda: client.get("/v1/convai/conversations"), policy,
        description="list conversations",
    )
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from src.errors import VoiceOpsError
from src.services.provider_types import decode_error_body
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)


class SyncErrorKind(str, Enum):
    """Classification of sync failures."""

    CREDENTIAL_ERROR = "CREDENTIAL_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    REQUEST_ERROR = "REQUEST_ERROR"
    TRANSIENT_ERROR = "TRANSIENT_ERROR"
    MALFORMED_TRANSCRIPT = "MALFORMED_TRANSCRIPT"


RETRYABLE_KINDS: frozenset[SyncErrorKind] = frozenset({SyncErrorKind.TRANSIENT_ERROR})


class ProviderRequestError(Exception):
    """An outbound provider call failed after classification and retries.

    Attributes:
        kind: SyncErrorKind classification.
        code: Error registry code (E-XXXX).
        status_code: HTTP status, None for transport failures.
        detail: Sanitized human-readable detail.
        attempts: Number of attempts made.
    """

    def __init__(
        self,
        kind: SyncErrorKind,
        code: str,
        detail: str,
        status_code: int | None = None,
        attempts: int = 1,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.kind = kind
        self.code = code
        self.detail = sanitize_error_message(detail) or ""
        self.status_code = status_code
        self.attempts = attempts
        self.context = context or {}
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{kind.value}{status}: {self.detail}")

    @property
    def is_retryable(self) -> bool:
        """Whether this failure class is retried."""
        return self.kind in RETRYABLE_KINDS

    def to_voiceops_error(self, provider: str, external_id: str | None = None) -> VoiceOpsError:
        """Render as a registry error for summaries and API responses."""
        return VoiceOpsError.from_code(
            self.code,
            provider=provider,
            status_code=self.status_code,
            details=self.detail,
            attempts=self.attempts,
            external_ids=[external_id] if external_id else [],
            **self.context,
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff schedule.

    Attributes:
        max_retries: Total attempts, including the first.
        base_delay: Delay in seconds before the first retry; doubles after.
    """

    max_retries: int = 3
    base_delay: float = 1.0

    def delay_for(self, retry: int) -> float:
        """Delay before retry number ``retry`` (1-based)."""
        return self.base_delay * (2 ** (retry - 1))


def _is_json_content_type(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def classify_response(response: httpx.Response, attempts: int = 1) -> Any:
    """Return the parsed JSON body or raise a classified ProviderRequestError.

    Raises:
        ProviderRequestError: AUTH_ERROR for 401/403 and non-JSON success
            bodies, REQUEST_ERROR for other 4xx and unexpected statuses,
            TRANSIENT_ERROR for 5xx and unparsable JSON.
    """
    status = response.status_code

    if 200 <= status < 300:
        content_type = response.headers.get("content-type", "")
        if content_type and not _is_json_content_type(content_type):
            raise ProviderRequestError(
                SyncErrorKind.AUTH_ERROR, "E-2002",
                f"non-JSON response ({content_type})",
                status_code=status, attempts=attempts,
                context={"content_type": content_type},
            )
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProviderRequestError(
                SyncErrorKind.TRANSIENT_ERROR, "E-3003",
                f"invalid JSON body: {e}",
                status_code=status, attempts=attempts,
            ) from e

    if 500 <= status < 600:
        raise ProviderRequestError(
            SyncErrorKind.TRANSIENT_ERROR, "E-3001",
            f"server error {status}",
            status_code=status, attempts=attempts,
        )

    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    detail = decode_error_body(body, response.text).message

    if status in (401, 403):
        raise ProviderRequestError(
            SyncErrorKind.AUTH_ERROR, "E-2001", detail,
            status_code=status, attempts=attempts,
        )
    raise ProviderRequestError(
        SyncErrorKind.REQUEST_ERROR, "E-2003", detail,
        status_code=status, attempts=attempts,
    )


async def send_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    description: str = "provider request",
) -> Any:
    """Issue a request, retrying transient failures with exponential backoff.

    Args:
        send: Zero-argument coroutine factory performing one HTTP request.
        policy: Attempt budget and backoff; defaults to RetryPolicy().
        sleep: Awaitable sleep, injectable for tests.
        description: Label used in log lines.

    Returns:
        Parsed JSON body of the first successful response.

    Raises:
        ProviderRequestError: Non-retryable failure, or retries exhausted.
    """
    policy = policy or RetryPolicy()
    attempts = max(1, policy.max_retries)
    last_error: ProviderRequestError | None = None

    for attempt in range(1, attempts + 1):
        if attempt > 1:
            delay = policy.delay_for(attempt - 1)
            logger.warning(
                "%s failed with retryable error (attempt %d/%d), retrying in %.1fs: %s",
                description, attempt - 1, attempts, delay, last_error,
            )
            await sleep(delay)

        try:
            response = await send()
            return classify_response(response, attempts=attempt)
        except httpx.TransportError as e:
            last_error = ProviderRequestError(
                SyncErrorKind.TRANSIENT_ERROR, "E-3002",
                f"{type(e).__name__}: {e}", attempts=attempt,
            )
        except ProviderRequestError as e:
            if not e.is_retryable:
                logger.warning("%s failed: %s", description, e)
                raise
            last_error = e

    assert last_error is not None
    logger.error("%s failed after %d attempt(s): %s", description, attempts, last_error)
    raise last_error
