"""Async HTTP client for the conversational-AI provider API.

Thin wrapper around httpx. Every call goes through ``send_with_retry`` and
returns a typed payload from ``provider_types``; failures raise
``ProviderRequestError``.

Example:
    async with ProviderClient() as client:
        summaries = await client.list_all(api_key)
        detail = await client.get_conversation(api_key, summaries[0].external_id)
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from src.services.http_retry import (
    ProviderRequestError,
    RetryPolicy,
    SyncErrorKind,
    send_with_retry,
)
from src.services.provider_types import (
    ELEVENLABS_ADAPTER,
    ConversationDetail,
    ConversationSummary,
    DecodeError,
    ProviderAdapter,
    decode_detail,
    decode_list_page,
)
from src.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)

CONNECTIVITY_TIMEOUT_SECONDS = 10.0


class ProviderClient:
    """Provider API client bound to one adapter configuration.

    The API key is passed per call and sent only in the adapter's auth header.
    """

    def __init__(
        self,
        adapter: ProviderAdapter = ELEVENLABS_ADAPTER,
        *,
        base_url: str | None = None,
        timeout: float = 30.0,
        page_size: int = 100,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            adapter: Provider field names and endpoints.
            base_url: Overrides the adapter's base URL.
            timeout: Per-request timeout in seconds for bulk calls.
            page_size: Listing page size.
            retry_policy: Attempt budget and backoff.
            sleep: Backoff sleep, injectable for tests.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.adapter = adapter
        self._base_url = (base_url or adapter.base_url).rstrip("/")
        self._timeout = timeout
        self._page_size = page_size
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ProviderClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    def _auth_headers(self, api_key: str) -> dict[str, str]:
        return {self.adapter.auth_header: api_key}

    def _log_concurrency_headers(self, response: httpx.Response) -> None:
        values = {
            name: response.headers[name]
            for name in self.adapter.concurrency_headers
            if name in response.headers
        }
        if values:
            logger.debug("Provider concurrency: %s", values)

    async def _get(
        self,
        api_key: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        description: str,
        policy: RetryPolicy | None = None,
        timeout: float | None = None,
    ) -> Any:
        client = self._ensure_client()
        headers = self._auth_headers(api_key)

        async def send() -> httpx.Response:
            logger.debug(
                "GET %s params=%s headers=%s", path, params, redact_for_logging(headers),
            )
            response = await client.get(
                path,
                params=params,
                headers=headers,
                timeout=timeout if timeout is not None else self._timeout,
            )
            self._log_concurrency_headers(response)
            return response

        return await send_with_retry(
            send, policy or self._retry_policy, sleep=self._sleep, description=description,
        )

    async def list_all(
        self, api_key: str, agent_id: str | None = None,
    ) -> list[ConversationSummary]:
        """Drain the cursor-paginated conversation listing.

        Pages are fetched sequentially. Duplicate IDs across pages collapse to
        the first occurrence. A failure on any page discards the partial listing.

        Raises:
            ProviderRequestError: A page failed, a page did not decode, or the
                cursor repeated.
        """
        adapter = self.adapter
        summaries: list[ConversationSummary] = []
        seen_ids: set[str] = set()
        seen_cursors: set[str] = set()
        cursor: str | None = None
        page = 0

        while True:
            page += 1
            params: dict[str, Any] = {adapter.page_size_param: self._page_size}
            if cursor:
                params[adapter.cursor_param] = cursor
            if agent_id:
                params[adapter.agent_param] = agent_id

            payload = await self._get(
                api_key, adapter.list_path, params=params,
                description=f"list conversations page {page}",
            )
            decoded = decode_list_page(payload, adapter)
            if isinstance(decoded, DecodeError):
                raise ProviderRequestError(
                    SyncErrorKind.REQUEST_ERROR, "E-2003",
                    f"page {page}: {decoded.reason}", status_code=200,
                )

            for summary in decoded.conversations:
                if summary.external_id not in seen_ids:
                    seen_ids.add(summary.external_id)
                    summaries.append(summary)

            logger.debug(
                "Listed page %d: %d conversation(s), has_more=%s",
                page, len(decoded.conversations), decoded.has_more,
            )

            if not decoded.has_more:
                break
            if not decoded.next_cursor:
                logger.warning(
                    "Listing page %d reported has_more without a cursor; stopping", page,
                )
                break
            if decoded.next_cursor in seen_cursors:
                raise ProviderRequestError(
                    SyncErrorKind.REQUEST_ERROR, "E-2004",
                    f"cursor repeated after page {page}",
                    context={"page": page},
                )
            seen_cursors.add(decoded.next_cursor)
            cursor = decoded.next_cursor

        logger.info("Listed %d conversation(s) across %d page(s)", len(summaries), page)
        return summaries

    async def get_conversation(self, api_key: str, external_id: str) -> ConversationDetail:
        """Fetch full detail for one conversation.

        Raises:
            ProviderRequestError: The request failed or the body did not decode.
        """
        path = self.adapter.detail_path.format(external_id=external_id)
        payload = await self._get(
            api_key, path, description=f"get conversation {external_id}",
        )
        decoded = decode_detail(payload, self.adapter, fallback_id=external_id)
        if isinstance(decoded, DecodeError):
            raise ProviderRequestError(
                SyncErrorKind.REQUEST_ERROR, "E-2003",
                decoded.reason, status_code=200,
            )
        return decoded

    async def get_user(self, api_key: str) -> dict:
        """Connectivity check: single attempt with a short timeout."""
        payload = await self._get(
            api_key, self.adapter.user_path,
            description="connectivity test",
            policy=RetryPolicy(max_retries=1),
            timeout=CONNECTIVITY_TIMEOUT_SECONDS,
        )
        return payload if isinstance(payload, dict) else {}
