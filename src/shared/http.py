"""Resilient outbound HTTP client.

Wraps ``httpx.AsyncClient`` with tenacity-driven retries. Ordinary HTTP and
network failures never raise; ``send`` always returns an ``HttpResult``
describing the final outcome.
"""

import asyncio
import json
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from shared.errors import TransientFault
from shared.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

SleepFunc = Callable[[float], Awaitable[None]]


class RetryOptions(BaseModel):
    """Retry budget for one request. Delays are in seconds."""
    retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=0.3, gt=0)
    max_delay: float = Field(default=3.0, gt=0)
    jitter: float = Field(default=0.1, ge=0)


class HttpResult(BaseModel):
    """Final outcome of a request."""
    ok: bool
    status: int
    body: Any = None
    headers: dict[str, str] = Field(default_factory=dict)


def backoff_delay(attempt: int, options: RetryOptions) -> float:
    """
    Delay before retry number ``attempt`` (0-indexed).

    Jitter is bounded by ``base_delay`` so consecutive delays never decrease,
    and the result never exceeds ``max_delay``.
    """
    jitter = random.uniform(0, min(options.jitter, options.base_delay))
    return min(options.max_delay, options.base_delay * (2 ** attempt) + jitter)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    # delta-seconds is a non-negative integer
    if value.isascii() and value.isdigit():
        return float(int(value))
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def parse_body(text: str) -> Any:
    """Parse a response body as JSON, keeping unparsable text under ``raw``."""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


class BackoffWait(wait_base):
    """Exponential backoff that honours a server supplied wait hint."""

    def __init__(self, options: RetryOptions) -> None:
        self.options = options

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, TransientFault) and exc.retry_after is not None:
            return exc.retry_after
        return backoff_delay(retry_state.attempt_number - 1, self.options)


def _last_result(retry_state: RetryCallState) -> HttpResult:
    """Return the last observed result once retries are exhausted."""
    exc = retry_state.outcome.exception()
    if isinstance(exc, TransientFault):
        return exc.result
    return HttpResult(ok=False, status=0, body={"error": str(exc)})


class ResilientClient:
    """
    HTTP client with retry and backoff.

    Retries on 429/5xx gateway statuses and on network errors. Any other
    non-2xx response is returned immediately.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """
        Args:
            client: Pre-built httpx client (tests inject a MockTransport here)
            timeout: Request timeout in seconds for the default client
            sleep: Coroutine used to wait between attempts
        """
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "ResilientClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def send(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        body: Any = None,
        options: Optional[RetryOptions] = None,
    ) -> HttpResult:
        """
        Send a request, retrying transient failures.

        Args:
            method: HTTP method
            url: Absolute URL
            headers: Request headers
            body: JSON-serialisable request body
            options: Retry budget; defaults to ``RetryOptions()``

        Returns:
            The final result; never raises for HTTP or network failures
        """
        options = options or RetryOptions()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(options.retries + 1),
            wait=BackoffWait(options),
            retry=retry_if_exception_type(TransientFault),
            retry_error_callback=_last_result,
            before_sleep=self._log_retry,
            sleep=self._sleep,
        )
        return await retrying(self._attempt, method, url, headers or {}, body)

    async def _attempt(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Any,
    ) -> HttpResult:
        """Perform one attempt, raising TransientFault when it may be retried."""
        try:
            response = await self._get_client().request(
                method,
                url,
                headers=headers,
                json=body,
            )
        except httpx.TransportError as e:
            result = HttpResult(ok=False, status=0, body={"error": str(e) or type(e).__name__})
            raise TransientFault(result)

        result = HttpResult(
            ok=response.is_success,
            status=response.status_code,
            body=parse_body(response.text),
            headers=dict(response.headers),
        )
        if response.status_code in RETRYABLE_STATUSES:
            raise TransientFault(
                result,
                retry_after=parse_retry_after(response.headers.get("retry-after")),
            )
        return result

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(
            "Retrying request",
            attempt=retry_state.attempt_number,
            status=getattr(getattr(exc, "result", None), "status", None),
            delay=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        )
