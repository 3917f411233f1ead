"""Tests for the resilient HTTP client."""

import httpx
import pytest

from shared.http import (
    HttpResult,
    RetryOptions,
    backoff_delay,
    parse_body,
    parse_retry_after,
)


def sequence(*statuses):
    """Responder answering with the given statuses, repeating the last one."""
    remaining = list(statuses)

    def responder(request):
        status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return httpx.Response(status, json={"status": status})

    return responder


class TestResilientClient:
    """Tests for ResilientClient.send."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self, make_http, fake_sleep):
        """Test two transient failures then success within budget."""
        http, upstream = make_http(sequence(503, 503, 200))

        result = await http.send("GET", "https://api.test/x", options=RetryOptions(retries=3))

        assert isinstance(result, HttpResult)
        assert result.ok is True
        assert result.status == 200
        assert result.body == {"status": 200}
        assert len(upstream.requests) == 3
        assert len(fake_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_exhausted_budget_returns_last_result(self, make_http, fake_sleep):
        """Test that exhausting retries returns the failure instead of raising."""
        http, upstream = make_http(sequence(503))

        result = await http.send("GET", "https://api.test/x", options=RetryOptions(retries=2))

        assert result.ok is False
        assert result.status == 503
        assert len(upstream.requests) == 3
        assert len(fake_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_status_returns_immediately(self, make_http, fake_sleep):
        """Test that a 404 is not retried."""
        http, upstream = make_http(sequence(404))

        result = await http.send("GET", "https://api.test/x")

        assert result.ok is False
        assert result.status == 404
        assert len(upstream.requests) == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_network_error_becomes_status_zero(self, make_http):
        """Test that transport failures are retried and reported as status 0."""
        def responder(request):
            raise httpx.ConnectError("connection refused", request=request)

        http, upstream = make_http(responder)

        result = await http.send("GET", "https://api.test/x", options=RetryOptions(retries=1))

        assert result.ok is False
        assert result.status == 0
        assert "connection refused" in result.body["error"]
        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_retry_after_overrides_backoff(self, make_http, fake_sleep):
        """Test that a Retry-After header sets the wait."""
        answers = [
            httpx.Response(429, headers={"Retry-After": "2"}, json={}),
            httpx.Response(200, json={"ok": True}),
        ]
        http, _ = make_http(lambda request: answers.pop(0))

        result = await http.send("GET", "https://api.test/x")

        assert result.ok is True
        assert fake_sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_unusable_retry_after_falls_back_to_backoff(self, make_http, fake_sleep):
        """Test that an infinite Retry-After is ignored."""
        answers = [
            httpx.Response(503, headers={"Retry-After": "inf"}, json={}),
            httpx.Response(200, json={"ok": True}),
        ]
        http, _ = make_http(lambda request: answers.pop(0))

        result = await http.send("GET", "https://api.test/x", options=RetryOptions(max_delay=3.0))

        assert result.ok is True
        assert len(fake_sleep.delays) == 1
        assert 0 < fake_sleep.delays[0] <= 3.0

    @pytest.mark.asyncio
    async def test_sends_json_body_and_headers(self, make_http):
        """Test that the body is JSON encoded and headers forwarded."""
        http, upstream = make_http(lambda request: httpx.Response(200, json={}))

        await http.send(
            "POST",
            "https://api.test/search",
            headers={"Authorization": "Bearer t"},
            body={"query": "x"},
        )

        request = upstream.requests[0]
        assert request.method == "POST"
        assert request.headers["authorization"] == "Bearer t"
        assert upstream.body(request) == {"query": "x"}

    @pytest.mark.asyncio
    async def test_unparsable_body_kept_raw(self, make_http):
        """Test that a non-JSON body is returned under 'raw'."""
        http, _ = make_http(lambda request: httpx.Response(502, text="Bad Gateway"))

        result = await http.send("GET", "https://api.test/x", options=RetryOptions(retries=0))

        assert result.status == 502
        assert result.body == {"raw": "Bad Gateway"}


class TestBackoff:
    """Tests for backoff helpers."""

    def test_delays_never_decrease_and_respect_cap(self):
        """Test monotonic delays bounded by max_delay."""
        options = RetryOptions(base_delay=0.3, max_delay=3.0, jitter=0.1)

        for _ in range(50):
            delays = [backoff_delay(attempt, options) for attempt in range(8)]
            assert delays == sorted(delays)
            assert all(0 < d <= options.max_delay for d in delays)

    def test_first_delay_near_base(self):
        """Test the first delay is base plus bounded jitter."""
        options = RetryOptions(base_delay=0.3, jitter=0.1)
        delay = backoff_delay(0, options)
        assert 0.3 <= delay <= 0.4

    def test_parse_retry_after(self):
        """Test Retry-After parsing."""
        assert parse_retry_after("5") == 5.0
        assert parse_retry_after(None) is None
        assert parse_retry_after("soon") is None
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0

    def test_parse_retry_after_rejects_non_integer_seconds(self):
        """Test that only integer delta-seconds are accepted."""
        for value in ("inf", "-inf", "nan", "1e9", "1_0", "2.5", "-3"):
            assert parse_retry_after(value) is None, value

    def test_parse_body(self):
        """Test body parsing."""
        assert parse_body("") is None
        assert parse_body('{"a": 1}') == {"a": 1}
        assert parse_body("plain") == {"raw": "plain"}
