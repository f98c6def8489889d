"""Unit tests for the provider retry/backoff wrapper."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import litellm
import pytest

from src.team_admin.services.retry import RetryPolicy, call_with_backoff, is_retryable


class ProviderError(Exception):
    """Minimal provider error carrying an HTTP status."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class CodedError(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


def _flaky(failures: list[Exception], result: str = "ok") -> AsyncMock:
    return AsyncMock(side_effect=[*failures, result])


class TestIsRetryable:
    @pytest.mark.parametrize("status_code", [429, 500, 503])
    def test_transient_statuses_are_retryable(self, status_code):
        assert is_retryable(ProviderError(status_code)) is True

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 422, 502])
    def test_other_statuses_are_permanent(self, status_code):
        assert is_retryable(ProviderError(status_code)) is False

    def test_connection_reset_codes_are_retryable(self):
        assert is_retryable(CodedError("ECONNRESET")) is True
        assert is_retryable(CodedError("ETIMEDOUT")) is True
        assert is_retryable(CodedError("EACCES")) is False

    def test_network_exceptions_are_retryable(self):
        assert is_retryable(httpx.ConnectError("refused")) is True
        assert is_retryable(ConnectionResetError()) is True
        assert is_retryable(TimeoutError()) is True

    def test_response_status_code_is_inspected(self):
        request = httpx.Request("POST", "https://api.example.com")
        response = httpx.Response(503, request=request)
        exc = httpx.HTTPStatusError("unavailable", request=request, response=response)
        assert is_retryable(exc) is True

    def test_llm_timeout_is_retryable_despite_408(self):
        exc = litellm.Timeout(message="timed out", model="gpt-4o-mini", llm_provider="openai")
        assert is_retryable(exc) is True

    def test_request_timeout_status_alone_is_permanent(self):
        assert is_retryable(ProviderError(408)) is False

    def test_plain_errors_are_permanent(self):
        assert is_retryable(ValueError("bad payload")) is False


class TestCallWithBackoff:
    @pytest.mark.asyncio
    async def test_two_rate_limits_then_success(self, no_sleep):
        fn = _flaky([ProviderError(429), ProviderError(429)], result="transcript")

        result = await call_with_backoff(fn, operation="test", sleep=no_sleep)

        assert result == "transcript"
        assert fn.await_count == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_llm_timeouts_then_success(self, no_sleep):
        timeout = litellm.Timeout(message="timed out", model="gpt-4o-mini", llm_provider="openai")
        fn = _flaky([timeout, timeout])

        result = await call_with_backoff(fn, operation="summarize_chunk", sleep=no_sleep)

        assert result == "ok"
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_bad_request_is_not_retried(self, no_sleep):
        fn = AsyncMock(side_effect=ProviderError(400))

        with pytest.raises(ProviderError) as exc_info:
            await call_with_backoff(fn, operation="test", sleep=no_sleep)

        assert exc_info.value.status_code == 400
        assert fn.await_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_attempts_reraise_last_error(self, no_sleep):
        fn = AsyncMock(side_effect=[ProviderError(503), ProviderError(500), ProviderError(429)])

        with pytest.raises(ProviderError) as exc_info:
            await call_with_backoff(fn, operation="test", sleep=no_sleep)

        assert exc_info.value.status_code == 429
        assert fn.await_count == 3
        # No sleep after the final failure
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_policy_controls_attempts_and_delay(self, no_sleep):
        fn = AsyncMock(side_effect=ConnectionResetError())
        policy = RetryPolicy(max_attempts=4, initial_delay=0.5)

        with pytest.raises(ConnectionResetError):
            await call_with_backoff(fn, operation="test", policy=policy, sleep=no_sleep)

        assert fn.await_count == 4
        assert [c.args[0] for c in no_sleep.await_args_list] == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_first_success_returns_immediately(self, no_sleep):
        fn = AsyncMock(return_value={"content": "{}"})

        assert await call_with_backoff(fn, operation="test", sleep=no_sleep) == {"content": "{}"}
        no_sleep.assert_not_awaited()
