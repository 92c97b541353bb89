"""
Tests for the retry and fallback helpers.

The backoff law is checked with Hypothesis; the async helpers run with an
injected sleep so no test actually waits.
"""

import os
import sys

import pytest
from hypothesis import given
from hypothesis import strategies as st

sys.path.insert(0, os.path.abspath(os.path.dirname(os.path.dirname(__file__))))

from utils.exceptions import APIError, FallbackExhaustedError, TransientNetworkError
from utils.retry import backoff_delay, first_success, retry_async


class Flaky:
    """Raises the queued errors in order, then returns ``result``."""

    def __init__(self, errors, result="done"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@given(
    st.integers(min_value=1, max_value=40),
    st.floats(min_value=0.01, max_value=10),
    st.floats(min_value=0.01, max_value=120),
)
def test_backoff_is_exponential_and_capped(attempt, base, cap):
    delay = backoff_delay(attempt, base, cap)
    assert delay <= cap
    assert delay == min(base * 2 ** (attempt - 1), cap)


def test_backoff_before_first_attempt_is_zero():
    assert backoff_delay(0, 1.0, 10.0) == 0.0


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_retries_transient_failures_then_succeeds(self):
        func = Flaky([TransientNetworkError("svc"), TransientNetworkError("svc")])
        sleep = RecordingSleep()

        result = await retry_async(func, attempts=3, base_delay=0.5, sleep=sleep)

        assert result == "done"
        assert func.calls == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        func = Flaky([APIError("svc", status_code=400)])
        sleep = RecordingSleep()

        with pytest.raises(APIError):
            await retry_async(func, attempts=5, sleep=sleep)

        assert func.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self):
        last = TransientNetworkError("svc", status_code=503)
        func = Flaky([TransientNetworkError("svc"), last])

        with pytest.raises(TransientNetworkError) as excinfo:
            await retry_async(func, attempts=2, sleep=RecordingSleep())

        assert excinfo.value is last

    @pytest.mark.asyncio
    async def test_retry_after_is_honoured_within_cap(self):
        func = Flaky(
            [
                TransientNetworkError("svc", status_code=429, retry_after=5),
                TransientNetworkError("svc", status_code=429, retry_after=500),
            ]
        )
        sleep = RecordingSleep()

        await retry_async(func, attempts=3, base_delay=0.5, max_delay=30.0, sleep=sleep)

        assert sleep.delays == [5.0, 30.0]

    @pytest.mark.asyncio
    async def test_custom_retry_on(self):
        func = Flaky([KeyError("x")])

        assert await retry_async(func, retry_on=(KeyError,), sleep=RecordingSleep()) == "done"


class TestFirstSuccess:
    @pytest.mark.asyncio
    async def test_returns_first_working_strategy(self):
        calls = []

        def strategy(name, error=None):
            async def run():
                calls.append(name)
                if error:
                    raise error
                return name.upper()

            return name, run

        name, result = await first_success(
            [strategy("a", APIError("svc")), strategy("b"), strategy("c")],
            catch=(APIError,),
        )

        assert (name, result) == ("b", "B")
        assert calls == ["a", "b"]

    @pytest.mark.asyncio
    async def test_rejected_result_moves_to_next_strategy(self):
        async def small():
            return b"x"

        async def large():
            return b"x" * 100

        def accept(data):
            if len(data) < 10:
                raise ValueError("too small")

        name, result = await first_success(
            [("small", small), ("large", large)], accept=accept, catch=(ValueError,)
        )

        assert name == "large"

    @pytest.mark.asyncio
    async def test_exhaustion_collects_every_error(self):
        async def broken():
            raise APIError("svc", status_code=502)

        with pytest.raises(FallbackExhaustedError) as excinfo:
            await first_success([("one", broken), ("two", broken)], catch=(APIError,))

        assert [name for name, _ in excinfo.value.errors] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_uncaught_errors_propagate(self):
        async def broken():
            raise KeyError("boom")

        with pytest.raises(KeyError):
            await first_success([("one", broken)], catch=(APIError,))
