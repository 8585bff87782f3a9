"""
Tests for Retry Module

Tests for storyweaver/core/retry.py and error classification.
"""

import pytest

from storyweaver.core.exceptions import (
    ForbiddenError,
    GenerationError,
    GenerationErrorKind,
    RateLimitedError,
    classify_error,
)
from storyweaver.core.retry import RetryConfig, calculate_delay, retry_on_rate_limit


class Flaky:
    """Raises the given errors in order, then returns "ok"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestCalculateDelay:

    def test_default_schedule(self):
        config = RetryConfig()

        assert [calculate_delay(i, config) for i in range(5)] == [5.0, 10.0, 20.0, 30.0, 30.0]

    def test_jitter_stays_in_range(self):
        config = RetryConfig(jitter=True, jitter_range=(0.5, 1.5))

        for _ in range(20):
            assert 2.5 <= calculate_delay(0, config) <= 7.5


class TestClassifyError:

    def test_typed_errors_report_their_kind(self):
        assert classify_error(RateLimitedError("slow down")) is GenerationErrorKind.RATE_LIMITED
        assert classify_error(ForbiddenError("nope")) is GenerationErrorKind.FORBIDDEN
        assert classify_error(GenerationError("boom")) is GenerationErrorKind.UNKNOWN

    def test_untyped_errors_inspected_once(self):
        assert classify_error(Exception("429 Too Many Requests")) is GenerationErrorKind.RATE_LIMITED
        assert classify_error(Exception("RESOURCE_EXHAUSTED")) is GenerationErrorKind.RATE_LIMITED
        assert classify_error(Exception("PERMISSION_DENIED")) is GenerationErrorKind.FORBIDDEN
        assert classify_error(Exception("Rate limit exceeded")) is GenerationErrorKind.RATE_LIMITED
        assert classify_error(ValueError("bad prompt")) is GenerationErrorKind.UNKNOWN
        assert classify_error(Exception("failed to generate image")) is GenerationErrorKind.UNKNOWN

    def test_only_rate_limit_phrases_count(self):
        for message in ("quota: rate-limited", "RATE_LIMIT_EXCEEDED", "Ratelimit hit", "rate exceeded"):
            assert classify_error(Exception(message)) is GenerationErrorKind.RATE_LIMITED
        for message in ("image rated unsafe", "frame rates differ", "moderate content"):
            assert classify_error(Exception(message)) is GenerationErrorKind.UNKNOWN

    def test_status_code_attribute(self):
        error = Exception("upstream")
        error.status_code = 403

        assert classify_error(error) is GenerationErrorKind.FORBIDDEN


class TestRetryOnRateLimit:

    @pytest.mark.asyncio
    async def test_returns_first_success(self, sleeps, fake_sleep):
        func = Flaky()

        assert await retry_on_rate_limit(func, sleep=fake_sleep) == "ok"
        assert func.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_backs_off_then_succeeds(self, sleeps, fake_sleep):
        func = Flaky(RateLimitedError("429"), RateLimitedError("429"))

        assert await retry_on_rate_limit(func, sleep=fake_sleep) == "ok"
        assert func.calls == 3
        assert sleeps == [5.0, 10.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, sleeps, fake_sleep):
        func = Flaky(*[RateLimitedError("429") for _ in range(3)])

        with pytest.raises(RateLimitedError):
            await retry_on_rate_limit(func, sleep=fake_sleep)

        assert func.calls == 3
        assert sleeps == [5.0, 10.0]

    @pytest.mark.asyncio
    async def test_forbidden_is_not_retried(self, sleeps, fake_sleep):
        func = Flaky(ForbiddenError("403"))

        with pytest.raises(ForbiddenError):
            await retry_on_rate_limit(func, sleep=fake_sleep)

        assert func.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_unknown_error_is_not_retried(self, fake_sleep):
        func = Flaky(RuntimeError("connection reset"))

        with pytest.raises(RuntimeError):
            await retry_on_rate_limit(func, sleep=fake_sleep)

        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_delay_is_capped(self, sleeps, fake_sleep):
        func = Flaky(*[RateLimitedError("429") for _ in range(5)])

        result = await retry_on_rate_limit(
            func, config=RetryConfig(max_attempts=6), sleep=fake_sleep
        )

        assert result == "ok"
        assert sleeps == [5.0, 10.0, 20.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_passes_arguments_and_reports_retries(self, fake_sleep):
        calls = []
        seen = []

        async def generate(prompt, size=None):
            calls.append((prompt, size))
            if len(calls) == 1:
                raise RateLimitedError("429")
            return f"{prompt}-{size}"

        result = await retry_on_rate_limit(
            generate,
            "harbor",
            size="large",
            on_retry=lambda e, attempt, delay: seen.append((attempt, delay)),
            sleep=fake_sleep,
        )

        assert result == "harbor-large"
        assert seen == [(0, 5.0)]
