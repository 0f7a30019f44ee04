"""Tests for the exponential backoff wrapper."""

from unittest.mock import AsyncMock

import httpx
import pytest

from wardrobe_studio.errors import ErrorKind, TryOnError
from wardrobe_studio.services import with_retry


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_first_success_does_not_sleep(self, fake_sleep, recorded_sleeps):
        fn = AsyncMock(return_value="ok")

        assert await with_retry(fn, 2, "req-1", sleep=fake_sleep) == "ok"
        assert fn.await_count == 1
        assert recorded_sleeps == []

    @pytest.mark.asyncio
    async def test_success_after_failures(self, fake_sleep, recorded_sleeps):
        fn = AsyncMock(side_effect=[httpx.ConnectError("boom"), httpx.ConnectError("boom"), "ok"])

        assert await with_retry(fn, 2, "req-1", sleep=fake_sleep) == "ok"
        assert fn.await_count == 3
        assert recorded_sleeps == [1, 2]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error_unmodified(self, fake_sleep, recorded_sleeps):
        errors = [
            TryOnError(ErrorKind.API_ERROR, "first"),
            TryOnError(ErrorKind.RATE_LIMIT, "second"),
            TryOnError(ErrorKind.API_TIMEOUT, "last"),
        ]
        fn = AsyncMock(side_effect=errors)

        with pytest.raises(TryOnError) as exc_info:
            await with_retry(fn, 2, sleep=fake_sleep)

        assert exc_info.value is errors[-1]
        assert fn.await_count == 3
        assert recorded_sleeps == [1, 2]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", [
        ErrorKind.MODERATION_REJECTED,
        ErrorKind.INVALID_INPUT,
        ErrorKind.MISSING_IMAGES,
    ])
    async def test_terminal_errors_are_not_retried(self, kind, fake_sleep, recorded_sleeps):
        fn = AsyncMock(side_effect=TryOnError(kind, "no"))

        with pytest.raises(TryOnError):
            await with_retry(fn, 3, sleep=fake_sleep)

        assert fn.await_count == 1
        assert recorded_sleeps == []

    @pytest.mark.asyncio
    async def test_zero_retries(self, fake_sleep):
        fn = AsyncMock(side_effect=ValueError("nope"))

        with pytest.raises(ValueError):
            await with_retry(fn, 0, sleep=fake_sleep)

        assert fn.await_count == 1

    @pytest.mark.asyncio
    async def test_backoff_doubles(self, fake_sleep, recorded_sleeps):
        fn = AsyncMock(side_effect=[RuntimeError()] * 4 + ["done"])

        await with_retry(fn, 4, sleep=fake_sleep)

        assert recorded_sleeps == [1, 2, 4, 8]
