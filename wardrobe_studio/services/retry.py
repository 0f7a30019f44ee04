"""Exponential backoff around external calls."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ..errors import TryOnError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 2,
    request_id: str | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call `fn`, retrying up to `max_retries` times with 2**attempt second waits.

    Terminal TryOnErrors (moderation, invalid input, missing images) are raised
    straight away. Once retries run out the last error propagates unchanged.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if isinstance(exc, TryOnError) and not exc.retryable:
                raise
            if attempt >= max_retries:
                raise
            delay = 2 ** attempt
            suffix = f" (request {request_id})" if request_id else ""
            logger.warning(
                "Attempt %d/%d failed%s, retrying in %ds: %s",
                attempt + 1, max_retries + 1, suffix, delay, exc,
            )
            await sleep(delay)
            attempt += 1
