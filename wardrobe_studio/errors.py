"""Error taxonomy and result values for external-call boundaries."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

import httpx

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Error codes surfaced to callers of the generation pipeline."""
    MISSING_IMAGES = "MISSING_IMAGES"
    INVALID_INPUT = "INVALID_INPUT"
    MODERATION_REJECTED = "MODERATION_REJECTED"
    API_TIMEOUT = "API_TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    API_ERROR = "API_ERROR"
    UNKNOWN = "UNKNOWN"

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self]

    @property
    def retryable(self) -> bool:
        return self not in TERMINAL_KINDS


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.MISSING_IMAGES: 400,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.MODERATION_REJECTED: 403,
    ErrorKind.API_TIMEOUT: 504,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.API_ERROR: 502,
    ErrorKind.UNKNOWN: 500,
}

# Never retried: the same request would be rejected again.
TERMINAL_KINDS = frozenset({
    ErrorKind.MISSING_IMAGES,
    ErrorKind.INVALID_INPUT,
    ErrorKind.MODERATION_REJECTED,
})


class TryOnError(Exception):
    """A classified failure from the generation pipeline."""

    def __init__(self, kind: ErrorKind, message: str, details: Any = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.kind.value, "details": self.details}

    def __repr__(self) -> str:
        return f"TryOnError({self.kind.value}, {self.message!r})"


class VendorResponseError(TryOnError):
    """The vendor answered with a shape we do not understand."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorKind.API_ERROR, message, details)


class ImageDecodeError(TryOnError):
    """Input bytes are not a decodable image."""

    def __init__(self, message: str = "Could not decode image"):
        super().__init__(ErrorKind.INVALID_INPUT, message)


class ImageTooLargeError(TryOnError):
    """The image cannot be shrunk under the vendor size ceiling."""

    def __init__(self, size_bytes: int, limit_bytes: int):
        super().__init__(
            ErrorKind.INVALID_INPUT,
            f"Undersizable image: {size_bytes / 1024 / 1024:.2f} MB after compression "
            f"(limit {limit_bytes / 1024 / 1024:.2f} MB)",
            {"size_bytes": size_bytes, "limit_bytes": limit_bytes},
        )


class ImageEditUnavailableError(TryOnError):
    """No image-edit API key is configured."""

    def __init__(self):
        super().__init__(ErrorKind.API_ERROR, "Image-edit API key not configured")


class StorageError(RuntimeError):
    """Object storage read or write failed."""


class InvalidTransitionError(RuntimeError):
    """A job state change that the lifecycle does not allow."""


class PollCancelledError(RuntimeError):
    """The studio session cancelled a poll loop."""


def classify_exception(exc: BaseException) -> TryOnError:
    """Map any exception raised at an external boundary onto the taxonomy."""
    if isinstance(exc, TryOnError):
        return exc
    if isinstance(exc, httpx.TimeoutException) or isinstance(exc, TimeoutError):
        return TryOnError(ErrorKind.API_TIMEOUT, "Request timed out. Please try again.", str(exc))
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (403, 429):
            return TryOnError(ErrorKind.RATE_LIMIT, "Rate limit exceeded. Please try again later.")
        return TryOnError(ErrorKind.API_ERROR, f"Upstream error ({status})", str(exc))
    if isinstance(exc, httpx.TransportError):
        return TryOnError(ErrorKind.API_ERROR, f"Network error: {exc}")
    return TryOnError(ErrorKind.UNKNOWN, str(exc) or "Unknown error occurred")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: TryOnError


Result = Union[Ok[T], Err]


async def capture(fn: Callable[[], Awaitable[T]]) -> Result[T]:
    """Run an external call and return its outcome as a value instead of raising."""
    try:
        return Ok(await fn())
    except Exception as exc:  # noqa: BLE001
        return Err(classify_exception(exc))
