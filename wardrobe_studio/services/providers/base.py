"""Uniform interface over virtual try-on vendors."""

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

VendorStatus = Literal["queued", "running", "succeeded", "failed"]


@dataclass(frozen=True)
class VendorImage:
    """One vendor output: a fetchable URL or inline base64 (optionally a data URL)."""
    url: str | None = None
    base64: str | None = None

    def __post_init__(self):
        if (self.url is None) == (self.base64 is None):
            raise ValueError("VendorImage needs exactly one of url or base64")

    @property
    def ref(self) -> str:
        return self.url if self.url is not None else self.base64


@dataclass
class SubmitResult:
    job_id: str | None = None
    outputs: list[VendorImage] = field(default_factory=list)
    is_async: bool = False
    request_id: str | None = None

    @property
    def result_url(self) -> str | None:
        for output in self.outputs:
            if output.url:
                return output.url
        return None


@dataclass
class StatusResult:
    status: VendorStatus
    outputs: list[VendorImage] = field(default_factory=list)
    error: str | None = None


@runtime_checkable
class TryOnProvider(Protocol):
    """What the orchestrator needs from a try-on vendor."""

    name: str

    async def submit_tryon(
        self,
        model_image_url: str,
        garment_image_url: str,
        options: dict[str, Any] | None = None,
    ) -> SubmitResult:
        ...

    async def get_tryon_status(self, job_id: str) -> StatusResult:
        ...

    async def cancel_tryon(self, job_id: str) -> bool:
        """Ask the vendor to stop a job. False when the vendor cannot cancel."""
        ...
