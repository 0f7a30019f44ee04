"""Provider that echoes the actor image back, for local development."""

import logging
import uuid
from typing import Any

from .base import StatusResult, SubmitResult, VendorImage

logger = logging.getLogger(__name__)


class StubProvider:
    """Synchronous stand-in: the result is the actor image itself, no vendor cost."""

    name = "stub"

    async def submit_tryon(
        self,
        model_image_url: str,
        garment_image_url: str,
        options: dict[str, Any] | None = None,
    ) -> SubmitResult:
        samples = int((options or {}).get("num_samples") or 1)
        if model_image_url.startswith("data:"):
            outputs = [VendorImage(base64=model_image_url) for _ in range(samples)]
        else:
            outputs = [VendorImage(url=model_image_url) for _ in range(samples)]
        return SubmitResult(
            outputs=outputs,
            is_async=False,
            request_id=f"stub_{uuid.uuid4().hex[:12]}",
        )

    async def get_tryon_status(self, job_id: str) -> StatusResult:
        # Stub jobs never go async
        return StatusResult(status="succeeded")

    async def cancel_tryon(self, job_id: str) -> bool:
        return False
