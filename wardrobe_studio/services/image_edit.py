"""Image-edit vendor client for photo tuning and try-on touch-up.

The edit endpoint only takes square images, so every call pads the input to a
square, edits at one of the supported sizes, and crops the answer back to the
original aspect ratio.
"""

import asyncio
import base64
import logging
import uuid
from typing import Any, Awaitable, Callable

import httpx
from PIL import Image

from ..config import ImageEditConfig, NormalizeConfig
from ..errors import (
    ErrorKind,
    ImageEditUnavailableError,
    TryOnError,
    VendorResponseError,
    classify_exception,
)
from ..imaging.normalize import (
    crop_to_aspect_ratio,
    encode_png,
    open_image,
    pad_image_to_square,
    process_image_for_upload,
    select_edit_size,
)
from .retry import with_retry

logger = logging.getLogger(__name__)


TUNE_ACTOR_PROMPT = (
    "Improve this actor photo for a virtual try-on catalog. Keep the same person and "
    "identity. Do NOT change face, body shape, pose, skin tone, tattoos, hair style, age, "
    "or clothing style. Only correct exposure and white balance, reduce noise, improve "
    "clarity slightly, and optionally simplify or clean the background to a neutral "
    "studio-like background. Maintain full photorealism. Do not add accessories or alter "
    "the scene."
)

TUNE_GARMENT_PROMPT = (
    "Create a clean product cutout of this garment. Remove the background completely "
    "(transparent). Preserve exact garment shape, proportions, textures, stitching, logos, "
    "patterns, and colors. Do NOT invent or modify details. Photorealistic, product-photo "
    "style."
)

POSTPROCESS_PROMPT = (
    "Fix ONLY minor visual artifacts such as jagged edges, halos, small seam blending "
    "issues, or slight lighting mismatches. Preserve the exact garment design, fit, pose, "
    "body shape, and face. Do NOT redesign or restyle anything. Maintain photorealism."
)


def classify_edit_error(response: httpx.Response) -> TryOnError:
    """Map a non-2xx image-edit response onto the error taxonomy."""
    try:
        body = response.json()
    except ValueError:
        body = None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        message = error.get("message") or response.reason_phrase
        code = str(error.get("code") or "")
    else:
        message = str(error or response.text or response.reason_phrase)
        code = ""

    status = response.status_code
    if status in (403, 429):
        return TryOnError(ErrorKind.RATE_LIMIT, "Rate limit exceeded. Please try again later.", message)
    if status == 400 and ("moderation" in code or "safety" in message.lower()):
        return TryOnError(ErrorKind.MODERATION_REJECTED, "Content was rejected by moderation filters.", message)
    if status in (400, 422):
        return TryOnError(ErrorKind.INVALID_INPUT, f"Image edit rejected ({status}): {message}", message)
    return TryOnError(ErrorKind.API_ERROR, f"Image edit error ({status}): {message}", message)


class ImageEditClient:
    """Client for the vendor `/images/edits` endpoint."""

    def __init__(
        self,
        api_key: str | None,
        config: ImageEditConfig | None = None,
        normalize_config: NormalizeConfig | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.config = config or ImageEditConfig()
        self.normalize_config = normalize_config or NormalizeConfig()
        self._client = client
        self._sleep = sleep

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_s)
        return self._client

    async def tune_actor_photo(self, data: bytes, request_id: str | None = None) -> bytes:
        """Conservative clean-up: exposure, white balance, noise, background."""
        return await self._edit_preserving_aspect(
            data, TUNE_ACTOR_PROMPT, request_id or f"actor-tune-{uuid.uuid4().hex[:8]}"
        )

    async def tune_garment_photo(self, data: bytes, request_id: str | None = None) -> bytes:
        """Product cut-out on a transparent background."""
        return await self._edit_preserving_aspect(
            data, TUNE_GARMENT_PROMPT, request_id or f"garment-tune-{uuid.uuid4().hex[:8]}"
        )

    async def postprocess_tryon_image(self, data: bytes, request_id: str | None = None) -> bytes:
        """Fix minor compositing artifacts in a try-on result."""
        return await self._edit_preserving_aspect(
            data, POSTPROCESS_PROMPT, request_id or f"postprocess-{uuid.uuid4().hex[:8]}"
        )

    async def _edit_preserving_aspect(self, data: bytes, prompt: str, request_id: str) -> bytes:
        if not self.available:
            raise ImageEditUnavailableError()

        normalized = await asyncio.to_thread(process_image_for_upload, data, self.normalize_config)
        padded = pad_image_to_square(open_image(normalized))

        size = select_edit_size(padded.image.width)
        square = padded.image
        if square.width != size:
            square = square.resize((size, size), Image.Resampling.LANCZOS)

        try:
            edited = await self.edit_image(encode_png(square), prompt, size, request_id)
        except TryOnError as exc:
            logger.error("Image edit %s failed: %s", request_id, exc.message)
            raise

        result = crop_to_aspect_ratio(open_image(edited), padded.aspect_ratio)
        return encode_png(result)

    async def edit_image(self, png: bytes, prompt: str, size: int, request_id: str) -> bytes:
        """One edit call with retry. `png` must already be a square PNG of `size`."""
        return await with_retry(
            lambda: self._edit_once(png, prompt, size),
            self.config.max_retries,
            request_id,
            sleep=self._sleep,
        )

    async def _edit_once(self, png: bytes, prompt: str, size: int) -> bytes:
        url = f"{self.config.base_url.rstrip('/')}/images/edits"
        form = {
            "model": self.config.model,
            "prompt": prompt,
            "n": "1",
            "size": f"{size}x{size}",
            "quality": self.config.quality,
        }
        try:
            response = await self.client.post(
                url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                data=form,
                files={"image": ("image.png", png, "image/png")},
                timeout=self.config.timeout_s,
            )
        except httpx.HTTPError as exc:
            raise classify_exception(exc) from exc

        if response.is_error:
            raise classify_edit_error(response)

        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise VendorResponseError("Image edit returned a non-JSON body") from exc
        return await self._decode_payload(payload)

    async def _decode_payload(self, payload: Any) -> bytes:
        items = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(items, list) or not items or not isinstance(items[0], dict):
            raise VendorResponseError("No image data returned from image edit")

        first = items[0]
        if isinstance(first.get("b64_json"), str):
            return base64.b64decode(first["b64_json"])
        if isinstance(first.get("url"), str):
            try:
                response = await self.client.get(first["url"])
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise classify_exception(exc) from exc
            return response.content
        raise VendorResponseError("Image edit response has neither b64_json nor url")

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
