"""Refined photo checks on a downscaled copy: cropping, face presence, contrast."""

import asyncio
import base64
import logging

import numpy as np

from ..config import AnalysisConfig
from ..imaging.normalize import open_image
from ..models import PhotoAnalysisPartial, PhotoIssue, PhotoKind, Severity
from ..services.cache import CacheBackend, MemoryCache
from . import metrics as m

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX_CHARS = 100

CROPPING_FAIL = 0.25
CROPPING_WARN = 0.15
NO_FACE_CENTER = 0.15
FACE_SMALL_CENTER = 0.2
PERSON_ASPECT = (0.5, 2.0)
BACKGROUND_CONTRAST_WARN = 0.2

CROPPING_FIX = {
    "actor": "Ensure the full person is visible with some margin around edges. "
             "Avoid cropping hands, head, or body parts.",
    "garment": "Ensure the garment has some margin around all edges for better cutout accuracy.",
}


def server_unavailable_partial() -> PhotoAnalysisPartial:
    """Fallback returned whenever server analysis cannot complete."""
    return PhotoAnalysisPartial(issues=[PhotoIssue(
        id="server-unavailable",
        severity=Severity.WARN,
        message="Server analysis unavailable; using quick checks only",
        fix="Photo will be saved with basic quality checks.",
    )])


def decode_base64_image(image_base64: str) -> bytes:
    if image_base64.startswith("data:"):
        _, image_base64 = image_base64.split(",", 1)
    return base64.b64decode(image_base64, validate=False)


def compute_server_partial(kind: PhotoKind, image_bytes: bytes, width: int, height: int) -> PhotoAnalysisPartial:
    """The synchronous heuristics. May raise; callers wrap it."""
    image = open_image(image_bytes)
    gray = np.asarray(image.convert("L"), dtype=np.float64)
    img_h, img_w = gray.shape

    issues: list[PhotoIssue] = []
    metrics: dict[str, float] = {
        "server_width": img_w,
        "server_height": img_h,
        "mean_brightness": float(gray.mean()) / 255.0,
    }

    # Content touching the border suggests the subject is cropped
    border_width = max(1, int(min(img_w, img_h) * 0.05))
    border_density = m.strip_variance(gray, border_width)
    metrics["border_edge_density"] = border_density

    if border_density > CROPPING_FAIL:
        issues.append(PhotoIssue(
            id="cropping-severe",
            severity=Severity.FAIL,
            message="Photo appears severely cropped - subject touches image edges"
            if kind == "actor" else "Garment appears severely cropped - edges touch image borders",
            fix=CROPPING_FIX[kind],
            metric=border_density,
        ))
    elif border_density > CROPPING_WARN:
        issues.append(PhotoIssue(
            id="cropping-risk",
            severity=Severity.WARN,
            message="Photo may be cropped or subject touches image edges"
            if kind == "actor" else "Garment edges may touch image borders",
            fix=CROPPING_FIX[kind],
            metric=border_density,
        ))

    if kind == "actor":
        # Proportions of the original upload, not the downscaled copy
        aspect_ratio = width / height if width > 0 and height > 0 else img_w / img_h
        person_like = PERSON_ASPECT[0] < aspect_ratio < PERSON_ASPECT[1]
        center = m.centered_square_mean(gray, 0.3)
        metrics["center_region_brightness"] = center

        if not person_like and center < NO_FACE_CENTER:
            issues.append(PhotoIssue(
                id="no-face-detected",
                severity=Severity.FAIL,
                message="No face or person detected in photo",
                fix="Ensure the photo shows a clear view of a person facing the camera. "
                    "The face should be visible and well-lit.",
                metric=center,
            ))
        elif center < FACE_SMALL_CENTER:
            issues.append(PhotoIssue(
                id="face-too-small",
                severity=Severity.WARN,
                message="Person may be too far away or face is too small",
                fix="Move closer or zoom in to ensure the person fills more of the frame. "
                    "The face should be clearly visible.",
                metric=center,
            ))
    else:
        center = m.centered_square_mean(gray, 0.4)
        edge = m.region_mean(gray, 0, 0, max(1, int(img_w * 0.1)), img_h)
        contrast = abs(center - edge)
        metrics["background_contrast"] = contrast

        if contrast < BACKGROUND_CONTRAST_WARN:
            issues.append(PhotoIssue(
                id="background-contrast",
                severity=Severity.WARN,
                message="Low contrast between garment and background",
                fix="Use a plain background that contrasts with the garment color. White or light "
                    "backgrounds work well for dark garments, and vice versa.",
                metric=contrast,
            ))

    return PhotoAnalysisPartial(issues=issues, metrics=metrics)


class ServerPhotoAnalyzer:
    """Runs the server heuristics under a time budget, with a short-lived cache.

    `analyze` never raises; quality analysis must not block uploads.
    """

    def __init__(
        self,
        config: AnalysisConfig | None = None,
        cache: CacheBackend[PhotoAnalysisPartial] | None = None,
    ):
        self.config = config or AnalysisConfig()
        self.cache = cache if cache is not None else MemoryCache(
            max_entries=self.config.cache_max_entries,
            ttl_s=self.config.cache_ttl_s,
        )

    @staticmethod
    def cache_key(kind: PhotoKind, image_base64: str) -> str:
        return f"{kind}-{image_base64[:CACHE_KEY_PREFIX_CHARS]}"

    async def analyze(
        self,
        kind: PhotoKind,
        image_base64: str,
        width: int,
        height: int,
    ) -> PhotoAnalysisPartial:
        key = self.cache_key(kind, image_base64)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Server analysis cache hit for %s", kind)
            return cached

        try:
            image_bytes = decode_base64_image(image_base64)
            partial = await asyncio.wait_for(
                asyncio.to_thread(compute_server_partial, kind, image_bytes, width, height),
                timeout=self.config.server_budget_s,
            )
        except asyncio.TimeoutError:
            logger.warning("Server photo analysis exceeded %.1fs budget", self.config.server_budget_s)
            return server_unavailable_partial()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Server photo analysis failed: %s", exc)
            return server_unavailable_partial()

        self.cache.set(key, partial)
        return partial
