"""Full upload check: quick client heuristics, server heuristics, combined score."""

import asyncio
import base64
import io
import logging

from ..config import AnalysisConfig
from ..imaging.normalize import open_image
from ..models import PhotoAnalysisPartial, PhotoAnalysisResult, PhotoKind
from .client import analyze_photo_client
from .combine import combine_analysis
from .metrics import downscale
from .server import ServerPhotoAnalyzer, server_unavailable_partial

logger = logging.getLogger(__name__)


def downscale_for_analysis(image, max_dimension: int = 512) -> str:
    """Base64 JPEG (quality 85) of the image fitted inside max_dimension."""
    small = downscale(image, max_dimension).convert("RGB")
    buffer = io.BytesIO()
    small.save(buffer, format="JPEG", quality=85)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


async def analyze_photo(
    data: bytes,
    kind: PhotoKind,
    server: ServerPhotoAnalyzer | None = None,
    config: AnalysisConfig | None = None,
) -> PhotoAnalysisResult:
    """Analyze an uploaded photo. Never raises for bad image content."""
    config = config or AnalysisConfig()
    server = server or ServerPhotoAnalyzer(config)

    try:
        image = open_image(data)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Could not decode upload for analysis: %s", exc)
        # Client side reports the decode failure as analysis-error
        client_partial = analyze_photo_client(data, kind, config.downscale_max)
        return combine_analysis(kind, client_partial, server_unavailable_partial(), config.version)

    client_partial = await asyncio.to_thread(analyze_photo_client, image, kind, config.downscale_max)

    server_partial: PhotoAnalysisPartial
    try:
        image_base64 = await asyncio.to_thread(downscale_for_analysis, image, config.downscale_max)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Could not prepare image for server analysis: %s", exc)
        server_partial = server_unavailable_partial()
    else:
        width, height = image.size
        server_partial = await server.analyze(kind, image_base64, width, height)

    return combine_analysis(kind, client_partial, server_partial, config.version)
