"""Image normalization for vendor API constraints.

The image-edit vendor wants a square RGBA PNG under 4MB. Uploads are
normalized with `process_image_for_upload`, padded with `pad_image_to_square`
before the call, and trimmed back with `crop_to_aspect_ratio` afterwards so the
subject keeps its original proportions.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from ..config import NormalizeConfig
from ..errors import ImageDecodeError, ImageTooLargeError

logger = logging.getLogger(__name__)

EDIT_SIZES = (256, 512, 1024)
ASPECT_TOLERANCE = 0.01


@dataclass(frozen=True)
class PaddedImage:
    """A square canvas plus what is needed to undo the padding."""
    image: Image.Image
    original_size: tuple[int, int]
    offset: tuple[int, int]

    @property
    def aspect_ratio(self) -> float:
        width, height = self.original_size
        return width / height


def open_image(data: bytes) -> Image.Image:
    """Decode bytes and apply the EXIF orientation."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ImageDecodeError(f"Could not decode image: {exc}") from exc
    return ImageOps.exif_transpose(image)


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def fit_inside(image: Image.Image, max_dimension: int) -> Image.Image:
    """Resize to fit a max_dimension box, keeping aspect ratio. Never upscales."""
    width, height = image.size
    scale = min(1.0, max_dimension / max(width, height))
    if scale >= 1.0:
        return image
    new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
    return image.resize(new_size, Image.Resampling.LANCZOS)


def process_image_for_upload(data: bytes, config: NormalizeConfig | None = None) -> bytes:
    """Normalize an upload into an RGBA PNG that fits the vendor size ceiling.

    Shrinks the target dimension by `1 - shrink_factor` per attempt while the
    encoded PNG is too big, then tries a fixed fallback dimension before giving up.

    Raises:
        ImageDecodeError: the bytes are not an image.
        ImageTooLargeError: the image cannot be shrunk under the ceiling.
    """
    config = config or NormalizeConfig()
    image = open_image(data).convert("RGBA")

    target = min(config.max_dimension, max(image.size))
    output = encode_png(fit_inside(image, target))

    attempts = 0
    while len(output) > config.max_bytes and attempts < config.max_attempts:
        attempts += 1
        target = max(1, int(target * config.shrink_factor))
        output = encode_png(fit_inside(image, target))
        logger.debug("Normalize attempt %d: %dpx -> %d bytes", attempts, target, len(output))

    if len(output) > config.max_bytes and target > config.fallback_dimension:
        output = encode_png(fit_inside(image, config.fallback_dimension))

    if len(output) > config.max_bytes:
        raise ImageTooLargeError(len(output), config.max_bytes)

    return output


def pad_image_to_square(image: Image.Image) -> PaddedImage:
    """Centre the image on a transparent square canvas.

    Odd remainders put the extra pixel on the right/bottom side.
    """
    width, height = image.size
    side = max(width, height)
    left = (side - width) // 2
    top = (side - height) // 2

    canvas = Image.new("RGBA", (side, side), (0, 0, 0, 0))
    canvas.paste(image.convert("RGBA"), (left, top))
    return PaddedImage(image=canvas, original_size=(width, height), offset=(left, top))


def crop_to_aspect_ratio(
    image: Image.Image,
    target_ratio: float,
    tolerance: float = ASPECT_TOLERANCE,
) -> Image.Image:
    """Centre-crop to target_ratio (width / height); no-op within tolerance."""
    width, height = image.size
    current = width / height
    if abs(current - target_ratio) / target_ratio <= tolerance:
        return image

    if current > target_ratio:
        new_width = max(1, round(height * target_ratio))
        left = (width - new_width) // 2
        return image.crop((left, 0, left + new_width, height))

    new_height = max(1, round(width / target_ratio))
    top = (height - new_height) // 2
    return image.crop((0, top, width, top + new_height))


def select_edit_size(side: int) -> int:
    """Smallest supported square edit size that holds `side`, else the largest."""
    for size in EDIT_SIZES:
        if side <= size:
            return size
    return EDIT_SIZES[-1]
