"""Image normalization helpers."""

from .normalize import (
    PaddedImage,
    open_image,
    encode_png,
    process_image_for_upload,
    pad_image_to_square,
    crop_to_aspect_ratio,
    select_edit_size,
)

__all__ = [
    "PaddedImage",
    "open_image",
    "encode_png",
    "process_image_for_upload",
    "pad_image_to_square",
    "crop_to_aspect_ratio",
    "select_edit_size",
]
