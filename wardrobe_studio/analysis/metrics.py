"""Pixel statistics shared by the client and server heuristics."""

from __future__ import annotations

import numpy as np
from PIL import Image

LAPLACIAN_KERNEL = np.array([
    [0, -1, 0],
    [-1, 4, -1],
    [0, -1, 0],
], dtype=np.float64)

SOBEL_X = np.array([
    [-1, 0, 1],
    [-2, 0, 2],
    [-1, 0, 1],
], dtype=np.float64)

SOBEL_Y = np.array([
    [-1, -2, -1],
    [0, 0, 0],
    [1, 2, 1],
], dtype=np.float64)


def downscale(image: Image.Image, max_dimension: int = 512) -> Image.Image:
    """Copy of `image` fitted inside max_dimension, never upscaled."""
    copy = image.copy()
    copy.thumbnail((max_dimension, max_dimension), Image.Resampling.BILINEAR)
    return copy


def rgb_array(image: Image.Image) -> np.ndarray:
    return np.asarray(image.convert("RGB"), dtype=np.float64)


def channel_mean_gray(rgb: np.ndarray) -> np.ndarray:
    """Unweighted (R+G+B)/3 gray buffer, as used for blur and edges."""
    return rgb.mean(axis=2)


def luma(rgb: np.ndarray) -> np.ndarray:
    """Perceptual luminance in [0, 1]."""
    return (0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]) / 255.0


def convolve3x3(gray: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    """Valid-mode 3x3 correlation; output is (h-2, w-2)."""
    h, w = gray.shape
    out = np.zeros((h - 2, w - 2), dtype=np.float64)
    for dy in range(3):
        for dx in range(3):
            k = kernel[dy, dx]
            if k:
                out += k * gray[dy:dy + h - 2, dx:dx + w - 2]
    return out


def laplacian_variance(gray: np.ndarray) -> float:
    """Variance of the absolute Laplacian response. Low values mean blur."""
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        return 0.0
    response = np.abs(convolve3x3(gray, LAPLACIAN_KERNEL))
    return float(response.var())


def edge_density(gray: np.ndarray, threshold: float = 30.0) -> float:
    """Fraction of interior pixels whose Sobel magnitude exceeds threshold."""
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        return 0.0
    gx = convolve3x3(gray, SOBEL_X)
    gy = convolve3x3(gray, SOBEL_Y)
    magnitude = np.hypot(gx, gy)
    return float((magnitude > threshold).mean())


def clipped_fractions(rgb: np.ndarray) -> tuple[float, float]:
    """(highlights, shadows): share of pixels with every channel >250 / <5."""
    highlights = np.all(rgb > 250, axis=2).mean()
    shadows = np.all(rgb < 5, axis=2).mean()
    return float(highlights), float(shadows)


def region_mean(gray: np.ndarray, left: int, top: int, width: int, height: int) -> float:
    """Mean of a clamped rectangle of an 8-bit gray buffer, in [0, 1]."""
    h, w = gray.shape
    x0 = max(0, min(left, w - 1))
    y0 = max(0, min(top, h - 1))
    x1 = max(x0 + 1, min(x0 + width, w))
    y1 = max(y0 + 1, min(y0 + height, h))
    return float(gray[y0:y1, x0:x1].mean()) / 255.0


def centered_square_mean(gray: np.ndarray, fraction: float) -> float:
    """Mean brightness of a centred square whose side is fraction * min(h, w)."""
    h, w = gray.shape
    size = max(1, int(min(h, w) * fraction))
    return region_mean(gray, w // 2 - size // 2, h // 2 - size // 2, size, size)


def strip_variance(gray: np.ndarray, width: int) -> float:
    """Variance of the left border strip, normalized by 255^2 and capped at 1."""
    strip = gray[:, :max(1, min(width, gray.shape[1]))]
    return float(min(1.0, strip.var() / (255.0 * 255.0)))
