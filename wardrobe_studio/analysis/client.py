"""Quick photo quality checks: resolution, blur, brightness and clutter."""

import logging

from PIL import Image

from ..imaging.normalize import open_image
from ..models import PhotoAnalysisPartial, PhotoIssue, PhotoKind, Severity
from . import metrics as m

logger = logging.getLogger(__name__)


# Tuneable thresholds
THRESHOLDS = {
    "resolution": {"fail": 800, "warn": 1200},
    "blur": {"fail": 50.0, "warn": 100.0},
    "brightness": {"min": 0.15, "max": 0.85, "clipped_warn": 0.05},
    "edge_density": {"warn": 0.3},
    "aspect_ratio": {"too_narrow": 0.4, "too_wide": 2.5},
}


def _by_kind(kind: PhotoKind, actor: str, garment: str) -> str:
    return actor if kind == "actor" else garment


def analyze_photo_client(
    image: Image.Image | bytes,
    kind: PhotoKind,
    max_dimension: int = 512,
) -> PhotoAnalysisPartial:
    """Cheap heuristics on a full-size image and its downscaled copy.

    Never raises: an internal failure becomes a single `analysis-error` warning.
    """
    issues: list[PhotoIssue] = []
    metrics: dict[str, float] = {}

    try:
        if isinstance(image, (bytes, bytearray)):
            image = open_image(bytes(image))

        width, height = image.size
        long_edge = max(width, height)
        aspect_ratio = width / height

        metrics["resolution_width"] = width
        metrics["resolution_height"] = height
        metrics["resolution_long_edge"] = long_edge
        metrics["aspect_ratio"] = aspect_ratio

        res = THRESHOLDS["resolution"]
        if long_edge < res["fail"]:
            issues.append(PhotoIssue(
                id="resolution-too-low",
                severity=Severity.FAIL,
                message=_by_kind(kind,
                    "Photo resolution is too low for accurate try-on",
                    "Image resolution is too low for accurate cutout"),
                fix="Use a camera or phone with at least 1200px on the longest side",
                metric=long_edge,
            ))
        elif long_edge < res["warn"]:
            issues.append(PhotoIssue(
                id="resolution-low",
                severity=Severity.WARN,
                message=_by_kind(kind,
                    "Photo resolution may be too low for best results",
                    "Image resolution may be too low for best results"),
                fix="Use a higher resolution photo (at least 1200px recommended)",
                metric=long_edge,
            ))

        aspect = THRESHOLDS["aspect_ratio"]
        if aspect_ratio < aspect["too_narrow"]:
            issues.append(PhotoIssue(
                id="aspect-too-narrow",
                severity=Severity.WARN,
                message="Photo is very narrow (portrait orientation)",
                fix=_by_kind(kind,
                    "Ensure the full upper body is visible. Consider a wider crop if needed.",
                    "Ensure the full garment is visible in frame."),
                metric=aspect_ratio,
            ))
        elif aspect_ratio > aspect["too_wide"]:
            issues.append(PhotoIssue(
                id="aspect-too-wide",
                severity=Severity.WARN,
                message="Photo is very wide (landscape orientation)",
                fix=_by_kind(kind,
                    "Ensure the person fills the frame appropriately.",
                    "Ensure the garment fills the frame appropriately."),
                metric=aspect_ratio,
            ))

        rgb = m.rgb_array(m.downscale(image, max_dimension))
        gray = m.channel_mean_gray(rgb)

        blur_score = m.laplacian_variance(gray)
        metrics["blur_score"] = blur_score

        blur = THRESHOLDS["blur"]
        if blur_score < blur["fail"]:
            issues.append(PhotoIssue(
                id="blur-severe",
                severity=Severity.FAIL,
                message="Photo appears very blurry",
                fix="Take a new photo with steady hands or use a tripod. Ensure the camera is in focus.",
                metric=blur_score,
            ))
        elif blur_score < blur["warn"]:
            issues.append(PhotoIssue(
                id="blur-moderate",
                severity=Severity.WARN,
                message="Photo may be slightly blurry",
                fix="Ensure the camera is in focus and there is no motion blur.",
                metric=blur_score,
            ))

        mean_luminance = float(m.luma(rgb).mean())
        clipped_highlights, clipped_shadows = m.clipped_fractions(rgb)
        metrics["mean_luminance"] = mean_luminance
        metrics["clipped_highlights"] = clipped_highlights
        metrics["clipped_shadows"] = clipped_shadows

        brightness = THRESHOLDS["brightness"]
        if mean_luminance < brightness["min"]:
            issues.append(PhotoIssue(
                id="brightness-too-dark",
                severity=Severity.WARN,
                message="Photo is too dark",
                fix="Improve lighting or increase exposure. Ensure the subject is well-lit.",
                metric=mean_luminance,
            ))
        elif mean_luminance > brightness["max"]:
            issues.append(PhotoIssue(
                id="brightness-too-bright",
                severity=Severity.WARN,
                message="Photo is too bright or overexposed",
                fix="Reduce lighting or decrease exposure. Avoid direct bright light sources.",
                metric=mean_luminance,
            ))

        if max(clipped_highlights, clipped_shadows) > brightness["clipped_warn"]:
            issues.append(PhotoIssue(
                id="brightness-clipped",
                severity=Severity.WARN,
                message="Photo has overexposed or underexposed areas",
                fix="Adjust lighting to avoid extreme highlights or shadows. Use even, diffused lighting.",
                metric=max(clipped_highlights, clipped_shadows),
            ))

        density = m.edge_density(gray)
        metrics["edge_density"] = density

        if density > THRESHOLDS["edge_density"]["warn"]:
            issues.append(PhotoIssue(
                id="clutter-high",
                severity=Severity.WARN,
                message=_by_kind(kind,
                    "Photo may have a busy or cluttered background",
                    "Image may have a busy or cluttered background"),
                fix=_by_kind(kind,
                    "Use a plain, uncluttered background for best results.",
                    "Use a plain, contrasting background for easier cutout."),
                metric=density,
            ))

        # Person may be too far from the camera
        if kind == "actor" and long_edge < 1500 and width < 800:
            issues.append(PhotoIssue(
                id="actor-too-small",
                severity=Severity.WARN,
                message="Person may be too small in frame",
                fix="Move closer or zoom in to ensure the person fills more of the frame.",
                metric=long_edge,
            ))
        elif kind == "garment" and long_edge < 1000:
            issues.append(PhotoIssue(
                id="garment-too-small",
                severity=Severity.WARN,
                message="Garment may be too small in frame",
                fix="Ensure the garment fills most of the frame for better cutout accuracy.",
                metric=long_edge,
            ))

    except Exception as exc:  # noqa: BLE001
        logger.warning("Client-side photo analysis failed: %s", exc)
        issues = [PhotoIssue(
            id="analysis-error",
            severity=Severity.WARN,
            message="Could not complete quick analysis",
            fix="Please try again or proceed with upload.",
        )]

    return PhotoAnalysisPartial(issues=issues, metrics=metrics or None)
