"""Data models for the Wardrobe Studio pipeline."""

from .photo import PhotoKind, Severity, PhotoIssue, PhotoAnalysisPartial, PhotoAnalysisResult
from .tryon import (
    Category,
    Mode,
    GarmentPhotoType,
    ModerationLevel,
    OutputFormat,
    TryOnParams,
    TryOnResult,
)
from .job import JobStatus, TryOnJob
from .session import StudioSession

__all__ = [
    "PhotoKind",
    "Severity",
    "PhotoIssue",
    "PhotoAnalysisPartial",
    "PhotoAnalysisResult",
    "Category",
    "Mode",
    "GarmentPhotoType",
    "ModerationLevel",
    "OutputFormat",
    "TryOnParams",
    "TryOnResult",
    "JobStatus",
    "TryOnJob",
    "StudioSession",
]
