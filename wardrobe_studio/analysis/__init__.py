"""Photo quality heuristics that gate uploads."""

from .client import analyze_photo_client
from .server import ServerPhotoAnalyzer
from .combine import combine_analysis
from .analyze import analyze_photo

__all__ = [
    "analyze_photo_client",
    "ServerPhotoAnalyzer",
    "combine_analysis",
    "analyze_photo",
]
