"""Try-on generation pipeline."""

from .orchestrator import CancellationToken, JobOrchestrator
from .workflow import StudioWorkflow
from .factory import StudioServices, build_services

__all__ = [
    "CancellationToken",
    "JobOrchestrator",
    "StudioWorkflow",
    "StudioServices",
    "build_services",
]
