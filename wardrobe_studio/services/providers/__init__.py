"""Try-on providers and selection by name."""

import logging

from ...config import StudioConfig
from .base import StatusResult, SubmitResult, TryOnProvider, VendorImage
from .fashn import FashnProvider
from .stub import StubProvider

logger = logging.getLogger(__name__)


def get_tryon_provider(config: StudioConfig) -> TryOnProvider:
    """Build the provider named by `config.tryon_provider`; unknown names get the stub."""
    name = (config.tryon_provider or "stub").lower()
    if name == "stub":
        return StubProvider()
    if name == "fashn":
        return FashnProvider(config.fashn_api_key or "", config.vendor)
    logger.warning('Unknown provider "%s", falling back to stub', name)
    return StubProvider()


__all__ = [
    "TryOnProvider",
    "SubmitResult",
    "StatusResult",
    "VendorImage",
    "StubProvider",
    "FashnProvider",
    "get_tryon_provider",
]
