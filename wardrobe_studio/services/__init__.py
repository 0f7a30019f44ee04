"""External collaborators: vendors, storage, caches."""

from .cache import CacheBackend, MemoryCache, fingerprint
from .retry import with_retry
from .storage import ObjectStorage, LocalObjectStorage
from .job_store import JobStore, InMemoryJobStore
from .image_edit import ImageEditClient
from .providers import TryOnProvider, StubProvider, FashnProvider, get_tryon_provider

__all__ = [
    "CacheBackend",
    "MemoryCache",
    "fingerprint",
    "with_retry",
    "ObjectStorage",
    "LocalObjectStorage",
    "JobStore",
    "InMemoryJobStore",
    "ImageEditClient",
    "TryOnProvider",
    "StubProvider",
    "FashnProvider",
    "get_tryon_provider",
]
