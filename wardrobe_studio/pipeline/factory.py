"""Wire the pipeline's collaborators from configuration."""

from dataclasses import dataclass

from ..analysis import ServerPhotoAnalyzer
from ..config import StudioConfig, load_config
from ..models import TryOnResult
from ..services import (
    ImageEditClient,
    InMemoryJobStore,
    LocalObjectStorage,
    MemoryCache,
    TryOnProvider,
    get_tryon_provider,
)
from .orchestrator import JobOrchestrator
from .workflow import StudioWorkflow


@dataclass
class StudioServices:
    config: StudioConfig
    provider: TryOnProvider
    store: InMemoryJobStore
    storage: LocalObjectStorage
    image_editor: ImageEditClient
    analyzer: ServerPhotoAnalyzer
    result_cache: MemoryCache[list[TryOnResult]]
    orchestrator: JobOrchestrator

    def workflow(self, created_by: str | None = None) -> StudioWorkflow:
        """A studio session sharing the process-wide result cache."""
        return StudioWorkflow(self.orchestrator, self.result_cache, created_by)


def build_services(config: StudioConfig | None = None) -> StudioServices:
    config = config or load_config()
    provider = get_tryon_provider(config)
    store = InMemoryJobStore()
    storage = LocalObjectStorage(
        config.storage_dir,
        config.public_base_url,
        config.storage_signing_secret,
    )
    image_editor = ImageEditClient(config.openai_api_key, config.image_edit, config.normalize)
    result_cache = MemoryCache(max_entries=config.result_cache_max_entries)
    orchestrator = JobOrchestrator(
        provider=provider,
        store=store,
        storage=storage,
        config=config,
        image_editor=image_editor,
        result_cache=result_cache,
    )
    return StudioServices(
        config=config,
        provider=provider,
        store=store,
        storage=storage,
        image_editor=image_editor,
        analyzer=ServerPhotoAnalyzer(config.analysis),
        result_cache=result_cache,
        orchestrator=orchestrator,
    )
