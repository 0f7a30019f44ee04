"""Two-phase studio workflow: cheap preview, then a seed-locked finalize."""

import logging
from datetime import datetime, timezone
from typing import Any

from ..errors import ErrorKind, TryOnError
from ..models import Mode, StudioSession, TryOnParams, TryOnResult
from ..services.cache import CacheBackend, MemoryCache, fingerprint
from .orchestrator import CancellationToken, JobOrchestrator

logger = logging.getLogger(__name__)


class StudioWorkflow:
    """Preview several candidates in performance mode, then re-render the
    chosen one in quality mode with exactly its seed.

    Generation goes through a fingerprint-keyed result cache, so repeating an
    identical request never reaches the vendor twice.
    """

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        cache: CacheBackend[list[TryOnResult]] | None = None,
        created_by: str | None = None,
    ):
        self.orchestrator = orchestrator
        self.cache = cache if cache is not None else MemoryCache()
        self.created_by = created_by
        self.session = StudioSession()

    async def preview(
        self,
        model_image: str,
        garment_image: str,
        settings: dict[str, Any] | None = None,
        num_samples: int = 1,
        seed: int | None = None,
        token: CancellationToken | None = None,
    ) -> list[TryOnResult]:
        """Generate `num_samples` candidates. Seed stays unset unless locked."""
        values = {
            **(settings or {}),
            "model_image": model_image,
            "garment_image": garment_image,
            "mode": Mode.PERFORMANCE,
            "num_samples": num_samples,
            "seed": seed,
        }
        params = TryOnParams.build(**values)
        results = await self._generate(params, token=token)
        self._start_session(params, results)
        return results

    def select(self, index: int) -> TryOnResult:
        if not 0 <= index < len(self.session.preview_results):
            raise TryOnError(
                ErrorKind.INVALID_INPUT,
                f"No preview candidate at index {index}",
                {"candidates": len(self.session.preview_results)},
            )
        self.session.selected_index = index
        return self.session.preview_results[index]

    async def finalize(
        self,
        index: int | None = None,
        token: CancellationToken | None = None,
    ) -> TryOnResult:
        """Quality re-render of one candidate with that candidate's seed."""
        if index is None:
            index = self.session.selected_index
        if index is None or self.session.params is None:
            raise TryOnError(ErrorKind.INVALID_INPUT, "Select a preview before finalizing")
        self.select(index)

        params = self.session.params.model_copy(update={
            "mode": Mode.QUALITY,
            "num_samples": 1,
            "seed": self.session.seeds[index],
        })
        results = await self._generate(params, token=token)

        self.session.final_result = results[0]
        self.session.timestamps.finalized = datetime.now(timezone.utc)
        return results[0]

    async def reroll(self, token: CancellationToken | None = None) -> list[TryOnResult]:
        """Drop the session seeds and generate a fresh preview."""
        if self.session.params is None:
            raise TryOnError(ErrorKind.INVALID_INPUT, "Nothing to reroll; run a preview first")
        params = self.session.params.model_copy(update={"seed": None})
        results = await self._generate(params, use_cache=False, token=token)
        self._start_session(params, results)
        return results

    async def recreate(self, token: CancellationToken | None = None) -> TryOnResult:
        """Repeat finalize on the selected candidate."""
        return await self.finalize(self.session.selected_index, token=token)

    def _start_session(self, params: TryOnParams, results: list[TryOnResult]):
        self.session = StudioSession(
            preview_results=results,
            seeds=[result.seed for result in results],
            params=params,
        )
        self.session.timestamps.preview = datetime.now(timezone.utc)

    async def _generate(
        self,
        params: TryOnParams,
        use_cache: bool = True,
        token: CancellationToken | None = None,
    ) -> list[TryOnResult]:
        key = fingerprint(params.model_image, params.garment_image, params)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("Result cache hit for %s", key[:12])
                return await self.orchestrator.reissue(cached, params.return_base64)

        results = await self.orchestrator.generate(params, self.created_by, token)
        if results:
            self.cache.set(key, results)
        return results
