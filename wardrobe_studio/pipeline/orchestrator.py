"""Try-on job orchestration: create, submit, poll, persist."""

import asyncio
import base64
import logging
import random
from typing import Awaitable, Callable

import httpx

from ..config import StudioConfig
from ..errors import (
    Err,
    ErrorKind,
    PollCancelledError,
    TryOnError,
    capture,
    classify_exception,
)
from ..models import JobStatus, TryOnJob, TryOnParams, TryOnResult
from ..models.tryon import MAX_SEED
from ..services.cache import CacheBackend
from ..services.image_edit import ImageEditClient
from ..services.job_store import JobStore
from ..services.providers import TryOnProvider
from ..services.retry import with_retry
from ..services.storage import ObjectStorage, content_type_for

logger = logging.getLogger(__name__)


class CancellationToken:
    """Set by the studio session to stop a poll loop."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()


class JobOrchestrator:
    """Drives a TryOnJob through queued -> running -> succeeded/failed.

    The orchestrator owns lifecycle; the job store only persists records.
    Vendor results are copied into object storage at
    `results/{job_id}_{index}.{ext}`, overwriting on retry, so a failed
    persist can simply be repeated on the next poll tick.
    """

    def __init__(
        self,
        provider: TryOnProvider,
        store: JobStore,
        storage: ObjectStorage,
        config: StudioConfig | None = None,
        image_editor: ImageEditClient | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
        result_cache: CacheBackend[list[TryOnResult]] | None = None,
    ):
        self.provider = provider
        self.store = store
        self.storage = storage
        self.config = config or StudioConfig()
        self.image_editor = image_editor
        self._client = http_client
        self._sleep = sleep
        self._rng = rng or random.SystemRandom()
        self.result_cache = result_cache

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client used to fetch vendor outputs."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.vendor.timeout_s, follow_redirects=True)
        return self._client

    @property
    def bucket(self) -> str:
        return self.config.results_bucket

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_job(
        self,
        params: TryOnParams,
        created_by: str | None = None,
        cache_key: str | None = None,
    ) -> TryOnJob:
        """Store a queued job. A seed is picked here when the request has none,
        so multi-sample results carry sequential seeds.

        With a `cache_key` the results are written to the result cache when
        the job succeeds, whichever call completes it.
        """
        if params.seed is None:
            params = params.model_copy(
                update={"seed": self._rng.randint(0, MAX_SEED - (params.num_samples - 1))}
            )
        job = TryOnJob(
            provider=self.provider.name,
            settings=params.model_dump(mode="json"),
            created_by=created_by,
            cache_key=cache_key,
        )
        await self.store.save(job)
        logger.info("Created job %s: %s", job.id, params.log_summary())
        return job

    async def submit(self, job: TryOnJob) -> TryOnJob:
        params = TryOnParams(**job.settings)
        options = {
            key: value
            for key, value in params.vendor_inputs().items()
            if key not in ("model_image", "garment_image")
        }

        outcome = await capture(lambda: with_retry(
            lambda: self.provider.submit_tryon(params.model_image, params.garment_image, options),
            self.config.vendor.max_retries,
            job.id,
            sleep=self._sleep,
        ))

        if isinstance(outcome, Err):
            error = outcome.error
            logger.error("Job %s submission failed: %s", job.id, error.message)
            job.transition(JobStatus.FAILED, error_message=error.message)
            await self.store.save(job)
            raise error

        result = outcome.value
        if result.is_async:
            job.transition(JobStatus.RUNNING, provider_job_id=result.job_id)
            await self.store.save(job)
            logger.info("Job %s running as vendor job %s", job.id, result.job_id)
            return job

        refs = [output.ref for output in result.outputs]
        if not refs:
            error = TryOnError(ErrorKind.API_ERROR, "Vendor returned no results")
            job.transition(JobStatus.FAILED, error_message=error.message)
            await self.store.save(job)
            raise error

        job.provider_job_id = result.job_id
        return await self._complete(job, refs)

    async def refresh(self, job: TryOnJob) -> TryOnJob:
        """One poll tick. Terminal jobs come back unchanged."""
        if job.status.is_terminal:
            return job

        if job.pending_result_urls:
            return await self._complete(job, list(job.pending_result_urls))

        if not job.provider_job_id:
            return job

        outcome = await capture(lambda: self.provider.get_tryon_status(job.provider_job_id))
        if isinstance(outcome, Err):
            logger.warning("Status check for job %s failed: %s", job.id, outcome.error.message)
            return job

        status = outcome.value
        if status.status == "succeeded":
            return await self._complete(job, [output.ref for output in status.outputs])

        if status.status == "failed":
            job.transition(JobStatus.FAILED, error_message=status.error or "Try-on generation failed")
            await self.store.save(job)
            logger.info("Job %s failed at vendor: %s", job.id, job.error_message)
            return job

        if status.status == "running" and job.status == JobStatus.QUEUED:
            job.transition(JobStatus.RUNNING)
            await self.store.save(job)
        return job

    async def _complete(self, job: TryOnJob, refs: list[str]) -> TryOnJob:
        """Persist vendor outputs and mark the job succeeded.

        If persisting fails the job stays (or becomes) running with the
        outputs kept in `pending_result_urls` for the next tick.
        """
        try:
            stored = await self.fetch_and_persist(job, refs)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Persisting results for job %s failed, will retry: %s", job.id, exc)
            if job.status == JobStatus.QUEUED:
                job.transition(JobStatus.RUNNING, pending_result_urls=refs)
            else:
                job.touch(pending_result_urls=refs)
            await self.store.save(job)
            return job

        job.transition(JobStatus.SUCCEEDED, result_refs=stored, pending_result_urls=[])
        await self.store.save(job)
        logger.info("Job %s succeeded with %d result(s)", job.id, len(stored))
        await self._fill_cache(job)
        return job

    async def _fill_cache(self, job: TryOnJob):
        if self.result_cache is None or not job.cache_key:
            return
        # Cached without base64; hits are reissued per caller
        self.result_cache.set(job.cache_key, await self.results_for(job, return_base64=False))

    async def fetch_and_persist(self, job: TryOnJob, refs: list[str]) -> list[str]:
        """Download each vendor output and store it. Safe to repeat."""
        output_format = job.settings.get("output_format", "png")
        paths = []
        for index, ref in enumerate(refs):
            data = await self.fetch_output(ref)
            data, touched = await self._touch_up(job, data, index)
            extension = "png" if touched else output_format
            path = f"results/{job.id}_{index}.{extension}"
            await self.storage.upload(self.bucket, path, data)
            paths.append(path)
        return paths

    async def fetch_output(self, ref: str) -> bytes:
        """Bytes of a vendor output: URL, data URL, or bare base64."""
        if ref.startswith("data:"):
            _, _, encoded = ref.partition(",")
            return base64.b64decode(encoded)
        if ref.startswith(("http://", "https://")):
            try:
                response = await self.client.get(ref)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise classify_exception(exc) from exc
            return response.content
        return base64.b64decode(ref)

    async def _touch_up(self, job: TryOnJob, data: bytes, index: int) -> tuple[bytes, bool]:
        editor = self.image_editor
        if not self.config.touch_up or editor is None or not editor.available:
            return data, False
        try:
            return await editor.postprocess_tryon_image(data, request_id=f"{job.id}_{index}"), True
        except Exception as exc:  # noqa: BLE001
            logger.warning("Touch-up for job %s failed, keeping raw result: %s", job.id, exc)
            return data, False

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def wait_for_job(self, job: TryOnJob, token: CancellationToken | None = None) -> TryOnJob:
        """Poll until terminal, the time ceiling, or cancellation.

        Raises:
            TryOnError: API_TIMEOUT once the ceiling passes. The vendor job is
                left alone and may still finish later.
            PollCancelledError: the token was cancelled.
        """
        interval = self.config.polling.interval_s
        ceiling = self.config.polling.timeout_s
        loop = asyncio.get_running_loop()
        started = loop.time()
        waited = 0.0

        while True:
            job = await self.refresh(job)
            if job.status.is_terminal:
                return job

            if token is not None and token.cancelled:
                await self._cancel(job)
                raise PollCancelledError(f"Polling for job {job.id} was cancelled")

            elapsed = max(waited, loop.time() - started)
            if elapsed >= ceiling:
                logger.warning(
                    "Job %s (vendor job %s) still %s after %.0fs; leaving it orphaned",
                    job.id, job.provider_job_id, job.status.value, ceiling,
                )
                raise TryOnError(
                    ErrorKind.API_TIMEOUT,
                    "Try-on took too long. Please try again.",
                    {"job_id": job.id},
                )

            delay = min(interval, ceiling - elapsed)
            await self._sleep(delay)
            waited += delay

    async def _cancel(self, job: TryOnJob):
        if not job.provider_job_id:
            return
        outcome = await capture(lambda: self.provider.cancel_tryon(job.provider_job_id))
        if isinstance(outcome, Err) or not outcome.value:
            logger.info("Vendor job %s for job %s was not cancelled; it may still complete",
                        job.provider_job_id, job.id)
            return
        job.transition(JobStatus.FAILED, error_message="Cancelled")
        await self.store.save(job)

    # ------------------------------------------------------------------
    # End to end
    # ------------------------------------------------------------------

    async def generate(
        self,
        params: TryOnParams,
        created_by: str | None = None,
        token: CancellationToken | None = None,
    ) -> list[TryOnResult]:
        """Create, submit, wait and return the stored results."""
        job = await self.create_job(params, created_by)
        job = await self.submit(job)
        if not job.status.is_terminal:
            job = await self.wait_for_job(job, token)

        if job.status == JobStatus.FAILED:
            raise TryOnError(
                ErrorKind.API_ERROR,
                job.error_message or "Try-on generation failed",
                {"job_id": job.id},
            )
        return await self.results_for(job)

    async def results_for(self, job: TryOnJob, return_base64: bool | None = None) -> list[TryOnResult]:
        """TryOnResults for a succeeded job, with signed URLs and sequential seeds.

        `return_base64` overrides the job's own setting.
        """
        params = TryOnParams(**job.settings)
        include_base64 = params.return_base64 if return_base64 is None else return_base64
        results = []
        for index, ref in enumerate(job.result_refs):
            encoded = None
            if include_base64:
                data = await self.storage.download(self.bucket, ref)
                encoded = f"data:{content_type_for(ref)};base64,{base64.b64encode(data).decode('ascii')}"
            results.append(TryOnResult(
                image_url=self.storage.signed_url(self.bucket, ref),
                base64=encoded,
                seed=params.seed + index,
                params=params,
                request_id=job.provider_job_id or job.id,
                job_id=job.id,
            ))
        return results

    async def reissue(self, results: list[TryOnResult], return_base64: bool = False) -> list[TryOnResult]:
        """Cached results with freshly signed URLs, and base64 when asked for.

        Results whose job is no longer in the store come back unchanged.
        """
        fresh: dict[tuple[str, int], TryOnResult] = {}
        for job_id in dict.fromkeys(result.job_id for result in results if result.job_id):
            job = await self.store.get(job_id)
            if job is None or job.status != JobStatus.SUCCEEDED:
                continue
            for result in await self.results_for(job, return_base64=return_base64):
                fresh[(job_id, result.seed)] = result

        reissued = []
        for result in results:
            match = fresh.get((result.job_id, result.seed))
            if match is None:
                reissued.append(result)
            else:
                reissued.append(result.model_copy(update={"image_url": match.image_url, "base64": match.base64}))
        return reissued

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
