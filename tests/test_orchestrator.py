"""Tests for the job orchestrator state machine."""

import base64
import random
from urllib.parse import parse_qs, unquote, urlsplit
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from wardrobe_studio.errors import ErrorKind, PollCancelledError, TryOnError
from wardrobe_studio.models import JobStatus, TryOnParams
from wardrobe_studio.pipeline import CancellationToken, JobOrchestrator
from wardrobe_studio.services import LocalObjectStorage, MemoryCache, StubProvider
from wardrobe_studio.services.providers import StatusResult, SubmitResult, VendorImage

from conftest import ScriptedProvider

RESULT_URL = "https://cdn.example.com/J/output_0.png"


@pytest.fixture
def fetched():
    """URLs the orchestrator downloaded."""
    return []


@pytest.fixture
def http_client(small_png, fetched):
    def handler(request):
        fetched.append(str(request.url))
        return httpx.Response(200, content=small_png, headers={"Content-Type": "image/png"})
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def make_orchestrator(job_store, object_storage, studio_config, http_client, fake_sleep):
    def make(provider, image_editor=None, config=None, client=None, storage=None, result_cache=None):
        return JobOrchestrator(
            provider=provider,
            store=job_store,
            storage=storage or object_storage,
            config=config or studio_config,
            image_editor=image_editor,
            http_client=client or http_client,
            sleep=fake_sleep,
            rng=random.Random(1234),
            result_cache=result_cache,
        )
    return make


@pytest.fixture
def params():
    return TryOnParams(
        model_image="https://img.example.com/actor.png",
        garment_image="https://img.example.com/garment.png",
    )


def async_submit(job_id="J"):
    return SubmitResult(job_id=job_id, is_async=True, request_id=job_id)


def succeeded(url=RESULT_URL):
    return StatusResult(status="succeeded", outputs=[VendorImage(url=url)])


class TestCreateAndSubmit:
    @pytest.mark.asyncio
    async def test_create_job_is_queued_with_seed(self, make_orchestrator, job_store, params):
        orchestrator = make_orchestrator(ScriptedProvider())

        job = await orchestrator.create_job(params, created_by="stylist")

        assert job.status == JobStatus.QUEUED
        assert job.settings["seed"] is not None
        assert job.created_by == "stylist"
        assert (await job_store.get(job.id)).status == JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_explicit_seed_kept(self, make_orchestrator, params):
        job = await make_orchestrator(ScriptedProvider()).create_job(params.model_copy(update={"seed": 99}))

        assert job.settings["seed"] == 99

    @pytest.mark.asyncio
    async def test_async_submit_moves_to_running(self, make_orchestrator, params):
        provider = ScriptedProvider(submit_result=async_submit("J7"))
        orchestrator = make_orchestrator(provider)

        job = await orchestrator.submit(await orchestrator.create_job(params))

        assert job.status == JobStatus.RUNNING
        assert job.provider_job_id == "J7"
        model, garment, options = provider.submit_tryon.call_args.args
        assert model == params.model_image
        assert "model_image" not in options
        assert options["seed"] == job.settings["seed"]

    @pytest.mark.asyncio
    async def test_sync_submit_persists_and_succeeds(self, make_orchestrator, object_storage, small_png, params):
        provider = ScriptedProvider(submit_result=SubmitResult(outputs=[VendorImage(url=RESULT_URL)]))
        orchestrator = make_orchestrator(provider)

        job = await orchestrator.submit(await orchestrator.create_job(params))

        assert job.status == JobStatus.SUCCEEDED
        assert job.result_ref == f"results/{job.id}_0.png"
        assert await object_storage.download("tryons", job.result_ref) == small_png

    @pytest.mark.asyncio
    async def test_submit_error_fails_job(self, make_orchestrator, job_store, params):
        provider = ScriptedProvider()
        provider.submit_tryon.side_effect = TryOnError(ErrorKind.MODERATION_REJECTED, "rejected")
        orchestrator = make_orchestrator(provider)
        job = await orchestrator.create_job(params)

        with pytest.raises(TryOnError) as exc_info:
            await orchestrator.submit(job)

        assert exc_info.value.kind == ErrorKind.MODERATION_REJECTED
        assert provider.submit_tryon.await_count == 1
        stored = await job_store.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error_message == "rejected"

    @pytest.mark.asyncio
    async def test_transient_submit_errors_are_retried(self, make_orchestrator, recorded_sleeps, params):
        provider = ScriptedProvider()
        provider.submit_tryon.side_effect = [
            TryOnError(ErrorKind.RATE_LIMIT, "busy"),
            async_submit("J2"),
        ]
        orchestrator = make_orchestrator(provider)

        job = await orchestrator.submit(await orchestrator.create_job(params))

        assert job.provider_job_id == "J2"
        assert recorded_sleeps == [1]

    @pytest.mark.asyncio
    async def test_sync_persist_failure_leaves_job_running(self, make_orchestrator, small_png, params):
        responses = [httpx.Response(503), httpx.Response(200, content=small_png)]
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: responses.pop(0)))
        provider = ScriptedProvider(submit_result=SubmitResult(outputs=[VendorImage(url=RESULT_URL)]))
        orchestrator = make_orchestrator(provider, client=client)

        job = await orchestrator.submit(await orchestrator.create_job(params))

        assert job.status == JobStatus.RUNNING
        assert job.pending_result_urls == [RESULT_URL]

        job = await orchestrator.refresh(job)

        assert job.status == JobStatus.SUCCEEDED
        assert job.pending_result_urls == []
        assert job.result_refs == [f"results/{job.id}_0.png"]


class TestRefresh:
    @pytest.mark.asyncio
    async def test_async_job_completes(self, make_orchestrator, object_storage, fetched, small_png, params):
        """running, running, then succeeded with an output URL."""
        provider = ScriptedProvider(
            submit_result=async_submit("J"),
            statuses=[StatusResult(status="running"), StatusResult(status="running"), succeeded()],
        )
        orchestrator = make_orchestrator(provider)
        job = await orchestrator.submit(await orchestrator.create_job(params))

        job = await orchestrator.wait_for_job(job)

        assert job.status == JobStatus.SUCCEEDED
        assert provider.get_tryon_status.await_count == 3
        assert fetched == [RESULT_URL]
        assert await object_storage.download("tryons", f"results/{job.id}_0.png") == small_png

    @pytest.mark.asyncio
    async def test_vendor_failure(self, make_orchestrator, params):
        provider = ScriptedProvider(
            submit_result=async_submit(),
            statuses=[StatusResult(status="failed", error="garment not detected")],
        )
        orchestrator = make_orchestrator(provider)
        job = await orchestrator.submit(await orchestrator.create_job(params))

        job = await orchestrator.refresh(job)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "garment not detected"

    @pytest.mark.asyncio
    async def test_status_errors_leave_job_unchanged(self, make_orchestrator, params):
        provider = ScriptedProvider(
            submit_result=async_submit(),
            statuses=[httpx.ConnectError("down"), succeeded()],
        )
        orchestrator = make_orchestrator(provider)
        job = await orchestrator.submit(await orchestrator.create_job(params))

        job = await orchestrator.refresh(job)
        assert job.status == JobStatus.RUNNING

        job = await orchestrator.refresh(job)
        assert job.status == JobStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_terminal_job_is_not_polled(self, make_orchestrator, params):
        provider = ScriptedProvider(submit_result=async_submit(), statuses=[succeeded()])
        orchestrator = make_orchestrator(provider)
        job = await orchestrator.submit(await orchestrator.create_job(params))
        job = await orchestrator.refresh(job)

        again = await orchestrator.refresh(job)

        assert again.status == JobStatus.SUCCEEDED
        assert provider.get_tryon_status.await_count == 1

    @pytest.mark.asyncio
    async def test_fetch_and_persist_is_idempotent(self, make_orchestrator, object_storage, small_png, params):
        orchestrator = make_orchestrator(ScriptedProvider())
        job = await orchestrator.create_job(params)

        first = await orchestrator.fetch_and_persist(job, [RESULT_URL])
        second = await orchestrator.fetch_and_persist(job, [RESULT_URL])

        assert first == second == [f"results/{job.id}_0.png"]
        assert await object_storage.download("tryons", first[0]) == small_png


class TestWaitForJob:
    @pytest.mark.asyncio
    async def test_timeout_does_not_cancel_vendor_job(self, make_orchestrator, recorded_sleeps, params):
        provider = ScriptedProvider(
            submit_result=async_submit(),
            statuses=[StatusResult(status="running")] * 10,
        )
        orchestrator = make_orchestrator(provider)
        job = await orchestrator.submit(await orchestrator.create_job(params))

        with pytest.raises(TryOnError) as exc_info:
            await orchestrator.wait_for_job(job)

        assert exc_info.value.kind == ErrorKind.API_TIMEOUT
        assert recorded_sleeps == [2.0, 2.0, 2.0]
        assert provider.get_tryon_status.await_count == 4
        provider.cancel_tryon.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancellation_forwards_to_vendor(self, make_orchestrator, params):
        provider = ScriptedProvider(
            submit_result=async_submit("J5"),
            statuses=[StatusResult(status="running")] * 3,
        )
        orchestrator = make_orchestrator(provider)
        job = await orchestrator.submit(await orchestrator.create_job(params))
        token = CancellationToken()
        token.cancel()

        with pytest.raises(PollCancelledError):
            await orchestrator.wait_for_job(job, token)

        provider.cancel_tryon.assert_awaited_once_with("J5")

    @pytest.mark.asyncio
    async def test_vendor_side_cancel_fails_job(self, make_orchestrator, job_store, params):
        provider = ScriptedProvider(
            submit_result=async_submit("J5"),
            statuses=[StatusResult(status="running")],
        )
        provider.cancel_tryon.return_value = True
        orchestrator = make_orchestrator(provider)
        job = await orchestrator.submit(await orchestrator.create_job(params))
        token = CancellationToken()
        token.cancel()

        with pytest.raises(PollCancelledError):
            await orchestrator.wait_for_job(job, token)

        assert (await job_store.get(job.id)).status == JobStatus.FAILED


class TestTouchUp:
    @pytest.fixture
    def touch_up_config(self, studio_config):
        return studio_config.model_copy(update={"touch_up": True})

    @pytest.mark.asyncio
    async def test_touch_up_applied(self, make_orchestrator, object_storage, touch_up_config, params):
        editor = MagicMock(available=True)
        editor.postprocess_tryon_image = AsyncMock(return_value=b"touched")
        provider = ScriptedProvider(submit_result=SubmitResult(outputs=[VendorImage(url=RESULT_URL)]))
        orchestrator = make_orchestrator(provider, image_editor=editor, config=touch_up_config)

        job = await orchestrator.submit(await orchestrator.create_job(params))

        assert job.status == JobStatus.SUCCEEDED
        assert await object_storage.download("tryons", job.result_ref) == b"touched"

    @pytest.mark.asyncio
    async def test_touch_up_failure_keeps_raw_result(
        self, make_orchestrator, object_storage, touch_up_config, small_png, params
    ):
        editor = MagicMock(available=True)
        editor.postprocess_tryon_image = AsyncMock(side_effect=TryOnError(ErrorKind.API_TIMEOUT, "slow"))
        provider = ScriptedProvider(submit_result=SubmitResult(outputs=[VendorImage(url=RESULT_URL)]))
        orchestrator = make_orchestrator(provider, image_editor=editor, config=touch_up_config)

        job = await orchestrator.submit(await orchestrator.create_job(params))

        assert job.status == JobStatus.SUCCEEDED
        assert await object_storage.download("tryons", job.result_ref) == small_png

    @pytest.mark.asyncio
    async def test_touch_up_off_by_default(self, make_orchestrator, params):
        editor = MagicMock(available=True)
        editor.postprocess_tryon_image = AsyncMock(return_value=b"touched")
        provider = ScriptedProvider(submit_result=SubmitResult(outputs=[VendorImage(url=RESULT_URL)]))

        orchestrator = make_orchestrator(provider, image_editor=editor)

        await orchestrator.submit(await orchestrator.create_job(params))

        editor.postprocess_tryon_image.assert_not_awaited()


class TestGenerate:
    @pytest.mark.asyncio
    async def test_multi_sample_seeds_are_sequential(self, make_orchestrator, small_png_data_url):
        params = TryOnParams(
            model_image=small_png_data_url,
            garment_image="https://img.example.com/garment.png",
            num_samples=3,
        )

        results = await make_orchestrator(StubProvider()).generate(params)

        seeds = [r.seed for r in results]
        assert len(results) == 3
        assert seeds == [seeds[0], seeds[0] + 1, seeds[0] + 2]
        assert all(r.image_url.startswith("http://testserver/storage/tryons/results/") for r in results)
        assert all(r.params.seed == seeds[0] for r in results)

    @pytest.mark.asyncio
    async def test_return_base64(self, make_orchestrator, small_png, small_png_data_url):
        params = TryOnParams(
            model_image=small_png_data_url,
            garment_image="https://img.example.com/garment.png",
            return_base64=True,
        )

        [result] = await make_orchestrator(StubProvider()).generate(params)

        header, encoded = result.base64.split(",", 1)
        assert header == "data:image/png;base64"
        assert base64.b64decode(encoded) == small_png

    @pytest.mark.asyncio
    async def test_failed_job_raises(self, make_orchestrator, params):
        provider = ScriptedProvider(
            submit_result=async_submit(),
            statuses=[StatusResult(status="failed", error="bad pose")],
        )

        with pytest.raises(TryOnError) as exc_info:
            await make_orchestrator(provider).generate(params)

        assert exc_info.value.message == "bad pose"


def signature_is_valid(storage, url):
    parts = urlsplit(url)
    bucket, path = unquote(parts.path).removeprefix("/storage/").split("/", 1)
    query = parse_qs(parts.query)
    return storage.verify(bucket, path, int(query["expires"][0]), query["signature"][0])


class TestResultCache:
    @pytest.mark.asyncio
    async def test_async_job_is_cached_when_a_poll_completes_it(self, make_orchestrator, params):
        cache = MemoryCache()
        provider = ScriptedProvider(submit_result=async_submit(), statuses=[succeeded()])
        orchestrator = make_orchestrator(provider, result_cache=cache)

        job = await orchestrator.submit(await orchestrator.create_job(params, cache_key="fp"))
        assert job.status == JobStatus.RUNNING
        assert cache.get("fp") is None

        job = await orchestrator.refresh(job)

        [cached] = cache.get("fp")
        assert job.status == JobStatus.SUCCEEDED
        assert cached.job_id == job.id
        assert cached.base64 is None

    @pytest.mark.asyncio
    async def test_jobs_without_key_are_not_cached(self, make_orchestrator, small_png_data_url):
        cache = MemoryCache()
        params = TryOnParams(model_image=small_png_data_url, garment_image="https://img.example.com/g.png")

        await make_orchestrator(StubProvider(), result_cache=cache).generate(params)

        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_reissue_signs_fresh_urls(self, make_orchestrator, studio_config, small_png_data_url):
        now = [1_000_000.0]
        storage = LocalObjectStorage(
            studio_config.storage_dir, studio_config.public_base_url, "test-secret", clock=lambda: now[0],
        )
        orchestrator = make_orchestrator(StubProvider(), storage=storage)
        params = TryOnParams(
            model_image=small_png_data_url, garment_image="https://img.example.com/g.png", num_samples=2,
        )
        results = await orchestrator.generate(params)

        now[0] += 7200
        reissued = await orchestrator.reissue(results)

        assert not signature_is_valid(storage, results[0].image_url)
        assert all(signature_is_valid(storage, r.image_url) for r in reissued)
        assert [r.seed for r in reissued] == [r.seed for r in results]
        assert [r.created_at for r in reissued] == [r.created_at for r in results]

    @pytest.mark.asyncio
    async def test_reissue_adds_base64_when_asked(self, make_orchestrator, small_png, small_png_data_url):
        orchestrator = make_orchestrator(StubProvider())
        params = TryOnParams(model_image=small_png_data_url, garment_image="https://img.example.com/g.png")
        [result] = await orchestrator.generate(params)
        assert result.base64 is None

        [reissued] = await orchestrator.reissue([result], return_base64=True)

        assert base64.b64decode(reissued.base64.split(",", 1)[1]) == small_png

    @pytest.mark.asyncio
    async def test_reissue_keeps_results_of_unknown_jobs(self, make_orchestrator, small_png_data_url):
        orchestrator = make_orchestrator(StubProvider())
        params = TryOnParams(model_image=small_png_data_url, garment_image="https://img.example.com/g.png")
        [result] = await orchestrator.generate(params)
        orphan = result.model_copy(update={"job_id": "gone"})

        assert await orchestrator.reissue([orphan]) == [orphan]
