"""FastAPI server for Wardrobe Studio.

Serves photo quality analysis for uploads, try-on job submission and polling,
catalog photo tuning, and the signed storage proxy that lets the try-on
vendor fetch private images.
"""

import base64
import binascii
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from wardrobe_studio import __version__
from wardrobe_studio.analysis import analyze_photo
from wardrobe_studio.config import load_config
from wardrobe_studio.errors import ImageDecodeError, StorageError, TryOnError
from wardrobe_studio.models import PhotoAnalysisPartial, PhotoAnalysisResult, PhotoKind, TryOnJob, TryOnParams
from wardrobe_studio.pipeline import StudioServices, build_services
from wardrobe_studio.services import fingerprint
from wardrobe_studio.services.storage import content_type_for

logger = logging.getLogger(__name__)


app = FastAPI(
    title="Wardrobe Studio API",
    description="Photo quality gating and virtual try-on for costume styling",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class AnalyzeRequest(BaseModel):
    """Server-side heuristics on a downscaled copy of an upload."""
    kind: PhotoKind
    image_base64: str  # <=512px copy, raw base64 or data URL
    width: int = Field(gt=0)  # original width
    height: int = Field(gt=0)  # original height


class QualityRequest(BaseModel):
    """Full quality check on an upload."""
    kind: PhotoKind
    image_base64: str


class TuneRequest(BaseModel):
    kind: PhotoKind
    image_base64: str


class TuneResponse(BaseModel):
    image_base64: str


class TryOnRequest(BaseModel):
    """Legacy try-on submission: images plus free-form vendor options."""
    model_image: str | None = None
    garment_image: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    model_config = {"protected_namespaces": ()}


class TryOnV2Request(BaseModel):
    """Try-on submission with explicit parameters."""
    model_image: str | None = None
    garment_image: str | None = None
    category: str | None = None
    mode: str | None = None
    seed: int | None = None
    num_samples: int | None = None
    garment_photo_type: str | None = None
    segmentation_free: bool | None = None
    moderation_level: str | None = None
    output_format: str | None = None
    return_base64: bool | None = None

    model_config = {"protected_namespaces": ()}


# Initialize services (will be done on first request)
_services: StudioServices | None = None


def get_services() -> StudioServices:
    """Get or create the service container."""
    global _services
    if _services is None:
        _services = build_services(load_config())  # Loads from .env via pydantic-settings
    return _services


def decode_image_payload(value: str) -> bytes:
    """Bytes from raw base64 or a data URL."""
    encoded = value.partition(",")[2] if value.startswith("data:") else value
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageDecodeError("image_base64 is not valid base64") from exc


@app.exception_handler(TryOnError)
async def tryon_error_handler(request: Request, exc: TryOnError):
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.kind.value, exc.message)
    return JSONResponse(status_code=exc.kind.http_status, content=exc.to_dict())


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Wardrobe Studio API", "version": __version__}


@app.get("/health")
async def health():
    """Detailed health check."""
    services = get_services()
    return {
        "status": "ok",
        "provider": services.provider.name,
        "image_edit": "configured" if services.image_editor.available else "disabled",
    }


@app.post("/api/photo/analyze", response_model=PhotoAnalysisPartial)
async def analyze_upload(request: AnalyzeRequest):
    """Server heuristics for a downscaled upload. Degrades instead of failing."""
    services = get_services()
    return await services.analyzer.analyze(
        request.kind, request.image_base64, request.width, request.height
    )


@app.post("/api/photo/quality", response_model=PhotoAnalysisResult)
async def photo_quality(request: QualityRequest):
    """Client and server heuristics combined into one score."""
    services = get_services()
    data = decode_image_payload(request.image_base64)
    return await analyze_photo(data, request.kind, services.analyzer, services.config.analysis)


@app.post("/api/photo/tune", response_model=TuneResponse)
async def tune_photo(request: TuneRequest):
    """Actor clean-up or garment cut-out through the image-edit vendor."""
    services = get_services()
    data = decode_image_payload(request.image_base64)
    if request.kind == "actor":
        tuned = await services.image_editor.tune_actor_photo(data)
    else:
        tuned = await services.image_editor.tune_garment_photo(data)
    return TuneResponse(image_base64=f"data:image/png;base64,{base64.b64encode(tuned).decode('ascii')}")


@app.post("/api/tryon", response_model=TryOnJob, status_code=201)
async def create_tryon(request: TryOnRequest):
    """Create and submit a job. Async jobs come back running; poll GET /api/tryon/{id}."""
    services = get_services()
    params = TryOnParams.build(**{
        **request.options,
        "model_image": request.model_image,
        "garment_image": request.garment_image,
    })
    job = await services.orchestrator.create_job(params)
    return await services.orchestrator.submit(job)


@app.get("/api/tryon/{job_id}", response_model=TryOnJob)
async def get_tryon(job_id: str):
    """Current job state; advances running jobs by one poll tick."""
    services = get_services()
    job = await services.store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return await services.orchestrator.refresh(job)


@app.post("/api/tryon/v2")
async def create_tryon_v2(request: TryOnV2Request):
    """Cache-aware submission.

    Returns 201 with results when they are ready (or cached), 202 with the
    job id while the vendor is still working.
    """
    services = get_services()
    params = TryOnParams.build(**request.model_dump())
    key = fingerprint(params.model_image, params.garment_image, params)

    orchestrator = services.orchestrator
    cached = services.result_cache.get(key)
    if cached is not None:
        results = await orchestrator.reissue(cached, params.return_base64)
        return JSONResponse(status_code=201, content={
            "results": [r.model_dump(mode="json") for r in results],
            "cached": True,
        })

    # Cached under `key` on success, including a later poll completing it
    job = await orchestrator.submit(await orchestrator.create_job(params, cache_key=key))
    if not job.status.is_terminal:
        return JSONResponse(status_code=202, content={"job_id": job.id, "status": job.status.value})

    results = await orchestrator.results_for(job)
    return JSONResponse(status_code=201, content={
        "job_id": job.id,
        "results": [r.model_dump(mode="json") for r in results],
        "cached": False,
    })


@app.get("/storage/{bucket}/{path:path}")
async def storage_proxy(
    bucket: str,
    path: str,
    expires: int = Query(...),
    signature: str = Query(...),
):
    """Serve a stored object to holders of a valid signed URL."""
    storage = get_services().storage
    if not storage.verify(bucket, path, expires, signature):
        raise HTTPException(status_code=403, detail="Invalid or expired signature")
    try:
        data = await storage.download(bucket, path)
    except StorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(
        content=data,
        media_type=content_type_for(path),
        headers={"Cache-Control": "public, max-age=3600"},
    )


def main():
    import uvicorn

    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
