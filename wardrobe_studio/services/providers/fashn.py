"""FASHN virtual try-on client.

The vendor answers with several response shapes depending on model version and
whether the job finished inline. Everything is normalized here into
`SubmitResult`/`StatusResult`; a shape we do not recognise raises instead of
quietly producing an empty result.
"""

import logging
from typing import Any

import httpx

from ...config import VendorConfig
from ...errors import ErrorKind, TryOnError, VendorResponseError, classify_exception
from .base import StatusResult, SubmitResult, VendorImage, VendorStatus

logger = logging.getLogger(__name__)

JOB_ID_FIELDS = ("id", "job_id", "prediction_id")
LEGACY_RESULT_FIELDS = ("result_url", "image_url", "url", "result")

STATUS_MAP: dict[str, VendorStatus] = {
    "completed": "succeeded",
    "done": "succeeded",
    "succeeded": "succeeded",
    "processing": "running",
    "running": "running",
    "in_progress": "running",
    "failed": "failed",
    "error": "failed",
    "canceled": "failed",
    "cancelled": "failed",
}


def parse_output_item(item: Any) -> VendorImage:
    if isinstance(item, str):
        if not item:
            raise VendorResponseError("Empty output entry in vendor response")
        if item.startswith(("http://", "https://")):
            return VendorImage(url=item)
        return VendorImage(base64=item)
    if isinstance(item, dict) and isinstance(item.get("url"), str):
        return VendorImage(url=item["url"])
    raise VendorResponseError(
        "Unexpected output entry in vendor response",
        {"type": type(item).__name__},
    )


def parse_outputs(output: Any) -> list[VendorImage]:
    """Normalize the `output` field: string, list of strings/{url}, or {url}."""
    if output is None:
        return []
    if isinstance(output, list):
        return [parse_output_item(item) for item in output]
    return [parse_output_item(output)]


def parse_job_id(data: dict[str, Any]) -> str | None:
    for key in JOB_ID_FIELDS:
        value = data.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
            return str(value)
    return None


def parse_legacy_result(data: dict[str, Any]) -> list[VendorImage]:
    for key in LEGACY_RESULT_FIELDS:
        value = data.get(key)
        if isinstance(value, str) and value:
            return [parse_output_item(value)]
    return []


def parse_error_message(error: Any, default: str = "Try-on generation failed") -> str:
    if isinstance(error, str) and error:
        return error
    if isinstance(error, dict):
        return error.get("message") or error.get("name") or default
    return default


def parse_submit_response(data: Any) -> SubmitResult:
    if not isinstance(data, dict):
        raise VendorResponseError(
            "Vendor run response is not an object",
            {"type": type(data).__name__},
        )

    job_id = parse_job_id(data)
    outputs = parse_outputs(data.get("output")) or parse_legacy_result(data)

    if outputs:
        return SubmitResult(job_id=job_id, outputs=outputs, is_async=False, request_id=job_id)

    if data.get("error"):
        raise TryOnError(ErrorKind.API_ERROR, parse_error_message(data["error"]), data["error"])

    if job_id:
        return SubmitResult(job_id=job_id, is_async=True, request_id=job_id)

    raise VendorResponseError(
        "Vendor run response has neither output nor job id",
        {"keys": sorted(data.keys())},
    )


def parse_status_response(job_id: str, data: Any, cdn_base_url: str) -> StatusResult:
    if not isinstance(data, dict):
        raise VendorResponseError(
            "Vendor status response is not an object",
            {"type": type(data).__name__},
        )

    raw_status = str(data.get("status") or "").lower()
    status: VendorStatus = STATUS_MAP.get(raw_status, "queued")

    outputs = parse_outputs(data.get("output")) or parse_legacy_result(data)
    if status == "succeeded" and not outputs:
        fallback = f"{cdn_base_url.rstrip('/')}/{job_id}/output_0.png"
        logger.info("Job %s succeeded without output, using %s", job_id, fallback)
        outputs = [VendorImage(url=fallback)]

    error = parse_error_message(data.get("error")) if status == "failed" else None
    return StatusResult(status=status, outputs=outputs, error=error)


def classify_http_error(response: httpx.Response) -> TryOnError:
    """Map a non-2xx vendor response onto the error taxonomy."""
    text = response.text
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail") or body.get("error")
        details: Any = body
    else:
        message = None
        details = {"message": text or response.reason_phrase}
    message = str(message or text or response.reason_phrase)

    status = response.status_code
    if status in (403, 429):
        return TryOnError(ErrorKind.RATE_LIMIT, "Rate limit exceeded. Please try again later.", details)
    lowered = message.lower()
    if status == 400 and ("moderation" in lowered or "content" in lowered):
        return TryOnError(ErrorKind.MODERATION_REJECTED, "Content was rejected by moderation filters.", details)
    if status in (400, 422):
        return TryOnError(ErrorKind.INVALID_INPUT, f"FASHN API rejected the request ({status}): {message}", details)
    return TryOnError(ErrorKind.API_ERROR, f"FASHN API error ({status}): {message}", details)


class FashnProvider:
    """Async try-on through the FASHN `/run` endpoint, polled via `/requests/{id}`
    with `/status/{id}` as the fallback."""

    name = "fashn"

    def __init__(
        self,
        api_key: str,
        config: VendorConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise TryOnError(ErrorKind.API_ERROR, "FASHN API key not configured")
        self.api_key = api_key
        self.config = config or VendorConfig()
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_s)
        return self._client

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"
        try:
            response = await self.client.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as exc:
            raise classify_exception(exc) from exc

        if response.is_error:
            error = classify_http_error(response)
            logger.error("FASHN %s %s failed: %s", method, path, error.message)
            raise error

        try:
            return response.json()
        except ValueError as exc:
            raise VendorResponseError("Vendor returned a non-JSON body") from exc

    async def submit_tryon(
        self,
        model_image_url: str,
        garment_image_url: str,
        options: dict[str, Any] | None = None,
    ) -> SubmitResult:
        inputs = {
            **(options or {}),
            "model_image": model_image_url,
            "garment_image": garment_image_url,
        }
        body = {"model_name": self.config.model_name, "inputs": inputs}
        data = await self._request("POST", "/run", json=body)
        result = parse_submit_response(data)
        if result.is_async:
            logger.info("FASHN async job created: %s", result.job_id)
        return result

    async def get_tryon_status(self, job_id: str) -> StatusResult:
        try:
            data = await self._request("GET", f"/requests/{job_id}")
        except TryOnError as exc:
            if exc.kind == ErrorKind.API_TIMEOUT:
                raise
            logger.debug("FASHN /requests/%s failed, trying /status: %s", job_id, exc.message)
            data = await self._request("GET", f"/status/{job_id}")
        result = parse_status_response(job_id, data, self.config.cdn_base_url)
        logger.debug("FASHN job %s status: %s", job_id, result.status)
        return result

    async def cancel_tryon(self, job_id: str) -> bool:
        # The vendor exposes no cancel endpoint
        logger.info("FASHN job %s cannot be cancelled; it may still complete", job_id)
        return False

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
