"""Object storage for uploads and generated results."""

import asyncio
import hashlib
import hmac
import logging
import time
from pathlib import Path, PurePosixPath
from typing import Callable, Protocol
from urllib.parse import quote, urlencode

from ..errors import StorageError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


def content_type_for(path: str) -> str:
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return CONTENT_TYPES.get(extension, "application/octet-stream")


class ObjectStorage(Protocol):
    async def upload(self, bucket: str, path: str, data: bytes) -> str:
        ...

    async def download(self, bucket: str, path: str) -> bytes:
        ...

    def signed_url(self, bucket: str, path: str, expires_in: int = 3600) -> str:
        ...


class LocalObjectStorage:
    """Filesystem buckets served through HMAC-signed proxy URLs.

    Files live at `{root}/{bucket}/{path}`. Uploads overwrite, so writing the
    same path twice is safe. Signed URLs point at the `/storage/{bucket}/{path}`
    route of the API server, which checks them with `verify`.
    """

    def __init__(
        self,
        root: Path,
        public_base_url: str,
        secret: str,
        clock: Callable[[], float] = time.time,
    ):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self._secret = secret.encode("utf-8")
        self._clock = clock

    def _resolve(self, bucket: str, path: str) -> Path:
        parts = PurePosixPath(path).parts
        if not bucket or "/" in bucket or bucket in (".", ".."):
            raise StorageError(f"Invalid bucket name: {bucket!r}")
        if not parts or path.startswith("/") or ".." in parts:
            raise StorageError(f"Invalid object path: {path!r}")
        return self.root / bucket / Path(*parts)

    async def upload(self, bucket: str, path: str, data: bytes) -> str:
        target = self._resolve(bucket, path)

        def write():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(write)
        except OSError as exc:
            raise StorageError(f"Upload to {bucket}/{path} failed: {exc}") from exc
        logger.debug("Stored %s/%s (%d bytes)", bucket, path, len(data))
        return path

    async def download(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as exc:
            raise StorageError(f"Object not found: {bucket}/{path}") from exc
        except OSError as exc:
            raise StorageError(f"Download of {bucket}/{path} failed: {exc}") from exc

    def _signature(self, bucket: str, path: str, expires: int) -> str:
        message = f"{bucket}/{path}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def signed_url(self, bucket: str, path: str, expires_in: int = 3600) -> str:
        self._resolve(bucket, path)
        expires = int(self._clock()) + expires_in
        query = urlencode({"expires": expires, "signature": self._signature(bucket, path, expires)})
        return f"{self.public_base_url}/storage/{quote(bucket)}/{quote(path)}?{query}"

    def verify(self, bucket: str, path: str, expires: int, signature: str) -> bool:
        """True when the signature matches and has not expired."""
        if expires < self._clock():
            return False
        expected = self._signature(bucket, path, expires)
        return hmac.compare_digest(expected, signature)
