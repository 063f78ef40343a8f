"""Filesystem asset store for development and tests."""

import asyncio
import hashlib
import hmac
import time
from pathlib import Path
from urllib.parse import urlencode

from ugc_engine.adapters.storage.base import AssetStore, UploadedAsset
from ugc_engine.config import settings
from ugc_engine.logging import get_logger

logger = get_logger(__name__)


class LocalAssetStore(AssetStore):
    """Writes videos under ``base_path`` and signs download URLs with HMAC.

    Bytes are stored as received; there is no transcoding step.
    """

    def __init__(
        self,
        base_path: Path | None = None,
        base_url: str | None = None,
        secret: str | None = None,
    ) -> None:
        self.base_path = base_path or Path(settings.local_storage_path)
        self.base_url = (base_url or settings.local_storage_base_url).rstrip("/")
        self._secret = (secret or settings.asset_signing_secret).encode()

    @property
    def name(self) -> str:
        return "local"

    def path_for(self, public_id: str) -> Path:
        path = (self.base_path / f"{public_id}.mp4").resolve()
        if not path.is_relative_to(self.base_path.resolve()):
            raise ValueError(f"Asset id escapes storage root: {public_id}")
        return path

    async def upload(self, data: bytes, folder: str, object_key: str) -> UploadedAsset:
        public_id = f"{folder}/{object_key}"
        path = self.path_for(public_id)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _write, path, data)

        logger.info("local_asset_stored", public_id=public_id, bytes=len(data))
        return UploadedAsset(
            public_id=public_id,
            secure_url=f"{self.base_url}/{public_id}.mp4",
            thumbnail_url=None,
        )

    def _signature(self, public_id: str, expires: int) -> str:
        message = f"{public_id}:{expires}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def signed_url(self, public_id: str, ttl_seconds: int) -> str:
        expires = int(time.time()) + ttl_seconds
        query = urlencode({"expires": expires, "signature": self._signature(public_id, expires)})
        return f"{self.base_url}/{public_id}.mp4?{query}"

    def verify(self, public_id: str, expires: int, signature: str, now: float | None = None) -> bool:
        """Check a signed URL's parameters."""
        if (now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(self._signature(public_id, expires), signature)

    async def delete(self, public_id: str) -> None:
        path = self.path_for(public_id)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: path.unlink(missing_ok=True))
        logger.info("local_asset_deleted", public_id=public_id)


def _write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
