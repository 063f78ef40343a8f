"""Cloudinary asset store."""

import asyncio
import io
import time
from functools import partial
from typing import Any

import cloudinary
import cloudinary.uploader
import cloudinary.utils

from ugc_engine.adapters.storage.base import AssetStore, UploadedAsset
from ugc_engine.config import settings
from ugc_engine.logging import get_logger

logger = get_logger(__name__)

THUMBNAIL_TRANSFORMATION = [
    {"width": 480, "height": 854, "crop": "fill"},
    {"start_offset": "0"},
]


class CloudinaryAssetStore(AssetStore):
    """Stores rendered videos on Cloudinary.

    Uploads are transcoded on ingest to H.264/MP4; downloads are served
    through time-limited private download URLs.
    """

    def __init__(
        self,
        cloud_name: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
    ) -> None:
        cloudinary.config(
            cloud_name=cloud_name or settings.cloudinary_cloud_name,
            api_key=api_key or settings.cloudinary_api_key,
            api_secret=api_secret or settings.cloudinary_api_secret,
            secure=True,
        )

    @property
    def name(self) -> str:
        return "cloudinary"

    async def upload(self, data: bytes, folder: str, object_key: str) -> UploadedAsset:
        loop = asyncio.get_running_loop()
        result: dict[str, Any] = await loop.run_in_executor(
            None,
            partial(
                cloudinary.uploader.upload,
                io.BytesIO(data),
                resource_type="video",
                folder=folder,
                public_id=object_key,
                overwrite=True,
                format="mp4",
                transformation=[{"quality": "auto", "video_codec": "h264"}],
            ),
        )
        public_id = result["public_id"]
        logger.info(
            "cloudinary_upload_completed",
            public_id=public_id,
            bytes=len(data),
            duration=result.get("duration"),
        )
        return UploadedAsset(
            public_id=public_id,
            secure_url=result["secure_url"],
            thumbnail_url=self.thumbnail_url(public_id),
        )

    def thumbnail_url(self, public_id: str) -> str:
        url, _ = cloudinary.utils.cloudinary_url(
            public_id,
            resource_type="video",
            format="jpg",
            transformation=THUMBNAIL_TRANSFORMATION,
        )
        return url

    def signed_url(self, public_id: str, ttl_seconds: int) -> str:
        return cloudinary.utils.private_download_url(
            public_id,
            "mp4",
            resource_type="video",
            type="upload",
            expires_at=int(time.time()) + ttl_seconds,
            attachment=True,
        )

    async def delete(self, public_id: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            partial(cloudinary.uploader.destroy, public_id, resource_type="video"),
        )
        logger.info("cloudinary_asset_deleted", public_id=public_id)
