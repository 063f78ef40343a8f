"""Base interface for durable asset storage."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class UploadedAsset:
    """A video stored durably."""

    public_id: str
    secure_url: str
    thumbnail_url: str | None = None


class AssetStore(ABC):
    """Abstract base class for asset stores.

    Implementations:
    - CloudinaryAssetStore: Cloudinary video CDN
    - LocalAssetStore: Filesystem with HMAC-signed expiring URLs
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Store name identifier."""
        ...

    @abstractmethod
    async def upload(self, data: bytes, folder: str, object_key: str) -> UploadedAsset:
        """Store video bytes under ``folder/object_key``, normalized to H.264 MP4."""
        ...

    @abstractmethod
    def signed_url(self, public_id: str, ttl_seconds: int) -> str:
        """Build a download URL that stops working after ``ttl_seconds``."""
        ...

    async def delete(self, public_id: str) -> None:
        """Remove a stored asset. Stores without deletion ignore this."""
        return None
