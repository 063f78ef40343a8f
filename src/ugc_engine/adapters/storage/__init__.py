"""Asset storage adapters."""

from ugc_engine.adapters.storage.base import AssetStore, UploadedAsset
from ugc_engine.adapters.storage.cloudinary import CloudinaryAssetStore
from ugc_engine.adapters.storage.local import LocalAssetStore

__all__ = [
    "AssetStore",
    "CloudinaryAssetStore",
    "LocalAssetStore",
    "UploadedAsset",
]
