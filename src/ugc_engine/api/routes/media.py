"""Signed media downloads for the local asset store."""

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import FileResponse

from ugc_engine.adapters.storage.local import LocalAssetStore
from ugc_engine.config import settings

router = APIRouter(prefix="/media", tags=["Media"])


def get_local_store() -> LocalAssetStore:
    return LocalAssetStore()


@router.get("/{asset_path:path}", summary="Download a locally stored video")
def download_media(
    asset_path: str,
    expires: int = Query(...),
    signature: str = Query(..., min_length=1),
) -> FileResponse:
    """Serve a video file if its signed URL is valid and unexpired."""
    if settings.asset_store.lower() != "local":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    store = get_local_store()
    public_id = asset_path.removesuffix(".mp4")
    if not store.verify(public_id, expires, signature):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired link")

    try:
        path = store.path_for(public_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found") from e
    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    return FileResponse(path, media_type="video/mp4", filename=path.name)
