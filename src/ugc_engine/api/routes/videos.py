"""Video generation endpoints."""

import math
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from ugc_engine.api.deps import CurrentUserId, VideoServiceDep
from ugc_engine.domain.enums import ScriptTone, VideoStatus, VideoStyle
from ugc_engine.domain.models import ScriptOptions
from ugc_engine.logging import get_logger

router = APIRouter(prefix="/videos", tags=["Videos"])
logger = get_logger(__name__)


class ProductReview(BaseModel):
    """A scraped product review."""

    rating: float = Field(..., ge=1, le=5)
    text: str
    author: str | None = None


class ProductData(BaseModel):
    """Scraped product snapshot."""

    url: HttpUrl
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="", max_length=10000)
    price: str | None = None
    original_price: str | None = None
    discount: str | None = None
    images: list[HttpUrl] = Field(..., min_length=1, max_length=20)
    reviews: list[ProductReview] | None = None
    rating: float | None = Field(None, ge=0, le=5)
    sold_count: str | None = None
    specifications: dict[str, str] | None = None
    shop_name: str | None = None


class ScriptOptionsRequest(BaseModel):
    """Script generation options."""

    tone: ScriptTone = ScriptTone.EXCITED
    target_duration: Literal[15, 20, 25, 30] = 15
    include_call_to_action: bool = True
    highlight_features: list[str] = Field(default_factory=list, max_length=10)


class GenerateScriptRequest(BaseModel):
    """Request to write a script for a product."""

    product_data: ProductData
    video_style: VideoStyle
    options: ScriptOptionsRequest | None = None


class GenerateScriptResponse(BaseModel):
    """Generated script for a new video."""

    video_id: UUID
    script: str
    estimated_duration: int
    scenes: list[dict[str, Any]]


class UpdateScriptRequest(BaseModel):
    """Edited script text."""

    script: str = Field(..., min_length=1, max_length=5000)


class VideoResponse(BaseModel):
    """Full video record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    status: VideoStatus
    product_data: dict[str, Any]
    product_title: str
    product_url: str
    product_images: list[str]
    generated_script: str | None
    edited_script: str | None
    final_script: str | None
    video_style: VideoStyle
    sora_job_id: str | None
    video_duration: int | None
    cloudinary_public_id: str | None
    cloudinary_url: str | None
    download_url: str | None
    download_expires_at: datetime | None
    thumbnail_url: str | None
    error_message: str | None
    error_code: str | None
    credits_used: int
    retry_count: int
    created_at: datetime
    completed_at: datetime | None


class VideoListItem(BaseModel):
    """Video summary for list views."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: VideoStatus
    product_title: str
    video_style: VideoStyle
    thumbnail_url: str | None
    created_at: datetime
    completed_at: datetime | None


class VideoListResponse(BaseModel):
    """One page of videos."""

    videos: list[VideoListItem]
    page: int
    limit: int
    total: int
    total_pages: int


class DownloadResponse(BaseModel):
    """Signed download link."""

    download_url: str
    expires_at: datetime | None


@router.post(
    "/generate-script",
    response_model=GenerateScriptResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate script",
    description="Create a video from product data and write its script. Costs one credit.",
)
async def generate_script(
    request: GenerateScriptRequest,
    user_id: CurrentUserId,
    service: VideoServiceDep,
) -> GenerateScriptResponse:
    """Create a video record and its script."""
    options = request.options or ScriptOptionsRequest()
    video = await service.generate_script(
        user_id,
        request.product_data.model_dump(mode="json"),
        request.video_style,
        ScriptOptions(
            tone=options.tone,
            target_duration=options.target_duration,
            include_call_to_action=options.include_call_to_action,
            highlight_features=options.highlight_features,
        ),
    )
    return GenerateScriptResponse(
        video_id=video.id,
        script=video.generated_script or "",
        estimated_duration=video.video_duration or 0,
        scenes=video.script_scenes or [],
    )


@router.get(
    "",
    response_model=VideoListResponse,
    summary="List videos",
)
def list_videos(
    user_id: CurrentUserId,
    service: VideoServiceDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    video_status: VideoStatus | None = Query(default=None, alias="status"),
) -> VideoListResponse:
    """List the caller's videos, newest first."""
    videos, total = service.list_videos(user_id, page=page, limit=limit, status=video_status)
    return VideoListResponse(
        videos=[VideoListItem.model_validate(video) for video in videos],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )


@router.get(
    "/{video_id}",
    response_model=VideoResponse,
    summary="Get video",
)
def get_video(video_id: UUID, user_id: CurrentUserId, service: VideoServiceDep) -> VideoResponse:
    """Get one of the caller's videos."""
    return VideoResponse.model_validate(service.get_video(user_id, video_id))


@router.put(
    "/{video_id}/script",
    response_model=VideoResponse,
    summary="Edit script",
    description="Replace the script of a video in SCRIPT_READY.",
)
def update_script(
    video_id: UUID,
    request: UpdateScriptRequest,
    user_id: CurrentUserId,
    service: VideoServiceDep,
) -> VideoResponse:
    """Store an edited script."""
    return VideoResponse.model_validate(service.update_script(user_id, video_id, request.script))


@router.post(
    "/{video_id}/confirm",
    response_model=VideoResponse,
    summary="Confirm generation",
    description="Queue the render for a video in SCRIPT_READY.",
)
def confirm_generation(
    video_id: UUID, user_id: CurrentUserId, service: VideoServiceDep
) -> VideoResponse:
    """Queue a video for rendering."""
    logger.info("confirm_generation_requested", video_id=str(video_id), user_id=str(user_id))
    return VideoResponse.model_validate(service.confirm_generation(user_id, video_id))


@router.get(
    "/{video_id}/download",
    response_model=DownloadResponse,
    summary="Get download link",
)
def get_download(
    video_id: UUID, user_id: CurrentUserId, service: VideoServiceDep
) -> DownloadResponse:
    """Return the signed download URL of a completed video."""
    link = service.get_download_url(user_id, video_id)
    return DownloadResponse(download_url=link.url, expires_at=link.expires_at)


@router.delete(
    "/{video_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Cancel video",
    description="Cancel a video that has not started rendering. Refunds a charged credit.",
)
def cancel_video(video_id: UUID, user_id: CurrentUserId, service: VideoServiceDep) -> Response:
    """Cancel a video."""
    service.cancel_video(user_id, video_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{video_id}/retry",
    response_model=VideoResponse,
    summary="Retry video",
    description="Re-queue a failed video. Costs one credit.",
)
def retry_video(video_id: UUID, user_id: CurrentUserId, service: VideoServiceDep) -> VideoResponse:
    """Retry a failed video."""
    logger.info("retry_requested", video_id=str(video_id), user_id=str(user_id))
    return VideoResponse.model_validate(service.retry_video(user_id, video_id))
