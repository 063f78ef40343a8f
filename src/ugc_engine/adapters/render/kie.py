"""Kie.ai (Sora 2) render provider."""

import json
from typing import Any

import httpx

from ugc_engine.adapters.render.base import (
    RenderJobRequest,
    RenderProvider,
    RenderProviderError,
    RenderStatus,
    TaskIdFound,
    parse_task_id,
)
from ugc_engine.config import settings
from ugc_engine.domain.enums import RenderState
from ugc_engine.logging import get_logger

logger = get_logger(__name__)

IMAGE_TO_VIDEO_MODEL = "sora-2-image-to-video"
TEXT_TO_VIDEO_MODEL = "sora-2-text-to-video"

STATE_MAP = {
    "completed": RenderState.COMPLETED,
    "success": RenderState.COMPLETED,
    "failed": RenderState.FAILED,
    "fail": RenderState.FAILED,
    "processing": RenderState.PROCESSING,
    "generating": RenderState.PROCESSING,
    "waiting": RenderState.PENDING,
    "queuing": RenderState.PENDING,
}

PROGRESS_BY_STATE = {
    RenderState.COMPLETED: 100,
    RenderState.PROCESSING: 50,
    RenderState.PENDING: 0,
    RenderState.FAILED: 0,
}


def extract_result_urls(result_json: str | None) -> tuple[str | None, str | None]:
    """Pull (video_url, thumbnail_url) out of Kie's ``resultJson`` string."""
    if not result_json:
        return None, None
    try:
        result = json.loads(result_json)
    except ValueError:
        logger.warning("kie_result_json_unparseable", result_json=result_json[:200])
        return None, None
    if not isinstance(result, dict):
        return None, None

    output = result.get("output") or {}
    urls = result.get("resultUrls") or []
    video_url = (
        (urls[0] if urls else None)
        or result.get("videoUrl")
        or result.get("video_url")
        or output.get("video_url")
        or output.get("videoUrl")
    )
    thumbnail_url = result.get("thumbnailUrl") or result.get("thumbnail_url")
    return video_url, thumbnail_url


class KieRenderProvider(RenderProvider):
    """Renders portrait Sora 2 clips through the Kie.ai jobs API.

    Image-to-video is used when a product image is supplied, otherwise
    text-to-video.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        download_timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key or settings.kie_api_key
        self.base_url = (base_url or settings.kie_api_base_url).rstrip("/")
        self.timeout = timeout
        self.download_timeout = download_timeout
        self._transport = transport

        if not self.api_key:
            logger.warning("Kie.ai API key not configured")

    @property
    def name(self) -> str:
        return "kie"

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        async with self._client() as client:
            response = await client.request(method, f"{self.base_url}{path}", **kwargs)

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_error:
            detail = None
            if isinstance(data, dict):
                detail = data.get("message") or data.get("msg") or data.get("error")
            message = f"Kie.ai API error {response.status_code}: {detail or response.text[:200]}"
            logger.error("kie_api_error", path=path, status_code=response.status_code)
            raise RenderProviderError(message, status_code=response.status_code)
        return data

    async def create_job(self, request: RenderJobRequest) -> str:
        model = IMAGE_TO_VIDEO_MODEL if request.image_url else TEXT_TO_VIDEO_MODEL
        job_input: dict[str, Any] = {
            "prompt": request.prompt,
            "aspect_ratio": "portrait",
            "n_frames": "10",
            "size": "high",
            "remove_watermark": True,
        }
        if request.image_url:
            job_input["image_urls"] = [request.image_url]

        logger.info(
            "kie_create_task",
            model=model,
            prompt_length=len(request.prompt),
            has_image=bool(request.image_url),
        )
        data = await self._request(
            "POST", "/api/v1/jobs/createTask", json={"model": model, "input": job_input}
        )

        parsed = parse_task_id(data)
        if not isinstance(parsed, TaskIdFound):
            logger.error("kie_task_id_missing", reason=parsed.reason)
            raise RenderProviderError(f"No task id returned from Kie.ai: {parsed.reason}")

        logger.info("kie_task_created", task_id=parsed.task_id)
        return parsed.task_id

    async def get_status(self, external_job_id: str) -> RenderStatus:
        data = await self._request(
            "GET", "/api/v1/jobs/recordInfo", params={"taskId": external_job_id}
        )
        record = (data or {}).get("data") or {}

        raw_state = str(record.get("state") or "waiting").lower()
        state = STATE_MAP.get(raw_state, RenderState.PENDING)
        video_url, thumbnail_url = extract_result_urls(record.get("resultJson"))

        logger.debug(
            "kie_task_status",
            task_id=external_job_id,
            raw_state=raw_state,
            state=str(state),
        )
        return RenderStatus(
            state=state,
            progress=PROGRESS_BY_STATE[state],
            result_url=video_url,
            thumbnail_url=thumbnail_url,
            error_message=record.get("failMsg") or None,
        )

    async def download(self, url: str) -> bytes:
        logger.info("kie_download_started", url=url[:100])
        async with httpx.AsyncClient(
            timeout=self.download_timeout, transport=self._transport, follow_redirects=True
        ) as client:
            response = await client.get(url)
        if response.is_error:
            raise RenderProviderError(
                f"Failed to download video: {response.status_code}",
                status_code=response.status_code,
            )
        logger.info("kie_download_completed", size=len(response.content))
        return response.content

    async def health_check(self) -> bool:
        return bool(self.api_key)
