"""Stub render provider for testing."""

from uuid import uuid4

from ugc_engine.adapters.render.base import (
    RenderJobRequest,
    RenderProvider,
    RenderProviderError,
    RenderStatus,
)
from ugc_engine.domain.enums import RenderState
from ugc_engine.logging import get_logger

logger = get_logger(__name__)


class StubRenderProvider(RenderProvider):
    """In-memory provider: each job completes after a fixed number of polls."""

    def __init__(self, polls_until_complete: int = 1) -> None:
        self.polls_until_complete = polls_until_complete
        self._polls: dict[str, int] = {}
        self.requests: list[RenderJobRequest] = []

    @property
    def name(self) -> str:
        return "stub"

    async def create_job(self, request: RenderJobRequest) -> str:
        job_id = f"stub-{uuid4().hex[:12]}"
        self._polls[job_id] = 0
        self.requests.append(request)
        logger.info("stub_render_created", job_id=job_id, has_image=bool(request.image_url))
        return job_id

    async def get_status(self, external_job_id: str) -> RenderStatus:
        if external_job_id not in self._polls:
            raise RenderProviderError(f"Unknown stub job {external_job_id}", status_code=404)

        self._polls[external_job_id] += 1
        polls = self._polls[external_job_id]
        if polls >= self.polls_until_complete:
            return RenderStatus(
                state=RenderState.COMPLETED,
                progress=100,
                result_url=f"stub://renders/{external_job_id}.mp4",
            )
        return RenderStatus(
            state=RenderState.PROCESSING,
            progress=int(100 * polls / self.polls_until_complete),
        )

    async def download(self, url: str) -> bytes:
        return b"STUB_VIDEO_DATA_" + url.encode()
