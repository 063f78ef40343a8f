"""Render orchestrator.

Drives one render attempt end to end:

1. Guard against stale or early deliveries, claim a start slot, mark GENERATING (10%)
2. Build the style prompt and submit the render (20%)
3. Poll the provider with an injected sleep, mapping 0-100 onto 20-70%
4. Download the result (80%), mark PROCESSING, upload (95%)
5. Sign a download URL and mark COMPLETED (100%)

Any business failure ends in FAILED plus a refund, written in one
transaction with the status change, and is returned as a RenderFailure.
Only infrastructure faults propagate, so the queue's own retry handles
crashes and not render outcomes.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any
from uuid import UUID

import httpx
import redis
from sqlalchemy import func
from sqlalchemy.exc import InterfaceError, OperationalError

from ugc_engine.adapters.render.base import (
    RenderJobRequest,
    RenderProvider,
    RenderProviderError,
    RenderStatus,
)
from ugc_engine.adapters.storage.base import AssetStore
from ugc_engine.config import settings
from ugc_engine.db.models import VideoModel, utcnow
from ugc_engine.domain.enums import RenderState, VideoStatus
from ugc_engine.domain.models import (
    RenderFailure,
    RenderJob,
    RenderResult,
    RenderSkipped,
    RenderSuccess,
)
from ugc_engine.domain.state_machine import RENDERING, is_terminal
from ugc_engine.exceptions import (
    JobNotReadyError,
    RenderDeferredError,
    RenderError,
    RenderFailedError,
    RenderTimeoutError,
)
from ugc_engine.logging import get_logger
from ugc_engine.services.credits import CreditLedger
from ugc_engine.services.prompts import build_render_prompt
from ugc_engine.services.rate_limit import RenderStartLimiter
from ugc_engine.services.video_store import VideoStore

logger = get_logger(__name__)

ProgressCallback = Callable[[int], None]
SleepFn = Callable[[float], Awaitable[None]]

# Faults the queue should redeliver instead of recording on the video
INFRASTRUCTURE_ERRORS: tuple[type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    JobNotReadyError,
    redis.exceptions.ConnectionError,
    redis.exceptions.TimeoutError,
)

DEFAULT_ERROR_CODE = "GENERATION_FAILED"


def classify_failure(exc: BaseException, refunded: bool) -> tuple[str, str]:
    """Map an exception to ``(error_code, user-facing message)``.

    The message always says whether the attempt's credit was refunded.
    """
    raw = str(exc).lower()
    suffix = (
        "Your credit has been refunded."
        if refunded
        else "No credit was charged for this attempt."
    )

    if isinstance(exc, RenderTimeoutError) or "timed out" in raw or "timeout" in raw:
        return "VIDEO_GENERATION_TIMEOUT", f"Video generation timed out. {suffix}"

    upstream_down = isinstance(exc, httpx.TransportError) or (
        isinstance(exc, RenderProviderError)
        and exc.status_code is not None
        and exc.status_code >= 500
    )
    code = getattr(exc, "code", None)
    if not isinstance(code, str) or not code:
        code = DEFAULT_ERROR_CODE
    if upstream_down or any(word in raw for word in ("500", "upstream", "service")):
        return code, f"Video service temporarily unavailable. {suffix}"
    if "no video url" in raw or "no results" in raw:
        return code, f"Video generation failed to complete. {suffix}"
    return code, f"Video generation failed. {suffix}"


def map_provider_progress(progress: int) -> int:
    """Map provider progress 0-100 onto the 20-70 band."""
    progress = min(max(progress, 0), 100)
    return 20 + progress // 2


class RenderOrchestrator:
    """Runs render attempts against injected collaborators."""

    def __init__(
        self,
        store: VideoStore,
        ledger: CreditLedger,
        provider: RenderProvider,
        asset_store: AssetStore,
        progress: ProgressCallback | None = None,
        poll_interval: float | None = None,
        max_poll_attempts: int | None = None,
        sleep: SleepFn = asyncio.sleep,
        asset_folder: str | None = None,
        download_ttl_seconds: int | None = None,
        credits_per_attempt: int | None = None,
        start_limiter: RenderStartLimiter | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.provider = provider
        self.asset_store = asset_store
        self.progress = progress
        self.poll_interval = (
            settings.render_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.max_poll_attempts = (
            settings.render_max_poll_attempts if max_poll_attempts is None else max_poll_attempts
        )
        self.sleep = sleep
        self.asset_folder = asset_folder or settings.asset_folder
        self.download_ttl_seconds = download_ttl_seconds or settings.download_url_ttl_seconds
        self.credits_per_attempt = credits_per_attempt or settings.credits_per_generation
        self.start_limiter = start_limiter

    async def process(self, job: RenderJob) -> RenderResult:
        """Run one delivery of a render job.

        Raises:
            JobNotReadyError: The enqueueing transaction is not visible yet.
            RenderDeferredError: The cluster-wide start window is full.
            OperationalError: The database is unreachable.
        """
        log = logger.bind(video_id=str(job.video_id), attempt=job.attempt, job_id=job.job_id)

        video = self.store.get(job.video_id)
        skipped = self._guard(job, video)
        if skipped is not None:
            log.info("render_skipped", reason=skipped.reason)
            return skipped
        assert video is not None

        if self.start_limiter is not None:
            retry_after = self.start_limiter.acquire()
            if retry_after is not None:
                log.info("render_start_deferred", retry_after=retry_after)
                raise RenderDeferredError(job.video_id, job.attempt, retry_after)

        try:
            return await self._run(job)
        except INFRASTRUCTURE_ERRORS:
            raise
        except Exception as e:
            log.error("render_failed", error=str(e), error_type=type(e).__name__)
            return self.record_failure(job.video_id, job.attempt, video.user_id, e)

    def _guard(self, job: RenderJob, video: VideoModel | None) -> RenderSkipped | None:
        if video is None:
            return RenderSkipped(job.video_id, job.attempt, "video no longer exists")

        status = VideoStatus(video.status)
        if is_terminal(status):
            return RenderSkipped(job.video_id, job.attempt, f"video is {status.value}")
        if video.retry_count == job.attempt and status in RENDERING:
            return None
        # Confirm and retry enqueue before they commit
        if job.attempt == 0 and status == VideoStatus.SCRIPT_READY:
            raise JobNotReadyError(job.video_id, job.attempt)
        if status == VideoStatus.FAILED and video.retry_count == job.attempt - 1:
            raise JobNotReadyError(job.video_id, job.attempt)
        if video.retry_count != job.attempt:
            return RenderSkipped(
                job.video_id,
                job.attempt,
                f"stale delivery; video is on attempt {video.retry_count}",
            )
        return RenderSkipped(job.video_id, job.attempt, f"video is {status.value}")

    async def _run(self, job: RenderJob) -> RenderResult:
        log = logger.bind(video_id=str(job.video_id), attempt=job.attempt)

        # Step 1: take ownership
        started = self.store.transition(
            job.video_id,
            [VideoStatus.QUEUED, VideoStatus.GENERATING],
            VideoStatus.GENERATING,
            attempt=job.attempt,
            generation_started_at=func.coalesce(VideoModel.generation_started_at, utcnow()),
        )
        if not started:
            current = self.store.get(job.video_id)
            if current is not None and current.status == VideoStatus.PROCESSING.value:
                raise RenderError("Render was interrupted while uploading")
            status = current.status if current is not None else "deleted"
            return RenderSkipped(job.video_id, job.attempt, f"video is {status}")
        self._report(10)

        # Step 2: submit
        prompt = build_render_prompt(job.script, job.style)
        external_id = await self.provider.create_job(
            RenderJobRequest(prompt=prompt, image_url=job.product_image_url)
        )
        self.store.update_fields(job.video_id, VideoStatus.GENERATING, sora_job_id=external_id)
        log.info(
            "render_submitted",
            provider=self.provider.name,
            external_job_id=external_id,
            image_to_video=bool(job.product_image_url),
        )
        self._report(20)

        # Step 3: poll
        status = await self._poll(external_id)
        if not status.result_url:
            raise RenderFailedError("No video URL returned from render provider")
        self._report(70)

        # Step 4: download and upload
        data = await self.provider.download(status.result_url)
        self._report(80)

        if not self.store.transition(
            job.video_id,
            VideoStatus.GENERATING,
            VideoStatus.PROCESSING,
            attempt=job.attempt,
        ):
            return RenderSkipped(job.video_id, job.attempt, "video left GENERATING")

        asset = await self.asset_store.upload(
            data, folder=self.asset_folder, object_key=f"video_{job.video_id}"
        )
        self._report(95)

        # Step 5: finalize
        download_url = self.asset_store.signed_url(asset.public_id, self.download_ttl_seconds)
        now = utcnow()
        completed = self.store.transition(
            job.video_id,
            VideoStatus.PROCESSING,
            VideoStatus.COMPLETED,
            attempt=job.attempt,
            cloudinary_public_id=asset.public_id,
            cloudinary_url=asset.secure_url,
            download_url=download_url,
            download_expires_at=now + timedelta(seconds=self.download_ttl_seconds),
            thumbnail_url=asset.thumbnail_url or status.thumbnail_url,
            video_duration=job.duration,
            completed_at=now,
            error_message=None,
            error_code=None,
        )
        if not completed:
            return RenderSkipped(job.video_id, job.attempt, "video left PROCESSING")
        self._report(100)

        log.info("render_completed", public_id=asset.public_id, bytes=len(data))
        return RenderSuccess(
            video_id=job.video_id,
            attempt=job.attempt,
            public_id=asset.public_id,
            download_url=download_url,
            thumbnail_url=asset.thumbnail_url or status.thumbnail_url,
        )

    async def _poll(self, external_id: str) -> RenderStatus:
        """Poll until the provider reports a terminal state.

        Raises:
            RenderFailedError: Provider reported failure.
            RenderTimeoutError: ``max_poll_attempts`` checks without a terminal state.
        """
        last_progress: int | None = None
        for attempt in range(1, self.max_poll_attempts + 1):
            try:
                status = await self.provider.get_status(external_id)
            except (httpx.TransportError, RenderProviderError) as e:
                transient = not isinstance(e, RenderProviderError) or (
                    e.status_code is not None and e.status_code >= 500
                )
                if not transient:
                    raise
                logger.warning(
                    "render_poll_error",
                    external_job_id=external_id,
                    attempt=attempt,
                    error=str(e),
                )
            else:
                if status.state == RenderState.COMPLETED:
                    return status
                if status.state == RenderState.FAILED:
                    raise RenderFailedError(status.error_message or "Video generation failed")

                mapped = map_provider_progress(status.progress)
                if mapped != last_progress:
                    self._report(mapped)
                    last_progress = mapped
                logger.debug(
                    "render_poll",
                    external_job_id=external_id,
                    state=str(status.state),
                    attempt=attempt,
                )

            if attempt < self.max_poll_attempts:
                await self.sleep(self.poll_interval)

        raise RenderTimeoutError(self.max_poll_attempts)

    def record_failure(
        self, video_id: UUID, attempt: int, user_id: UUID, exc: BaseException
    ) -> RenderFailure | RenderSkipped:
        """Mark an in-flight attempt FAILED and refund its credit, at most once."""
        video = self.store.get(video_id)
        refund = video is not None and video.credits_used > 0
        error_code, message = classify_failure(exc, refunded=refund)

        with self.store.session() as session:
            changes: dict[str, Any] = {"error_message": message, "error_code": error_code}
            if refund:
                changes["credits_used"] = VideoModel.credits_used - self.credits_per_attempt
            moved = self.store.transition(
                video_id,
                RENDERING,
                VideoStatus.FAILED,
                session=session,
                attempt=attempt,
                **changes,
            )
            if moved and refund:
                self.ledger.refund(
                    user_id,
                    self.credits_per_attempt,
                    video_id,
                    "Video generation failed - automatic refund",
                    idempotency_key=f"refund:{video_id}:{attempt}",
                    session=session,
                )

        if not moved:
            return RenderSkipped(video_id, attempt, "attempt already settled")

        logger.info(
            "render_failure_recorded",
            video_id=str(video_id),
            attempt=attempt,
            error_code=error_code,
            refunded=refund,
        )
        return RenderFailure(
            video_id=video_id,
            attempt=attempt,
            error_code=error_code,
            error_message=message,
            refunded=refund,
        )

    def _report(self, progress: int) -> None:
        if self.progress is not None:
            self.progress(progress)
