"""Request-time video operations.

Each operation loads the video, checks ownership and that the current
status allows it, then either writes the transition itself or delegates to
the ledger and the render queue. Render jobs are enqueued *before* any
debit, so a failed enqueue never needs a compensating ledger entry; a debit
that fails after a successful enqueue removes the job again.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from ugc_engine.adapters.script.base import ScriptGenerator
from ugc_engine.config import settings
from ugc_engine.db.models import VideoModel, utcnow
from ugc_engine.domain.enums import VideoStatus, VideoStyle
from ugc_engine.domain.models import DownloadLink, RenderJob, ScriptOptions, job_id_for
from ugc_engine.domain.state_machine import (
    CANCELLABLE,
    CONFIRMABLE,
    DEBITED,
    DOWNLOADABLE,
    EDITABLE,
    RETRYABLE,
)
from ugc_engine.exceptions import (
    DownloadExpiredError,
    DownloadNotAvailableError,
    InsufficientCreditsError,
    InvalidVideoStatusError,
    NoScriptAvailableError,
    ScriptGenerationError,
    UGCEngineError,
)
from ugc_engine.jobs.queue import EnqueueResult, GenerationQueue
from ugc_engine.logging import get_logger
from ugc_engine.services.credits import CreditLedger
from ugc_engine.services.video_store import VideoStore

logger = get_logger(__name__)

DEFAULT_VIDEO_DURATION = 20


class VideoService:
    """Controller logic behind the video endpoints."""

    def __init__(
        self,
        store: VideoStore,
        ledger: CreditLedger,
        queue: GenerationQueue,
        script_generator: ScriptGenerator,
        credits_per_generation: int | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.queue = queue
        self.script_generator = script_generator
        self.cost = credits_per_generation or settings.credits_per_generation

    # =============================================================================
    # Script
    # =============================================================================

    async def generate_script(
        self,
        user_id: UUID,
        product_data: dict[str, Any],
        style: VideoStyle,
        options: ScriptOptions | None = None,
    ) -> VideoModel:
        """Create a video and its script, charging one credit on success.

        Raises:
            InsufficientCreditsError: Balance cannot cover a generation.
            ScriptGenerationError: The script source failed; nothing was charged.
        """
        self._require_balance(user_id)

        video = self.store.create(user_id, product_data, style)
        log = logger.bind(video_id=str(video.id), user_id=str(user_id))

        try:
            result = await self.script_generator.generate(
                product_data, style, options or ScriptOptions()
            )
        except Exception as e:
            log.error("script_generation_failed", error=str(e), provider=self.script_generator.name)
            self.store.transition(
                video.id,
                VideoStatus.PENDING_SCRIPT,
                VideoStatus.FAILED,
                error_message="Script generation failed. No credit was charged.",
                error_code=ScriptGenerationError.code,
            )
            raise ScriptGenerationError(f"Failed to generate script: {e}") from e

        try:
            with self.store.session() as session:
                self.ledger.deduct(
                    user_id,
                    self.cost,
                    video.id,
                    "Video generation",
                    idempotency_key=f"debit:{video.id}:0",
                    session=session,
                )
                moved = self.store.transition(
                    video.id,
                    VideoStatus.PENDING_SCRIPT,
                    VideoStatus.SCRIPT_READY,
                    session=session,
                    generated_script=result.script,
                    script_scenes=result.scenes,
                    video_duration=result.estimated_duration,
                    script_generated_at=utcnow(),
                    credits_used=VideoModel.credits_used + self.cost,
                )
                if not moved:
                    raise self._status_error(
                        video.id, "Video was cancelled during script generation", session
                    )
        except UGCEngineError as e:
            if isinstance(e, InsufficientCreditsError):
                reason = "Insufficient credits."
            else:
                reason = "Script could not be saved."
            log.error("script_charge_failed", error=e.message, code=e.code)
            self.store.transition(
                video.id,
                VideoStatus.PENDING_SCRIPT,
                VideoStatus.FAILED,
                error_message=f"{reason} No credit was charged.",
                error_code=e.code,
            )
            raise

        log.info("script_generated", duration=result.estimated_duration, style=str(style))
        return self._reload(video.id)

    def update_script(self, user_id: UUID, video_id: UUID, script: str) -> VideoModel:
        """Store an edited script on a SCRIPT_READY video."""
        video = self.store.get_for_user(user_id, video_id)
        message = "Script can only be edited when status is SCRIPT_READY"
        if VideoStatus(video.status) not in EDITABLE:
            raise InvalidVideoStatusError(video.status, message)

        if not self.store.transition(
            video_id,
            VideoStatus.SCRIPT_READY,
            VideoStatus.SCRIPT_READY,
            edited_script=script,
        ):
            raise self._status_error(video_id, message)
        return self._reload(video_id)

    # =============================================================================
    # Render lifecycle
    # =============================================================================

    def confirm_generation(self, user_id: UUID, video_id: UUID) -> VideoModel:
        """Queue the render for a SCRIPT_READY video.

        The credit was taken when the script was generated, so confirm
        only enqueues and moves the video to QUEUED.
        """
        video = self.store.get_for_user(user_id, video_id)
        message = "Can only confirm generation when status is SCRIPT_READY"
        if VideoStatus(video.status) not in CONFIRMABLE:
            raise InvalidVideoStatusError(video.status, message)

        final_script = video.edited_script or video.generated_script
        if not final_script:
            raise NoScriptAvailableError()

        job = self._build_job(video, final_script, attempt=video.retry_count)
        enqueued = self.queue.enqueue(job.job_id, job.to_payload())

        try:
            moved = self.store.transition(
                video_id,
                VideoStatus.SCRIPT_READY,
                VideoStatus.QUEUED,
                final_script=final_script,
            )
        except Exception:
            self._withdraw(enqueued)
            raise
        if not moved:
            current = self._reload(video_id)
            if current.status == VideoStatus.QUEUED.value and current.retry_count == job.attempt:
                # A concurrent confirm of the same attempt won
                return current
            self._withdraw(enqueued)
            raise InvalidVideoStatusError(current.status, message)

        logger.info(
            "video_queued",
            video_id=str(video_id),
            user_id=str(user_id),
            job_id=job.job_id,
            has_product_image=bool(job.product_image_url),
        )
        self._run_inline_if_needed(enqueued, job)
        return self._reload(video_id)

    def retry_video(self, user_id: UUID, video_id: UUID) -> VideoModel:
        """Re-queue a FAILED video as a new attempt, charging one credit.

        Raises:
            InvalidVideoStatusError: Video is not FAILED.
            NoScriptAvailableError: The failed video never had a final script.
            InsufficientCreditsError: Balance cannot cover the retry.
        """
        video = self.store.get_for_user(user_id, video_id)
        message = "Can only retry failed videos"
        if VideoStatus(video.status) not in RETRYABLE:
            raise InvalidVideoStatusError(video.status, message)
        if not video.final_script:
            raise NoScriptAvailableError()
        self._require_balance(user_id)

        attempt = video.retry_count + 1
        job = self._build_job(video, video.final_script, attempt=attempt)
        enqueued = self.queue.enqueue(job.job_id, job.to_payload())

        try:
            with self.store.session() as session:
                moved = self.store.transition(
                    video_id,
                    VideoStatus.FAILED,
                    VideoStatus.QUEUED,
                    session=session,
                    attempt=video.retry_count,
                    retry_count=VideoModel.retry_count + 1,
                    credits_used=VideoModel.credits_used + self.cost,
                    error_message=None,
                    error_code=None,
                    sora_job_id=None,
                    generation_started_at=None,
                )
                if not moved:
                    raise self._status_error(video_id, message, session)
                self.ledger.deduct(
                    user_id,
                    self.cost,
                    video_id,
                    "Video retry",
                    idempotency_key=f"debit:{video_id}:{attempt}",
                    session=session,
                )
        except InvalidVideoStatusError:
            current = self._reload(video_id)
            if current.status == VideoStatus.QUEUED.value and current.retry_count == attempt:
                return current
            self._withdraw(enqueued)
            raise
        except Exception:
            self._withdraw(enqueued)
            raise

        logger.info("video_retry_queued", video_id=str(video_id), user_id=str(user_id), attempt=attempt)
        self._run_inline_if_needed(enqueued, job)
        return self._reload(video_id)

    def cancel_video(self, user_id: UUID, video_id: UUID) -> None:
        """Cancel a video that has not started rendering.

        A QUEUED job is removed from the queue before the video is marked
        CANCELLED. The attempt's credit is refunded when one was taken.
        """
        video = self.store.get_for_user(user_id, video_id)
        status = VideoStatus(video.status)
        message = "Cannot cancel video at this stage"
        if status not in CANCELLABLE:
            raise InvalidVideoStatusError(video.status, message)

        if status == VideoStatus.QUEUED:
            self.queue.remove(job_id_for(video_id, video.retry_count))

        refund = status in DEBITED and video.credits_used > 0
        with self.store.session() as session:
            changes: dict[str, Any] = {}
            if refund:
                changes["credits_used"] = VideoModel.credits_used - self.cost
            moved = self.store.transition(
                video_id,
                status,
                VideoStatus.CANCELLED,
                session=session,
                attempt=video.retry_count,
                **changes,
            )
            if not moved:
                raise self._status_error(video_id, message, session)
            if refund:
                self.ledger.refund(
                    user_id,
                    self.cost,
                    video_id,
                    "Video cancelled",
                    idempotency_key=f"refund:{video_id}:{video.retry_count}",
                    session=session,
                )

        logger.info(
            "video_cancelled",
            video_id=str(video_id),
            user_id=str(user_id),
            from_status=str(status),
            refunded=refund,
        )

    # =============================================================================
    # Reads
    # =============================================================================

    def get_video(self, user_id: UUID, video_id: UUID) -> VideoModel:
        return self.store.get_for_user(user_id, video_id)

    def list_videos(
        self,
        user_id: UUID,
        page: int = 1,
        limit: int = 20,
        status: VideoStatus | None = None,
    ) -> tuple[list[VideoModel], int]:
        return self.store.list_for_user(user_id, page=page, limit=limit, status=status)

    def get_download_url(
        self, user_id: UUID, video_id: UUID, now: datetime | None = None
    ) -> DownloadLink:
        """Return the signed download link of a COMPLETED video.

        A link found past its expiry moves the video to EXPIRED.
        """
        video = self.store.get_for_user(user_id, video_id)
        if VideoStatus(video.status) not in DOWNLOADABLE:
            raise InvalidVideoStatusError(video.status, "Video is not ready for download")
        if not video.download_url:
            raise DownloadNotAvailableError()

        expires_at = _as_utc(video.download_expires_at)
        if expires_at is not None and expires_at < (now or utcnow()):
            self.store.transition(video_id, VideoStatus.COMPLETED, VideoStatus.EXPIRED)
            raise DownloadExpiredError()

        return DownloadLink(url=video.download_url, expires_at=expires_at)

    # =============================================================================
    # Helpers
    # =============================================================================

    def _require_balance(self, user_id: UUID) -> None:
        balance = self.ledger.get_balance(user_id)
        if balance < self.cost:
            raise InsufficientCreditsError(balance, self.cost)

    def _build_job(self, video: VideoModel, script: str, attempt: int) -> RenderJob:
        images = video.product_images or []
        return RenderJob(
            video_id=video.id,
            script=script,
            style=VideoStyle(video.video_style),
            duration=video.video_duration or DEFAULT_VIDEO_DURATION,
            attempt=attempt,
            product_image_url=images[0] if images else None,
        )

    def _withdraw(self, enqueued: EnqueueResult) -> None:
        """Take back a job this request enqueued."""
        if not enqueued.duplicate and not enqueued.inline:
            self.queue.remove(enqueued.job_id)

    def _run_inline_if_needed(self, enqueued: EnqueueResult, job: RenderJob) -> None:
        if enqueued.inline:
            self.queue.run_inline(job.to_payload())

    def _reload(self, video_id: UUID) -> VideoModel:
        video = self.store.get(video_id)
        assert video is not None
        return video

    def _status_error(
        self, video_id: UUID, message: str, session: Session | None = None
    ) -> InvalidVideoStatusError:
        current = self.store.get(video_id, session=session)
        status = current.status if current is not None else "DELETED"
        return InvalidVideoStatusError(status, message)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
