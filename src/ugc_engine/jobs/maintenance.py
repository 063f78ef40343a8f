"""Periodic maintenance tasks."""

from datetime import timedelta
from typing import Any

from ugc_engine.adapters.storage.base import AssetStore
from ugc_engine.config import settings
from ugc_engine.db.models import utcnow
from ugc_engine.domain.enums import VideoStatus
from ugc_engine.domain.models import RenderFailure
from ugc_engine.exceptions import RenderError, RenderTimeoutError
from ugc_engine.jobs.tasks import build_orchestrator
from ugc_engine.logging import get_logger
from ugc_engine.services.orchestrator import RenderOrchestrator
from ugc_engine.services.providers import get_asset_store
from ugc_engine.services.video_store import VideoStore
from ugc_engine.utils import run_async
from ugc_engine.worker import celery_app

logger = get_logger(__name__)


async def expire_downloads(
    store: VideoStore | None = None, asset_store: AssetStore | None = None
) -> int:
    """Move COMPLETED videos with lapsed download links to EXPIRED.

    Stored assets of every EXPIRED video are then deleted, including videos
    expired lazily by a download request. A failed delete is retried on the
    next sweep.

    Returns:
        Number of videos moved to EXPIRED by this sweep
    """
    store = store or VideoStore()
    asset_store = asset_store or get_asset_store()
    expired = 0
    for video_id in store.find_expired_downloads():
        if store.transition(video_id, VideoStatus.COMPLETED, VideoStatus.EXPIRED):
            expired += 1

    for video_id, public_id in store.find_expired_assets():
        try:
            await asset_store.delete(public_id)
        except Exception as e:
            logger.warning(
                "expired_asset_delete_failed",
                video_id=str(video_id),
                public_id=public_id,
                error=str(e),
            )
            continue
        store.update_fields(
            video_id,
            VideoStatus.EXPIRED,
            cloudinary_public_id=None,
            cloudinary_url=None,
            download_url=None,
        )
        logger.info("expired_asset_deleted", video_id=str(video_id), public_id=public_id)
    return expired


def reap_stale_renders(orchestrator: RenderOrchestrator) -> dict[str, int]:
    """Fail and refund attempts whose worker stopped making progress.

    Returns:
        Counts of reaped running and queued attempts
    """
    now = utcnow()
    store = orchestrator.store
    running = queued = 0

    render_cutoff = now - timedelta(minutes=settings.stale_render_minutes)
    for video in store.find_stale_renders(render_cutoff):
        outcome = orchestrator.record_failure(
            video.id,
            video.retry_count,
            video.user_id,
            RenderTimeoutError(orchestrator.max_poll_attempts),
        )
        if isinstance(outcome, RenderFailure):
            running += 1

    queue_cutoff = now - timedelta(minutes=settings.stale_queue_minutes)
    for video in store.find_stale_queued(queue_cutoff):
        outcome = orchestrator.record_failure(
            video.id,
            video.retry_count,
            video.user_id,
            RenderError("Render job was never picked up by a worker"),
        )
        if isinstance(outcome, RenderFailure):
            queued += 1

    return {"running": running, "queued": queued}


@celery_app.task(bind=True, name="maintenance.expire_downloads")
def expire_downloads_task(self: Any) -> dict[str, Any]:
    """Expire lapsed download links."""
    expired = run_async(expire_downloads())
    logger.info("expire_downloads_completed", task_id=self.request.id, expired=expired)
    return {"success": True, "expired": expired}


@celery_app.task(bind=True, name="maintenance.reap_stale_renders")
def reap_stale_renders_task(self: Any) -> dict[str, Any]:
    """Fail renders abandoned by a crashed worker."""
    counts = reap_stale_renders(build_orchestrator())
    logger.info("reap_stale_renders_completed", task_id=self.request.id, **counts)
    return {"success": True, **counts}
