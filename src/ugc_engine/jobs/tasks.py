"""Render Celery tasks.

One task per render attempt, delivered under a deterministic task id. The
task body only builds collaborators and hands the job to the orchestrator;
business failures come back as a result dict, infrastructure faults are
retried with exponential backoff and a full render start window defers the
delivery until a slot frees up.
"""

from functools import lru_cache
from typing import Any

import redis

from ugc_engine.config import settings
from ugc_engine.domain.models import RenderJob
from ugc_engine.exceptions import RenderDeferredError
from ugc_engine.jobs.queue import (
    BROKER_ERRORS,
    RENDER_TASK_NAME,
    GenerationQueue,
)
from ugc_engine.logging import get_logger, log_context
from ugc_engine.services.credits import CreditLedger
from ugc_engine.services.orchestrator import (
    INFRASTRUCTURE_ERRORS,
    ProgressCallback,
    RenderOrchestrator,
)
from ugc_engine.services.providers import get_asset_store, get_render_provider
from ugc_engine.services.rate_limit import RenderStartLimiter
from ugc_engine.services.video_store import VideoStore
from ugc_engine.utils import run_async
from ugc_engine.worker import celery_app

logger = get_logger(__name__)

RETRY_BACKOFF_MAX = 300


@lru_cache
def get_redis_client() -> redis.Redis:
    """Get the process-wide Redis client."""
    return redis.Redis.from_url(settings.redis_url)


@lru_cache
def get_start_limiter() -> RenderStartLimiter:
    """Get the render start window shared by every worker."""
    return RenderStartLimiter(
        get_redis_client(),
        limit=settings.render_start_limit,
        window_seconds=settings.render_start_window_seconds,
    )


def build_orchestrator(
    progress: ProgressCallback | None = None, limit_starts: bool = True
) -> RenderOrchestrator:
    """Wire an orchestrator to the configured providers."""
    return RenderOrchestrator(
        store=VideoStore(),
        ledger=CreditLedger(),
        provider=get_render_provider(),
        asset_store=get_asset_store(),
        progress=progress,
        start_limiter=get_start_limiter() if limit_starts else None,
    )


def run_render_job(payload: dict[str, Any]) -> dict[str, Any]:
    """Process a render payload in the current process.

    Used when the broker is down, so the Redis start window is skipped.
    """
    job = RenderJob.from_payload(payload)
    result = run_async(build_orchestrator(limit_starts=False).process(job))
    return result.to_dict()


@lru_cache
def get_generation_queue() -> GenerationQueue:
    """Get the process-wide render queue."""
    return GenerationQueue(
        celery_app=celery_app,
        redis_client=get_redis_client(),
        allow_inline_fallback=settings.queue_inline_fallback,
        inline_runner=run_render_job,
    )


@celery_app.task(
    bind=True,
    name=RENDER_TASK_NAME,
    max_retries=max(settings.queue_max_retries - 1, 0),
    acks_late=True,
)
def generate_video_task(self: Any, payload: dict[str, Any]) -> dict[str, Any]:
    """Run one render attempt.

    A full start window re-schedules the delivery for when a slot frees up;
    those deferrals are counted in the payload and do not use up the
    infrastructure retry budget.

    Args:
        payload: Serialized RenderJob

    Returns:
        Dict with the attempt outcome
    """
    task_id = self.request.id
    job = RenderJob.from_payload(payload)
    deferrals = int(payload.get("deferrals", 0))
    with log_context(task_id=task_id, video_id=str(job.video_id), attempt=job.attempt):
        logger.info("generate_video_started", delivery=self.request.retries + 1)
        try:
            outcome = _run_delivery(self, task_id or job.job_id, job)
        except RenderDeferredError as e:
            raise self.retry(
                args=[{**payload, "deferrals": deferrals + 1}],
                countdown=e.retry_after,
                max_retries=self.request.retries + 1,
            ) from e
        except INFRASTRUCTURE_ERRORS as e:
            failures = max(self.request.retries - deferrals, 0)
            countdown = min(settings.queue_retry_backoff_seconds * 2**failures, RETRY_BACKOFF_MAX)
            logger.warning("generate_video_retrying", error=str(e), countdown=countdown)
            raise self.retry(
                exc=e, countdown=countdown, max_retries=self.max_retries + deferrals
            ) from e
        logger.info("generate_video_finished", success=outcome["success"])
    return outcome


def _run_delivery(task: Any, task_id: str, job: RenderJob) -> dict[str, Any]:
    def report(progress: int) -> None:
        task.update_state(
            state="PROGRESS",
            meta={"video_id": str(job.video_id), "attempt": job.attempt, "progress": progress},
        )

    result = run_async(build_orchestrator(progress=report).process(job))
    outcome = result.to_dict()

    try:
        get_generation_queue().mark_finished(task_id, outcome)
    except BROKER_ERRORS as e:
        logger.warning("generate_video_mark_finished_failed", error=str(e))
    return outcome
