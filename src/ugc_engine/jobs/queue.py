"""Render job queue.

Jobs go to Celery under a deterministic ``task_id`` (one per video attempt).
A Redis ``SET NX`` marker per job id turns a second enqueue of the same
attempt into a no-op, and doubles as the record kept for inspection once
the job finishes.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import redis
from celery import Celery
from kombu.exceptions import OperationalError as BrokerOperationalError

from ugc_engine.config import settings
from ugc_engine.db.models import utcnow
from ugc_engine.exceptions import ServiceUnavailableError
from ugc_engine.logging import get_logger

logger = get_logger(__name__)

RENDER_TASK_NAME = "render.generate_video"
RENDER_QUEUE = "render"
MARKER_PREFIX = "ugc:render-job:"
FINISHED_INDEX = "ugc:render-jobs:finished"

BROKER_ERRORS: tuple[type[BaseException], ...] = (
    BrokerOperationalError,
    redis.exceptions.ConnectionError,
    redis.exceptions.TimeoutError,
    ConnectionError,
)

InlineRunner = Callable[[dict[str, Any]], dict[str, Any]]


@dataclass
class EnqueueResult:
    """What happened to an enqueue request."""

    job_id: str
    duplicate: bool = False
    inline: bool = False


class GenerationQueue:
    """Enqueue, de-duplicate and remove render jobs."""

    def __init__(
        self,
        celery_app: Celery,
        redis_client: redis.Redis,
        allow_inline_fallback: bool = False,
        inline_runner: InlineRunner | None = None,
        marker_ttl_seconds: int | None = None,
        finished_limit: int | None = None,
    ) -> None:
        if allow_inline_fallback and settings.is_production:
            raise ValueError("Inline render fallback is not allowed in production")
        self.celery_app = celery_app
        self.redis = redis_client
        self.allow_inline_fallback = allow_inline_fallback
        self.inline_runner = inline_runner
        self.marker_ttl_seconds = marker_ttl_seconds or settings.queue_job_marker_ttl_seconds
        self.finished_limit = finished_limit or settings.queue_job_marker_limit

    @staticmethod
    def marker_key(job_id: str) -> str:
        return f"{MARKER_PREFIX}{job_id}"

    def enqueue(self, job_id: str, payload: dict[str, Any]) -> EnqueueResult:
        """Dispatch a render job once per ``job_id``.

        Returns:
            EnqueueResult; ``duplicate`` when the id was already enqueued,
            ``inline`` when the broker is down and the caller should run
            the job in-process.

        Raises:
            ServiceUnavailableError: Broker unreachable and inline fallback disabled.
        """
        marker = json.dumps({"state": "queued", "enqueued_at": utcnow().isoformat()})
        try:
            created = self.redis.set(
                self.marker_key(job_id), marker, nx=True, ex=self.marker_ttl_seconds
            )
            if not created:
                logger.info("render_job_duplicate", job_id=job_id)
                return EnqueueResult(job_id=job_id, duplicate=True)

            try:
                self.celery_app.send_task(
                    RENDER_TASK_NAME,
                    args=[payload],
                    task_id=job_id,
                    queue=RENDER_QUEUE,
                )
            except Exception:
                self.redis.delete(self.marker_key(job_id))
                raise
        except BROKER_ERRORS as e:
            return self._degraded(job_id, e)

        logger.info("render_job_enqueued", job_id=job_id, video_id=payload.get("video_id"))
        return EnqueueResult(job_id=job_id)

    def _degraded(self, job_id: str, error: BaseException) -> EnqueueResult:
        if self.allow_inline_fallback:
            logger.warning("render_queue_unavailable_inline", job_id=job_id, error=str(error))
            return EnqueueResult(job_id=job_id, inline=True)

        logger.error("render_queue_unavailable", job_id=job_id, error=str(error))
        raise ServiceUnavailableError(
            "Video generation queue is temporarily unavailable. Please try again."
        ) from error

    def run_inline(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Run a job in this process (broker-down fallback, non-production only)."""
        if not self.allow_inline_fallback or self.inline_runner is None:
            raise ServiceUnavailableError("Inline render fallback is disabled")
        logger.warning("render_job_running_inline", video_id=payload.get("video_id"))
        return self.inline_runner(payload)

    def remove(self, job_id: str) -> bool:
        """Revoke a job that has not started and clear its marker.

        Returns False when the broker could not be reached; the worker-side
        status guard still skips the job once its video has moved on.
        """
        try:
            self.celery_app.control.revoke(job_id)
            self.redis.delete(self.marker_key(job_id))
        except BROKER_ERRORS as e:
            logger.warning("render_job_remove_failed", job_id=job_id, error=str(e))
            return False
        logger.info("render_job_removed", job_id=job_id)
        return True

    def mark_finished(self, job_id: str, result: dict[str, Any]) -> None:
        """Keep a bounded record of finished jobs for inspection."""
        record = json.dumps(
            {"state": "finished", "finished_at": utcnow().isoformat(), "result": result}
        )
        pipe = self.redis.pipeline()
        pipe.set(self.marker_key(job_id), record, ex=self.marker_ttl_seconds)
        pipe.lpush(FINISHED_INDEX, job_id)
        pipe.execute()

        overflow = self.redis.lrange(FINISHED_INDEX, self.finished_limit, -1)
        if overflow:
            self.redis.delete(*(self.marker_key(_decode(job)) for job in overflow))
            self.redis.ltrim(FINISHED_INDEX, 0, self.finished_limit - 1)

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Return the marker for a job id, if it is still retained."""
        raw = self.redis.get(self.marker_key(job_id))
        if raw is None:
            return None
        return json.loads(raw)

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except BROKER_ERRORS:
            return False


def _decode(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)
