"""Celery job definitions."""

from ugc_engine.jobs.maintenance import (
    expire_downloads_task,
    reap_stale_renders_task,
)
from ugc_engine.jobs.tasks import generate_video_task

__all__ = [
    "generate_video_task",
    "expire_downloads_task",
    "reap_stale_renders_task",
]
