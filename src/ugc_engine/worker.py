"""Celery worker configuration."""

from celery import Celery

from ugc_engine.config import settings
from ugc_engine.logging import setup_logging

# Setup logging before anything else
setup_logging()

# Create Celery app
celery_app = Celery(
    "ugc_engine",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_time_limit=1800,  # 30 minutes max
    task_soft_time_limit=1500,  # 25 minutes soft limit
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.render_concurrency,
    # Result backend
    result_expires=settings.queue_result_ttl_seconds,
    # Task routing
    task_routes={
        "render.*": {"queue": "render"},
        "maintenance.*": {"queue": "maintenance"},
    },
    # Beat scheduler (for periodic tasks)
    beat_schedule={
        # Expire lapsed download links - hourly
        "expire-downloads-hourly": {
            "task": "maintenance.expire_downloads",
            "schedule": 3600.0,  # 1 hour
            "options": {"queue": "maintenance"},
        },
        # Fail renders whose worker died - every 5 minutes
        "reap-stale-renders": {
            "task": "maintenance.reap_stale_renders",
            "schedule": 300.0,  # 5 minutes
            "options": {"queue": "maintenance"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["ugc_engine.jobs"])
