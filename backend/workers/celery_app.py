"""
Celery Application Configuration

Plan generation and merges run on the `allocation` queue. Merges are
serialized per (account, carrier, product) inside the task, so the queue
can be consumed by several workers.
"""

from celery import Celery

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "panelops",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.allocation"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_default_queue="allocation",
    task_routes={
        "workers.allocation.*": {"queue": "allocation"},
    },
    # Multi-year plans over large panels are the slow case.
    task_soft_time_limit=15 * 60,
    task_time_limit=20 * 60,
    result_expires=7 * 24 * 3600,
)
