"""
Celery worker and beat schedule.

Run with:
    celery -A cryptopay.celery_app worker --beat --loglevel=info
"""
from celery import Celery

from cryptopay.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "cryptopay",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["cryptopay.tasks.confirmation_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # A sweep that overlaps the next one is harmless but wasteful.
    task_time_limit=max(settings.confirmation_sweep_seconds * 2, 60),
    beat_schedule={
        "sweep-confirmations": {
            "task": "sweep_confirmations",
            "schedule": float(settings.confirmation_sweep_seconds),
        },
    },
)
