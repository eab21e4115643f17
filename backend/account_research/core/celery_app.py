from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "account_research",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    imports=("account_research.services.retention",),
    beat_schedule={
        # Daily purge of terminal jobs older than JOB_RETENTION_DAYS
        "cleanup-expired-jobs": {
            "task": "account_research.services.retention.cleanup_expired_jobs",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)
