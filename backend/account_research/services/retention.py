from __future__ import annotations

from datetime import datetime, timedelta
import logging

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..models.account import Account
from ..models.job_event import JobEvent
from ..models.processing_job import TERMINAL_JOB_STATUSES, ProcessingJob

logger = logging.getLogger(__name__)


def purge_expired_jobs(db: Session, retention_days: int, now: datetime | None = None) -> int:
    """
    Delete terminal jobs older than ``retention_days`` together with their
    event logs.

    Accounts are kept as the research record; they are only detached from the
    deleted job.
    """
    cutoff = (now or datetime.utcnow()) - timedelta(days=retention_days)
    job_ids = [
        job_id
        for (job_id,) in db.query(ProcessingJob.id)
        .filter(
            ProcessingJob.created_at < cutoff,
            ProcessingJob.status.in_(list(TERMINAL_JOB_STATUSES)),
        )
        .all()
    ]
    if not job_ids:
        logger.info("No expired jobs found for cleanup", extra={"step": "retention"})
        return 0

    db.query(Account).filter(Account.job_id.in_(job_ids)).update(
        {Account.job_id: None}, synchronize_session="fetch"
    )
    db.query(JobEvent).filter(JobEvent.job_id.in_(job_ids)).delete(
        synchronize_session="fetch"
    )
    deleted = (
        db.query(ProcessingJob)
        .filter(ProcessingJob.id.in_(job_ids))
        .delete(synchronize_session="fetch")
    )
    db.commit()
    logger.info("Deleted %s expired jobs", deleted, extra={"step": "retention"})
    return deleted


@celery_app.task(name="account_research.services.retention.cleanup_expired_jobs")
def cleanup_expired_jobs() -> int:
    """Periodic task enforcing JOB_RETENTION_DAYS."""
    db: Session = SessionLocal()
    try:
        return purge_expired_jobs(db, get_settings().JOB_RETENTION_DAYS)
    except Exception:
        db.rollback()
        logger.exception("Error during cleanup_expired_jobs", extra={"step": "retention"})
        raise
    finally:
        db.close()
