from __future__ import annotations

from datetime import datetime
import enum
import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models.job_event import JobEvent
from ..models.processing_job import ProcessingJob

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    JOB_START = "job_start"
    ACCOUNT_START = "account_start"
    RESEARCH_STEP = "research_step"
    CATEGORIZING = "categorizing"
    ACCOUNT_COMPLETE = "account_complete"
    ACCOUNT_FAILED = "account_failed"
    JOB_COMPLETE = "job_complete"
    JOB_CANCELLED = "job_cancelled"
    JOB_FAILED = "job_failed"


def job_event_lock(job_id: int):
    """
    SELECT ... FOR UPDATE on the job row.

    Held until the writer commits, so event ids of one job become visible in
    id order and a reader cursor never steps over an uncommitted id. SQLite
    serialises writers already and compiles this to a plain SELECT.
    """
    return select(ProcessingJob.id).where(ProcessingJob.id == job_id).with_for_update()


def record_job_event(
    db: Session,
    job_id: int,
    *,
    job_type: str,
    event_type: EventType,
    message: str,
    account_id: int | None = None,
    company_name: str | None = None,
    step_index: int | None = None,
    total_steps: int | None = None,
) -> JobEvent:
    """
    Add a job event to ``db``'s current transaction.

    The caller commits, so the event lands together with the state change it
    describes. Ids come from the table's auto-increment and are allocated
    while the job row is locked.
    """
    db.execute(job_event_lock(job_id))
    evt = JobEvent(
        job_id=job_id,
        job_type=getattr(job_type, "value", job_type),
        event_type=event_type.value,
        account_id=account_id,
        company_name=company_name,
        message=message,
        step_index=step_index,
        total_steps=total_steps,
        created_at=datetime.utcnow(),
    )
    db.add(evt)
    db.flush()
    logger.debug(
        message,
        extra={"job_id": job_id, "account_id": account_id, "event_type": event_type.value},
    )
    return evt


def events_since(
    db: Session,
    job_id: int,
    job_type: str,
    since_id: int = 0,
) -> List[JobEvent]:
    """All committed events of the job with ``id > since_id``, oldest first."""
    return (
        db.query(JobEvent)
        .filter(
            JobEvent.job_id == job_id,
            JobEvent.job_type == getattr(job_type, "value", job_type),
            JobEvent.id > since_id,
        )
        .order_by(JobEvent.id.asc())
        .all()
    )


def event_payload(evt: JobEvent) -> dict:
    return {
        "id": evt.id,
        "job_id": evt.job_id,
        "job_type": evt.job_type,
        "event_type": evt.event_type,
        "account_id": evt.account_id,
        "company_name": evt.company_name,
        "message": evt.message,
        "step_index": evt.step_index,
        "total_steps": evt.total_steps,
        "created_at": evt.created_at.isoformat() if evt.created_at else None,
    }
