import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..schemas.jobs import JobEventOut, JobOut, JobSnapshotOut
from ..services import job_store, jobs
from ..services.errors import JobServiceError
from ..services.events import events_since
from ..services.processor import JobProcessor
from ..services.registry import ActiveJobRegistry
from ..services.streaming import SSE_HEADERS, parse_last_event_id, stream_job_events
from .deps import get_processor, get_registry, raise_http, settings, verify_api_key

router = APIRouter(prefix="/jobs", tags=["jobs"])
logger = logging.getLogger(__name__)


@router.get("", response_model=list[JobOut])
def list_jobs(
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    registry: ActiveJobRegistry = Depends(get_registry),
    _: None = Depends(verify_api_key),
):
    # Hard cap to avoid unbounded scans
    safe_limit = max(1, min(limit, 100))
    return [
        jobs.job_summary(j, registry)
        for j in jobs.list_jobs(db, limit=safe_limit, offset=max(offset, 0))
    ]


@router.get("/{job_id}", response_model=JobSnapshotOut)
def get_job(
    job_id: int,
    db: Session = Depends(get_db),
    registry: ActiveJobRegistry = Depends(get_registry),
    _: None = Depends(verify_api_key),
):
    try:
        return jobs.job_snapshot(db, job_id, registry)
    except JobServiceError as e:
        raise_http(e)


@router.get("/{job_id}/active")
def get_job_active(
    job_id: int,
    db: Session = Depends(get_db),
    registry: ActiveJobRegistry = Depends(get_registry),
    _: None = Depends(verify_api_key),
):
    """
    Whether a loop in this process owns the job. A ``processing`` job that is
    not active was interrupted (e.g. by a restart) and can be resumed.
    """
    job = job_store.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    summary = jobs.job_summary(job, registry)
    return {
        "job_id": job_id,
        "status": summary["status"],
        "is_active": summary["is_active"],
        "interrupted": summary["interrupted"],
    }


@router.get("/{job_id}/events", response_model=list[JobEventOut])
def get_job_events(
    job_id: int,
    since_id: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    job = job_store.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return events_since(db, job_id, job.job_type, since_id)


@router.get("/{job_id}/stream")
def stream_job(
    job_id: int,
    request: Request,
    last_event_id: str | None = Header(default=None, alias="Last-Event-ID"),
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    """
    Server-sent events for one job.

    Replays stored events after ``Last-Event-ID`` and then follows the log
    until the job is terminal, finishing with a ``job_done`` frame.
    """
    job = job_store.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return StreamingResponse(
        stream_job_events(
            job_id,
            job.job_type,
            parse_last_event_id(last_event_id),
            processor.session_factory,
            request.is_disconnected,
            poll_interval=settings.STREAM_POLL_INTERVAL_MS / 1000,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
