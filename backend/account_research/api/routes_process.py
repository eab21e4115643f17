import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..schemas.jobs import JobActionOut, StartJobRequest
from ..services import job_store, jobs
from ..services.errors import JobServiceError
from ..services.processor import JobProcessor, ProcessingOptions
from .deps import get_processor, raise_http, verify_api_key

router = APIRouter(prefix="/process", tags=["process"])
logger = logging.getLogger(__name__)


def _status(db: Session, job_id: int) -> str:
    db.expire_all()
    job = job_store.get_job(db, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.status.value


@router.post("/start", response_model=JobActionOut, status_code=202)
async def start_job(
    payload: StartJobRequest,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    if processor.is_active(payload.job_id):
        raise HTTPException(status_code=409, detail="Job is already being processed")

    options = ProcessingOptions(
        research_type=payload.research_type,
        mode=payload.mode,
        concurrency=payload.concurrency,
        model=payload.model,
    )
    try:
        started = await processor.start(payload.job_id, options)
    except JobServiceError as e:
        raise_http(e)
    if not started:
        raise HTTPException(status_code=409, detail="Job is already being processed")

    return {
        "job_id": payload.job_id,
        "status": _status(db, payload.job_id),
        "changed": True,
        "message": "Processing started",
    }


@router.post("/{job_id}/cancel", response_model=JobActionOut)
async def cancel_job(
    job_id: int,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    try:
        cancelled = await processor.cancel(job_id)
    except JobServiceError as e:
        raise_http(e)

    status = _status(db, job_id)
    if not cancelled:
        raise HTTPException(
            status_code=409,
            detail={"message": f"Job is already {status}", "status": status},
        )
    return {"job_id": job_id, "status": status, "changed": True, "message": "Job cancelled"}


@router.post("/{job_id}/pause", response_model=JobActionOut)
async def pause_job(
    job_id: int,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    try:
        changed = await processor.pause(job_id)
    except JobServiceError as e:
        raise_http(e)
    if not changed:
        raise HTTPException(status_code=409, detail="Only processing jobs can be paused")
    return {"job_id": job_id, "status": _status(db, job_id), "changed": True, "message": "Job paused"}


@router.post("/{job_id}/unpause", response_model=JobActionOut)
async def unpause_job(
    job_id: int,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    try:
        changed = await processor.unpause(job_id)
    except JobServiceError as e:
        raise_http(e)
    if not changed:
        raise HTTPException(status_code=409, detail="Only processing jobs can be unpaused")
    return {"job_id": job_id, "status": _status(db, job_id), "changed": True, "message": "Job resumed"}


@router.post("/{job_id}/resume", response_model=JobActionOut, status_code=202)
async def resume_job(
    job_id: int,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    """Restart an interrupted job over its remaining pending accounts."""
    try:
        pending = await processor.resume(job_id)
    except JobServiceError as e:
        raise_http(e)

    logger.info(
        "Resume requested for job %s",
        job_id,
        extra={"job_id": job_id, "step": "resume"},
    )
    return {
        "job_id": job_id,
        "status": _status(db, job_id),
        "changed": True,
        "message": f"Resumed with {pending} pending accounts",
        "pending_accounts": pending,
    }


@router.delete("/{job_id}", status_code=204)
def delete_job(
    job_id: int,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    try:
        jobs.delete_job(db, job_id, processor.registry)
    except JobServiceError as e:
        raise_http(e)
