import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.account import AccountStatus
from ..models.processing_job import ProcessingJob
from ..schemas.jobs import (
    AccountDetailOut,
    AccountIdsRequest,
    AccountOut,
    BatchOut,
    BatchRequest,
    JobOut,
    ProcessingParams,
    RerunSectionOut,
    RerunSectionRequest,
)
from ..services import job_store, jobs
from ..services.error_messages import humanize_error
from ..services.errors import CollaboratorError, JobServiceError
from ..services.processor import JobProcessor, ProcessingOptions
from .deps import get_processor, raise_http, verify_api_key

router = APIRouter(prefix="/accounts", tags=["accounts"])
logger = logging.getLogger(__name__)


def _options(params: ProcessingParams) -> ProcessingOptions:
    return ProcessingOptions(
        research_type=params.research_type,
        mode=params.mode,
        concurrency=params.concurrency,
        model=params.model,
    )


async def _start_new_job(
    processor: JobProcessor,
    db: Session,
    job: ProcessingJob,
    params: ProcessingParams,
) -> dict:
    try:
        await processor.start(job.id, _options(params))
    except JobServiceError as e:
        raise_http(e)
    db.refresh(job)
    return jobs.job_summary(job, processor.registry)


@router.post("/batch", response_model=BatchOut, status_code=201)
async def create_batch(
    payload: BatchRequest,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    rows = [
        jobs.BatchRow(company_name=r.company_name, domain=r.domain, industry=r.industry)
        for r in payload.accounts
    ]
    try:
        result = await asyncio.to_thread(jobs.register_batch, db, payload.label, rows)
    except JobServiceError as e:
        raise_http(e)

    if payload.auto_start:
        summary = await _start_new_job(processor, db, result.job, payload)
    else:
        summary = jobs.job_summary(result.job, processor.registry)

    return {
        "job": summary,
        "created_ids": result.created_ids,
        "skipped_domains": result.skipped_domains,
        "started": payload.auto_start,
    }


@router.get("", response_model=list[AccountOut])
def list_accounts(
    status: AccountStatus | None = None,
    job_id: int | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    accounts = jobs.list_accounts(db, status=status, job_id=job_id, limit=limit, offset=offset)
    return [jobs.account_summary(a) for a in accounts]


@router.get("/stats")
def account_stats(
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return jobs.account_stats(db)


@router.get("/{account_id}", response_model=AccountDetailOut)
def get_account(
    account_id: int,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    account = job_store.get_account(db, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return jobs.account_detail(account)


@router.post("/{account_id}/retry", response_model=JobOut, status_code=202)
async def retry_account(
    account_id: int,
    payload: ProcessingParams | None = None,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    try:
        job = await asyncio.to_thread(jobs.retry_accounts, db, [account_id])
    except JobServiceError as e:
        raise_http(e)
    logger.info(
        "Retrying account %s",
        account_id,
        extra={"job_id": job.id, "account_id": account_id, "step": "retry"},
    )
    return await _start_new_job(processor, db, job, payload or ProcessingParams())


@router.post("/{account_id}/reprocess", response_model=JobOut, status_code=202)
async def reprocess_account(
    account_id: int,
    payload: ProcessingParams | None = None,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    params = payload or ProcessingParams()
    try:
        job = await asyncio.to_thread(
            jobs.reprocess_accounts, db, [account_id], params.research_type
        )
    except JobServiceError as e:
        raise_http(e)
    return await _start_new_job(processor, db, job, params)


@router.post("/{account_id}/rerun-section", response_model=RerunSectionOut)
async def rerun_section(
    account_id: int,
    payload: RerunSectionRequest,
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    try:
        results = await processor.rerun_sections(
            account_id,
            payload.perspective,
            payload.sections,
            additional_context=payload.additional_context,
            model=payload.model,
        )
    except JobServiceError as e:
        raise_http(e)
    except CollaboratorError as e:
        raise HTTPException(status_code=502, detail=humanize_error(str(e))) from e
    return {"account_id": account_id, "perspective": payload.perspective, "results": results}


@router.post("/retry-bulk", response_model=JobOut, status_code=202)
async def retry_bulk(
    payload: AccountIdsRequest,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    try:
        job = await asyncio.to_thread(jobs.retry_accounts, db, payload.account_ids)
    except JobServiceError as e:
        raise_http(e)
    if not payload.auto_start:
        return jobs.job_summary(job, processor.registry)
    return await _start_new_job(processor, db, job, payload)


@router.post("/reprocess-bulk", response_model=JobOut, status_code=202)
async def reprocess_bulk(
    payload: AccountIdsRequest,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    try:
        job = await asyncio.to_thread(
            jobs.reprocess_accounts, db, payload.account_ids, payload.research_type
        )
    except JobServiceError as e:
        raise_http(e)
    if not payload.auto_start:
        return jobs.job_summary(job, processor.registry)
    return await _start_new_job(processor, db, job, payload)


@router.post("/categorize-bulk", response_model=JobOut, status_code=202)
async def categorize_bulk(
    payload: AccountIdsRequest,
    db: Session = Depends(get_db),
    processor: JobProcessor = Depends(get_processor),
    _: None = Depends(verify_api_key),
):
    try:
        job = await asyncio.to_thread(
            jobs.categorize_accounts, db, payload.account_ids, payload.research_type
        )
    except JobServiceError as e:
        raise_http(e)
    if not payload.auto_start:
        return jobs.job_summary(job, processor.registry)
    return await _start_new_job(processor, db, job, payload)
