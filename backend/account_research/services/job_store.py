"""
Row-level operations on accounts and processing jobs.

Every state transition is a single conditional UPDATE scoped by primary key
(and, for accounts, by the expected current status), committed together with
the job event describing it. Counters are only ever bumped with
``SET x = x + 1`` so concurrent workers never lose an increment.
"""
from __future__ import annotations

from datetime import datetime
import json
import logging
from typing import Iterable, List, Optional

from sqlalchemy import exists, func, select, update
from sqlalchemy.orm import Session

from ..models.account import Account, AccountStatus
from ..models.processing_job import (
    JobStatus,
    JobType,
    ProcessingJob,
    TERMINAL_JOB_STATUSES,
)
from .error_messages import humanize_error
from .events import EventType, record_job_event
from .perspectives import Perspective

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_LEN = 2000


# ── Reads ─────────────────────────────────────────────────────────────────────

def get_job(db: Session, job_id: int) -> Optional[ProcessingJob]:
    return db.query(ProcessingJob).filter(ProcessingJob.id == job_id).first()


def get_account(db: Session, account_id: int) -> Optional[Account]:
    return db.query(Account).filter(Account.id == account_id).first()


def get_accounts_by_ids(db: Session, ids: Iterable[int]) -> List[Account]:
    ids = list(ids)
    if not ids:
        return []
    return db.query(Account).filter(Account.id.in_(ids)).order_by(Account.id).all()


def get_accounts_by_job(db: Session, job_id: int) -> List[Account]:
    return db.query(Account).filter(Account.job_id == job_id).order_by(Account.id).all()


def count_accounts(db: Session, job_id: int, status: AccountStatus) -> int:
    return (
        db.query(func.count(Account.id))
        .filter(Account.job_id == job_id, Account.research_status == status)
        .scalar()
    ) or 0


# ── Job lifecycle ─────────────────────────────────────────────────────────────

def create_job(
    db: Session,
    filename: str,
    total_accounts: int,
    job_type: JobType = JobType.PROCESSING,
) -> ProcessingJob:
    job = ProcessingJob(
        filename=filename,
        total_accounts=total_accounts,
        job_type=job_type,
        status=JobStatus.PENDING,
    )
    db.add(job)
    db.flush()
    return job


def mark_job_started(
    db: Session,
    job_id: int,
    *,
    research_type: str,
    mode: str,
    concurrency: int,
    model: str | None,
) -> Optional[ProcessingJob]:
    """
    Claim the job for a processing loop.

    Returns None when the job has reached a terminal status in the meantime.
    """
    now = datetime.utcnow()
    result = db.execute(
        update(ProcessingJob)
        .where(
            ProcessingJob.id == job_id,
            ProcessingJob.status.in_([JobStatus.PENDING, JobStatus.PROCESSING]),
        )
        .values(
            status=JobStatus.PROCESSING,
            research_type=research_type,
            processing_mode=mode,
            concurrency=concurrency,
            model=model,
            started_at=func.coalesce(ProcessingJob.started_at, now),
            updated_at=now,
        )
    )
    if result.rowcount == 0:
        db.rollback()
        return None

    job = get_job(db, job_id)
    record_job_event(
        db,
        job_id,
        job_type=job.job_type,
        event_type=EventType.JOB_START,
        message=f"Processing {job.filename} ({mode}, {research_type})",
    )
    db.commit()
    db.refresh(job)
    return job


def finish_job(db: Session, job_id: int) -> bool:
    """processing -> completed once the pending queue is drained."""
    now = datetime.utcnow()
    result = db.execute(
        update(ProcessingJob)
        .where(ProcessingJob.id == job_id, ProcessingJob.status == JobStatus.PROCESSING)
        .values(
            status=JobStatus.COMPLETED,
            current_account_id=None,
            paused=False,
            completed_at=now,
            updated_at=now,
        )
    )
    if result.rowcount == 0:
        db.rollback()
        return False

    job = get_job(db, job_id)
    record_job_event(
        db,
        job_id,
        job_type=job.job_type,
        event_type=EventType.JOB_COMPLETE,
        message=(
            f"Job completed: {job.processed_count} processed, "
            f"{job.failed_count} failed of {job.total_accounts}"
        ),
    )
    db.commit()
    return True


def fail_job(db: Session, job_id: int, error: str) -> bool:
    """Orchestration failure; per-account failures never end up here."""
    now = datetime.utcnow()
    result = db.execute(
        update(ProcessingJob)
        .where(
            ProcessingJob.id == job_id,
            ProcessingJob.status.in_([JobStatus.PENDING, JobStatus.PROCESSING]),
        )
        .values(
            status=JobStatus.FAILED,
            current_account_id=None,
            paused=False,
            error_message=error[:ERROR_MESSAGE_MAX_LEN],
            completed_at=now,
            updated_at=now,
        )
    )
    if result.rowcount == 0:
        db.rollback()
        return False

    job = get_job(db, job_id)
    record_job_event(
        db,
        job_id,
        job_type=job.job_type,
        event_type=EventType.JOB_FAILED,
        message=f"Job failed: {humanize_error(error)}",
    )
    db.commit()
    return True


def cancel_job(db: Session, job_id: int) -> bool:
    """
    Cooperative cancel. Terminal jobs are left untouched (returns False).

    Accounts already claimed keep their status so in-flight work can still
    finish; untouched accounts stay pending.
    """
    now = datetime.utcnow()
    result = db.execute(
        update(ProcessingJob)
        .where(
            ProcessingJob.id == job_id,
            ProcessingJob.status.notin_(list(TERMINAL_JOB_STATUSES)),
        )
        .values(
            status=JobStatus.CANCELLED,
            paused=False,
            current_account_id=None,
            completed_at=now,
            updated_at=now,
        )
    )
    if result.rowcount == 0:
        db.rollback()
        return False

    job = get_job(db, job_id)
    record_job_event(
        db,
        job_id,
        job_type=job.job_type,
        event_type=EventType.JOB_CANCELLED,
        message="Job cancelled by operator",
    )
    db.commit()
    return True


def set_job_paused(db: Session, job_id: int, paused: bool) -> bool:
    result = db.execute(
        update(ProcessingJob)
        .where(ProcessingJob.id == job_id, ProcessingJob.status == JobStatus.PROCESSING)
        .values(paused=paused, updated_at=datetime.utcnow())
    )
    db.commit()
    return result.rowcount > 0


def prepare_resume(db: Session, job_id: int) -> int:
    """
    Put an interrupted or cancelled job back in the queue.

    Accounts left ``processing`` by a dead loop go back to ``pending``;
    completed and failed accounts are not touched. Returns the pending count.
    """
    now = datetime.utcnow()
    db.execute(
        update(Account)
        .where(Account.job_id == job_id, Account.research_status == AccountStatus.PROCESSING)
        .values(research_status=AccountStatus.PENDING, updated_at=now)
    )
    pending = count_accounts(db, job_id, AccountStatus.PENDING)
    if pending == 0:
        db.rollback()
        return 0

    db.execute(
        update(ProcessingJob)
        .where(ProcessingJob.id == job_id)
        .values(
            status=JobStatus.PENDING,
            current_account_id=None,
            paused=False,
            error_message=None,
            completed_at=None,
            updated_at=now,
        )
    )
    db.commit()
    return pending


# ── Account transitions ───────────────────────────────────────────────────────

def claim_next_account(db: Session, job_id: int) -> Optional[Account]:
    """
    pending -> processing for the lowest-id pending account of the job.

    Concurrent workers may pick the same candidate; the conditional UPDATE
    lets exactly one of them win and the others move on to the next row.
    Nothing is claimed unless the job is still ``processing`` and not paused,
    checked in the same statement so a concurrent cancel or pause wins.
    Returns None when nothing is claimable.
    """
    job_runnable = exists(
        select(ProcessingJob.id).where(
            ProcessingJob.id == job_id,
            ProcessingJob.status == JobStatus.PROCESSING,
            ProcessingJob.paused.is_(False),
        )
    )
    while True:
        candidate_id = (
            db.query(Account.id)
            .filter(
                Account.job_id == job_id,
                Account.research_status == AccountStatus.PENDING,
                job_runnable,
            )
            .order_by(Account.id)
            .limit(1)
            .scalar()
        )
        if candidate_id is None:
            db.rollback()
            return None

        now = datetime.utcnow()
        claimed = db.execute(
            update(Account)
            .where(
                Account.id == candidate_id,
                Account.job_id == job_id,
                Account.research_status == AccountStatus.PENDING,
                job_runnable,
            )
            .values(
                research_status=AccountStatus.PROCESSING,
                error_message=None,
                updated_at=now,
            )
        )
        if claimed.rowcount == 0:
            db.rollback()
            continue

        db.execute(
            update(ProcessingJob)
            .where(ProcessingJob.id == job_id)
            .values(current_account_id=candidate_id, updated_at=now)
        )
        job = get_job(db, job_id)
        account = get_account(db, candidate_id)
        record_job_event(
            db,
            job_id,
            job_type=job.job_type,
            event_type=EventType.ACCOUNT_START,
            message=f"Starting {account.company_name}",
            account_id=account.id,
            company_name=account.company_name,
        )
        db.commit()
        db.refresh(account)
        return account


def save_research(
    db: Session,
    account_id: int,
    perspective: Perspective,
    sections: dict,
    model: str | None = None,
) -> None:
    now = datetime.utcnow()
    # only the sections given are written; a partial re-run keeps the rest
    values = {s.column: sections[s.key] for s in perspective.sections if s.key in sections}
    if perspective.processed_at_column:
        values[perspective.processed_at_column] = now
    if model:
        values["research_model"] = model
    values["updated_at"] = now
    db.execute(update(Account).where(Account.id == account_id).values(**values))
    db.commit()


def save_categorization(db: Session, account_id: int, perspective: Perspective, result) -> None:
    cols = perspective.categorization
    now = datetime.utcnow()
    values = {
        cols.tier: result.tier,
        cols.revenue: result.estimated_annual_revenue,
        cols.volume: result.estimated_user_volume,
        cols.use_cases: json.dumps(result.use_cases),
        cols.skus: json.dumps(result.skus),
        cols.priority: result.priority_score,
        cols.suggestions: result.model_dump_json(),
        cols.edited_at: now,
        "updated_at": now,
    }
    db.execute(update(Account).where(Account.id == account_id).values(**values))
    db.commit()


def append_event(
    db: Session,
    job_id: int,
    event_type: EventType,
    message: str,
    *,
    account: Account | None = None,
    step_index: int | None = None,
    total_steps: int | None = None,
) -> None:
    """Standalone progress event (research steps, categorizing)."""
    job = get_job(db, job_id)
    record_job_event(
        db,
        job_id,
        job_type=job.job_type,
        event_type=event_type,
        message=message,
        account_id=account.id if account else None,
        company_name=account.company_name if account else None,
        step_index=step_index,
        total_steps=total_steps,
    )
    db.commit()


def _finish_account(
    db: Session,
    job_id: int,
    account: Account,
    status: AccountStatus,
    error_message: str | None,
    counter,
    event_type: EventType,
    message: str,
) -> bool:
    now = datetime.utcnow()
    result = db.execute(
        update(Account)
        .where(
            Account.id == account.id,
            Account.job_id == job_id,
            Account.research_status == AccountStatus.PROCESSING,
        )
        .values(
            research_status=status,
            error_message=error_message,
            processed_at=now,
            updated_at=now,
        )
    )
    if result.rowcount == 0:
        # reassigned or reset while in flight; leave counters alone
        db.rollback()
        logger.warning(
            "Account %s was no longer processing for job %s",
            account.id,
            job_id,
            extra={"job_id": job_id, "account_id": account.id},
        )
        return False

    db.execute(
        update(ProcessingJob)
        .where(ProcessingJob.id == job_id)
        .values({counter: counter + 1, ProcessingJob.updated_at: now})
    )
    db.execute(
        update(ProcessingJob)
        .where(ProcessingJob.id == job_id, ProcessingJob.current_account_id == account.id)
        .values(current_account_id=None)
    )
    job = get_job(db, job_id)
    record_job_event(
        db,
        job_id,
        job_type=job.job_type,
        event_type=event_type,
        message=message,
        account_id=account.id,
        company_name=account.company_name,
    )
    db.commit()
    return True


def complete_account(db: Session, job_id: int, account: Account) -> bool:
    return _finish_account(
        db,
        job_id,
        account,
        AccountStatus.COMPLETED,
        None,
        ProcessingJob.processed_count,
        EventType.ACCOUNT_COMPLETE,
        f"Completed {account.company_name}",
    )


def fail_account(db: Session, job_id: int, account: Account, raw_error: str) -> bool:
    return _finish_account(
        db,
        job_id,
        account,
        AccountStatus.FAILED,
        (raw_error or "Unknown error")[:ERROR_MESSAGE_MAX_LEN],
        ProcessingJob.failed_count,
        EventType.ACCOUNT_FAILED,
        f"{account.company_name} failed: {humanize_error(raw_error)}",
    )


def reset_accounts_to_pending(db: Session, accounts: Iterable[Account], job_id: int) -> int:
    """Explicit reset used by retry / reprocess / categorize: back to pending under ``job_id``."""
    ids = [a.id for a in accounts]
    if not ids:
        return 0
    result = db.execute(
        update(Account)
        .where(Account.id.in_(ids))
        .values(
            research_status=AccountStatus.PENDING,
            error_message=None,
            job_id=job_id,
            updated_at=datetime.utcnow(),
        )
    )
    return result.rowcount
