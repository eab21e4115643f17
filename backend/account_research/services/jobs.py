"""
Job scoping operations behind the HTTP layer.

Retries and reprocessing never loop inside an existing job: the selected
accounts are reset to ``pending`` and moved to a brand-new job, which the
caller then starts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import json
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import job_store
from .error_messages import humanize_error
from .errors import (
    AccountNotFound,
    DuplicateAccounts,
    InvalidAccountState,
    JobConflict,
    JobNotFound,
)
from .perspectives import PERSPECTIVES, ResearchType, has_research
from .registry import ActiveJobRegistry
from ..core.config import get_settings
from ..models.account import Account, AccountStatus
from ..models.job_event import JobEvent
from ..models.processing_job import JobStatus, JobType, ProcessingJob

logger = logging.getLogger(__name__)


@dataclass
class BatchRow:
    company_name: str
    domain: str | None
    industry: str


@dataclass
class BatchResult:
    job: ProcessingJob
    created_ids: List[int] = field(default_factory=list)
    skipped_domains: List[str] = field(default_factory=list)


def normalize_domain(domain: str | None) -> str | None:
    if domain is None:
        return None
    domain = domain.strip().lower()
    return domain or None


def _timestamp() -> str:
    return datetime.utcnow().strftime("%Y-%m-%d %H:%M UTC")


def register_batch(
    db: Session,
    label: str,
    rows: Sequence[BatchRow],
    job_type: JobType = JobType.PROCESSING,
) -> BatchResult:
    """
    Create a job and its accounts from a batch of companies.

    Rows whose domain already exists are skipped, both when found up front and
    when the insert trips the unique constraint; ``total_accounts`` counts
    only the inserted rows.
    """
    settings = get_settings()
    if not rows:
        raise InvalidAccountState("Batch is empty")
    if len(rows) > settings.MAX_BATCH_ACCOUNTS:
        raise InvalidAccountState(
            f"Too many accounts. Maximum is {settings.MAX_BATCH_ACCOUNTS}, got {len(rows)}"
        )

    domains = [normalize_domain(r.domain) for r in rows]
    seen: set = set()
    duplicates = sorted({d for d in domains if d and (d in seen or seen.add(d))})
    if duplicates:
        raise InvalidAccountState(f"Batch contains duplicate domains: {', '.join(duplicates)}")

    existing = {
        d
        for (d,) in db.query(Account.domain).filter(Account.domain.in_([d for d in domains if d])).all()
    }

    job = job_store.create_job(db, label, total_accounts=0, job_type=job_type)
    result = BatchResult(job=job)

    for row, domain in zip(rows, domains):
        if domain and domain in existing:
            result.skipped_domains.append(domain)
            continue
        try:
            with db.begin_nested():
                account = Account(
                    company_name=row.company_name.strip(),
                    domain=domain,
                    industry=row.industry.strip(),
                    job_id=job.id,
                    research_status=AccountStatus.PENDING,
                )
                db.add(account)
                db.flush()
        except IntegrityError:
            logger.info(
                "Skipping %s: domain %s already exists",
                row.company_name,
                domain,
                extra={"job_id": job.id},
            )
            result.skipped_domains.append(domain)
            continue
        result.created_ids.append(account.id)

    if not result.created_ids:
        db.rollback()
        raise DuplicateAccounts("All accounts in the batch already exist")

    job.total_accounts = len(result.created_ids)
    db.commit()
    db.refresh(job)

    logger.info(
        "Registered batch %s with %s accounts (%s skipped)",
        label,
        len(result.created_ids),
        len(result.skipped_domains),
        extra={"job_id": job.id, "step": "register_batch"},
    )
    return result


def _load_accounts(db: Session, account_ids: Iterable[int]) -> List[Account]:
    ids = list(dict.fromkeys(account_ids))
    if not ids:
        raise InvalidAccountState("accountIds must be a non-empty list")
    accounts = job_store.get_accounts_by_ids(db, ids)
    missing = set(ids) - {a.id for a in accounts}
    if missing:
        raise AccountNotFound(missing)
    return accounts


def _rescope(
    db: Session,
    accounts: List[Account],
    label: str,
    job_type: JobType = JobType.PROCESSING,
) -> ProcessingJob:
    job = job_store.create_job(db, label, len(accounts), job_type=job_type)
    job_store.reset_accounts_to_pending(db, accounts, job.id)
    db.commit()
    db.refresh(job)
    logger.info(
        "Created job %s for %s accounts",
        label,
        len(accounts),
        extra={"job_id": job.id, "step": "rescope"},
    )
    return job


def retry_accounts(db: Session, account_ids: Iterable[int]) -> ProcessingJob:
    """Only ``failed`` accounts can be retried; they move to a fresh job."""
    accounts = _load_accounts(db, account_ids)
    not_failed = [a.id for a in accounts if a.research_status != AccountStatus.FAILED]
    if not_failed:
        raise InvalidAccountState("Only failed accounts can be retried", not_failed)

    if len(accounts) == 1:
        label = f"Retry: {accounts[0].company_name} - {_timestamp()}"
    else:
        label = f"Bulk Retry - {len(accounts)} accounts - {_timestamp()}"
    return _rescope(db, accounts, label)


def reprocess_accounts(
    db: Session,
    account_ids: Iterable[int],
    research_type: ResearchType,
) -> ProcessingJob:
    """Re-research accounts in any settled status (not while they are in flight)."""
    accounts = _load_accounts(db, account_ids)
    busy = [a.id for a in accounts if a.research_status == AccountStatus.PROCESSING]
    if busy:
        raise InvalidAccountState("Accounts are currently being processed", busy)

    research_label = {"both": "Both", "auth0": "Auth0", "okta": "Okta"}[ResearchType(research_type).value]
    if len(accounts) == 1:
        label = f"Reprocess ({research_label}): {accounts[0].company_name} - {_timestamp()}"
    else:
        label = f"Bulk Reprocess ({research_label}) - {len(accounts)} accounts - {_timestamp()}"
    return _rescope(db, accounts, label)


def categorize_accounts(
    db: Session,
    account_ids: Iterable[int],
    research_type: ResearchType,
) -> ProcessingJob:
    """Categorization-only job over accounts that already carry research."""
    accounts = _load_accounts(db, account_ids)
    busy = [a.id for a in accounts if a.research_status == AccountStatus.PROCESSING]
    if busy:
        raise InvalidAccountState("Accounts are currently being processed", busy)

    wanted = [PERSPECTIVES[p] for p in ("auth0", "okta")
              if ResearchType(research_type) in (ResearchType.BOTH, ResearchType(p))]
    unresearched = [a.id for a in accounts if not any(has_research(a, p) for p in wanted)]
    if unresearched:
        raise InvalidAccountState("Accounts have no research to categorize", unresearched)

    label = f"Categorize - {len(accounts)} accounts - {_timestamp()}"
    return _rescope(db, accounts, label, job_type=JobType.CATEGORIZATION)


def delete_job(db: Session, job_id: int, registry: ActiveJobRegistry) -> None:
    """Delete a job, its accounts and (by FK cascade) its event log."""
    job = job_store.get_job(db, job_id)
    if job is None:
        raise JobNotFound(f"Job {job_id} not found")
    if registry.is_active(job_id):
        raise JobConflict(f"Job {job_id} is running; cancel it first")

    db.query(JobEvent).filter(JobEvent.job_id == job_id).delete(synchronize_session="fetch")
    db.query(Account).filter(Account.job_id == job_id).delete(synchronize_session="fetch")
    db.query(ProcessingJob).filter(ProcessingJob.id == job_id).delete(synchronize_session="fetch")
    db.commit()
    logger.info("Deleted job %s", job_id, extra={"job_id": job_id, "step": "delete"})


# ── Read models ──────────────────────────────────────────────────────────────

def job_summary(job: ProcessingJob, registry: ActiveJobRegistry) -> Dict:
    active = registry.is_active(job.id)
    progress = (
        round(((job.processed_count + job.failed_count) / job.total_accounts) * 100)
        if job.total_accounts
        else 0
    )
    return {
        "id": job.id,
        "filename": job.filename,
        "job_type": job.job_type.value,
        "status": job.status.value,
        "paused": bool(job.paused),
        "total_accounts": job.total_accounts,
        "processed_count": job.processed_count,
        "failed_count": job.failed_count,
        "progress_percent": progress,
        "current_account_id": job.current_account_id,
        "research_type": job.research_type,
        "processing_mode": job.processing_mode,
        "concurrency": job.concurrency,
        "is_active": active,
        # row says processing but no loop in this process owns it
        "interrupted": job.status == JobStatus.PROCESSING and not active,
        "error_message": job.error_message,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
    }


def account_summary(account: Account) -> Dict:
    return {
        "id": account.id,
        "company_name": account.company_name,
        "domain": account.domain,
        "industry": account.industry,
        "status": account.research_status.value,
        "error_message": account.error_message,
        "error_display": humanize_error(account.error_message) if account.error_message else None,
        "job_id": account.job_id,
        "tier": account.tier,
        "okta_tier": account.okta_tier,
        "priority_score": account.priority_score,
        "okta_priority_score": account.okta_priority_score,
        "processed_at": account.processed_at,
    }


def job_snapshot(db: Session, job_id: int, registry: ActiveJobRegistry) -> Dict:
    job = job_store.get_job(db, job_id)
    if job is None:
        raise JobNotFound(f"Job {job_id} not found")

    current = None
    if job.current_account_id:
        acc = job_store.get_account(db, job.current_account_id)
        if acc is not None:
            current = {"id": acc.id, "company_name": acc.company_name, "domain": acc.domain}

    return {
        "job": job_summary(job, registry),
        "current_account": current,
        "accounts": [account_summary(a) for a in job_store.get_accounts_by_job(db, job_id)],
    }


def account_stats(db: Session) -> Dict[str, int]:
    rows = (
        db.query(Account.research_status, func.count(Account.id))
        .group_by(Account.research_status)
        .all()
    )
    counts = {status.value: 0 for status in AccountStatus}
    for status, count in rows:
        counts[getattr(status, "value", status)] = count
    counts["total"] = sum(counts.values())
    return counts


def _json_list(raw: str | None) -> List:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        return []
    return value if isinstance(value, list) else []


def account_detail(account: Account) -> Dict:
    research: Dict[str, Dict] = {}
    categorization: Dict[str, Dict] = {}
    for name, perspective in PERSPECTIVES.items():
        research[name] = {s.key: getattr(account, s.column) for s in perspective.sections}
        cols = perspective.categorization
        categorization[name] = {
            "tier": getattr(account, cols.tier),
            "estimated_annual_revenue": getattr(account, cols.revenue),
            "estimated_user_volume": getattr(account, cols.volume),
            "use_cases": _json_list(getattr(account, cols.use_cases)),
            "skus": _json_list(getattr(account, cols.skus)),
            "priority_score": getattr(account, cols.priority),
            "last_edited_at": getattr(account, cols.edited_at),
        }
    return {**account_summary(account), "research": research, "categorization": categorization}


def list_accounts(
    db: Session,
    *,
    status: Optional[AccountStatus] = None,
    job_id: Optional[int] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Account]:
    query = db.query(Account)
    if status is not None:
        query = query.filter(Account.research_status == status)
    if job_id is not None:
        query = query.filter(Account.job_id == job_id)
    return query.order_by(Account.id.asc()).offset(offset).limit(limit).all()


def list_jobs(db: Session, *, limit: int = 50, offset: int = 0) -> List[ProcessingJob]:
    return (
        db.query(ProcessingJob)
        .order_by(ProcessingJob.created_at.desc(), ProcessingJob.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
