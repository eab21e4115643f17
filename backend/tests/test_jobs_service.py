"""
Tests for jobs.py - batch registration, retry/reprocess scoping, snapshots
and deletion.
"""
import pytest

from account_research.models.account import AccountStatus
from account_research.models.job_event import JobEvent
from account_research.models.processing_job import JobStatus, JobType, ProcessingJob
from account_research.services import job_store, jobs
from account_research.services.errors import (
    AccountNotFound,
    DuplicateAccounts,
    InvalidAccountState,
    JobConflict,
    JobNotFound,
)
from account_research.services.events import EventType
from account_research.services.perspectives import AUTH0, ResearchType

from tests.fixtures.account_fixtures import make_job


def _fail(db, job_id, account, error="rate limit exceeded"):
    job_store.mark_job_started(
        db, job_id, research_type="both", mode="sequential", concurrency=1, model=None,
    )
    claimed = job_store.claim_next_account(db, job_id)
    assert claimed.id == account.id
    job_store.fail_account(db, job_id, claimed, error)


class TestRegisterBatch:
    def test_creates_pending_accounts(self, db):
        rows = [
            jobs.BatchRow("Alpha Bank", "  AlphaBank.com.AU ", "Banking"),
            jobs.BatchRow("No Domain Pty", None, "Retail"),
        ]
        result = jobs.register_batch(db, "upload.csv", rows)

        assert result.job.total_accounts == 2
        assert result.job.status == JobStatus.PENDING
        assert result.skipped_domains == []
        accounts = job_store.get_accounts_by_job(db, result.job.id)
        assert [a.domain for a in accounts] == ["alphabank.com.au", None]
        assert all(a.research_status == AccountStatus.PENDING for a in accounts)

    def test_skips_existing_domains(self, db):
        make_job(db, 2)
        rows = [
            jobs.BatchRow("Alpha Bank", "alphabank.com.au", "Banking"),
            jobs.BatchRow("New Co", "newco.com.au", "Retail"),
        ]
        result = jobs.register_batch(db, "second.csv", rows)

        assert result.skipped_domains == ["alphabank.com.au"]
        assert result.job.total_accounts == 1
        assert len(job_store.get_accounts_by_job(db, result.job.id)) == 1

    def test_all_existing_raises_conflict(self, db):
        make_job(db, 1)
        with pytest.raises(DuplicateAccounts):
            jobs.register_batch(db, "dup.csv", [jobs.BatchRow("Alpha Bank", "alphabank.com.au", "Banking")])
        assert db.query(ProcessingJob).count() == 1

    def test_duplicate_domains_inside_batch(self, db):
        rows = [
            jobs.BatchRow("A", "same.com", "x"),
            jobs.BatchRow("B", "SAME.com", "y"),
        ]
        with pytest.raises(InvalidAccountState, match="duplicate domains"):
            jobs.register_batch(db, "bad.csv", rows)

    def test_batch_size_limit(self, db):
        rows = [jobs.BatchRow(f"Company {i}", f"c{i}.com", "x") for i in range(101)]
        with pytest.raises(InvalidAccountState, match="Too many accounts"):
            jobs.register_batch(db, "big.csv", rows)

    def test_empty_batch(self, db):
        with pytest.raises(InvalidAccountState):
            jobs.register_batch(db, "empty.csv", [])


class TestRetry:
    """Retries always move accounts into a brand-new job."""

    def test_retry_failed_account(self, db):
        job = make_job(db, 2)
        account = job_store.get_accounts_by_job(db, job.id)[0]
        _fail(db, job.id, account)

        new_job = jobs.retry_accounts(db, [account.id])

        assert new_job.id != job.id
        assert new_job.total_accounts == 1
        assert new_job.status == JobStatus.PENDING
        assert new_job.filename.startswith("Retry: Alpha Bank - ")
        db.refresh(account)
        assert account.research_status == AccountStatus.PENDING
        assert account.job_id == new_job.id
        assert account.error_message is None
        # the old job keeps its history
        assert job_store.get_job(db, job.id).failed_count == 1

    def test_bulk_label(self, db):
        job = make_job(db, 2)
        accounts = job_store.get_accounts_by_job(db, job.id)
        _fail(db, job.id, accounts[0])
        claimed = job_store.claim_next_account(db, job.id)
        job_store.fail_account(db, job.id, claimed, "timeout")

        new_job = jobs.retry_accounts(db, [a.id for a in accounts])
        assert new_job.filename.startswith("Bulk Retry - 2 accounts - ")

    def test_only_failed_accounts(self, db):
        job = make_job(db, 2)
        accounts = job_store.get_accounts_by_job(db, job.id)

        with pytest.raises(InvalidAccountState) as exc:
            jobs.retry_accounts(db, [a.id for a in accounts])
        assert exc.value.account_ids == sorted(a.id for a in accounts)

    def test_unknown_account(self, db):
        with pytest.raises(AccountNotFound) as exc:
            jobs.retry_accounts(db, [41, 42])
        assert exc.value.missing_ids == [41, 42]


class TestReprocessAndCategorize:
    def test_reprocess_rejects_in_flight(self, db):
        job = make_job(db, 2)
        job_store.mark_job_started(
            db, job.id, research_type="both", mode="sequential", concurrency=1, model=None,
        )
        busy = job_store.claim_next_account(db, job.id)

        with pytest.raises(InvalidAccountState) as exc:
            jobs.reprocess_accounts(db, [busy.id], ResearchType.BOTH)
        assert exc.value.account_ids == [busy.id]

    def test_reprocess_label(self, db):
        job = make_job(db, 2)
        ids = [a.id for a in job_store.get_accounts_by_job(db, job.id)]

        new_job = jobs.reprocess_accounts(db, ids, ResearchType.OKTA)
        assert new_job.filename.startswith("Bulk Reprocess (Okta) - 2 accounts - ")
        assert new_job.job_type == JobType.PROCESSING

    def test_single_account_reprocess_label(self, db):
        job = make_job(db, 2)
        account = job_store.get_accounts_by_job(db, job.id)[1]

        new_job = jobs.reprocess_accounts(db, [account.id], ResearchType.AUTH0)

        assert new_job.filename.startswith("Reprocess (Auth0): Beta Retail - ")
        assert new_job.total_accounts == 1
        db.refresh(account)
        assert account.job_id == new_job.id

    def test_categorize_needs_research(self, db):
        job = make_job(db, 2)
        accounts = job_store.get_accounts_by_job(db, job.id)
        job_store.save_research(
            db, accounts[0].id, AUTH0, {s.key: "notes" for s in AUTH0.sections},
        )

        with pytest.raises(InvalidAccountState) as exc:
            jobs.categorize_accounts(db, [a.id for a in accounts], ResearchType.AUTH0)
        assert exc.value.account_ids == [accounts[1].id]

        cat_job = jobs.categorize_accounts(db, [accounts[0].id], ResearchType.AUTH0)
        assert cat_job.job_type == JobType.CATEGORIZATION
        assert cat_job.total_accounts == 1


class TestSnapshotAndDelete:
    def test_snapshot_progress(self, db, registry):
        job = make_job(db, 4)
        _fail(db, job.id, job_store.get_accounts_by_job(db, job.id)[0])
        current = job_store.claim_next_account(db, job.id)

        snap = jobs.job_snapshot(db, job.id, registry)

        assert snap["job"]["progress_percent"] == 25
        assert snap["job"]["failed_count"] == 1
        assert snap["job"]["is_active"] is False
        assert snap["job"]["interrupted"] is True
        assert snap["current_account"]["company_name"] == current.company_name
        assert snap["accounts"][0]["error_display"].startswith("The AI service is busy")

    def test_snapshot_active_job_is_not_interrupted(self, db, registry):
        job = make_job(db, 1)
        job_store.mark_job_started(
            db, job.id, research_type="both", mode="sequential", concurrency=1, model=None,
        )
        registry.register(job.id)

        snap = jobs.job_snapshot(db, job.id, registry)
        assert snap["job"]["is_active"] is True
        assert snap["job"]["interrupted"] is False

    def test_snapshot_unknown_job(self, db, registry):
        with pytest.raises(JobNotFound):
            jobs.job_snapshot(db, 77, registry)

    def test_delete_removes_job_accounts_and_events(self, db, registry):
        job = make_job(db, 2)
        job_store.append_event(db, job.id, EventType.RESEARCH_STEP, "step")

        jobs.delete_job(db, job.id, registry)

        assert job_store.get_job(db, job.id) is None
        assert jobs.list_jobs(db) == []
        assert job_store.get_accounts_by_job(db, job.id) == []
        assert db.query(JobEvent).filter(JobEvent.job_id == job.id).count() == 0

    def test_delete_refuses_active_job(self, db, registry):
        job = make_job(db, 1)
        registry.register(job.id)

        with pytest.raises(JobConflict):
            jobs.delete_job(db, job.id, registry)

    def test_account_stats(self, db):
        job = make_job(db, 3)
        _fail(db, job.id, job_store.get_accounts_by_job(db, job.id)[0])

        stats = jobs.account_stats(db)
        assert stats == {"pending": 2, "processing": 0, "completed": 0, "failed": 1, "total": 3}
