"""
Tests for the HTTP routers.

The processor's ``start`` is replaced with a recorder so requests never spawn
background loops; every other processor operation runs for real against the
temporary database.
"""
import json

import pytest
from fastapi.testclient import TestClient

from account_research.api import deps
from account_research.core.db import get_db
from account_research.main import app
from account_research.models.processing_job import JobStatus, JobType
from account_research.services import job_store
from account_research.services.errors import JobNotFound
from account_research.services.events import EventType, events_since
from account_research.services.processor import JobProcessor

from tests.fixtures.account_fixtures import make_job


class RecordingProcessor(JobProcessor):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.started = []

    async def start(self, job_id, options=None):
        if self.registry.is_active(job_id):
            return False
        if await self._db(job_store.get_job, job_id) is None:
            raise JobNotFound(f"Job {job_id} not found")
        self.started.append((job_id, options))
        return True


@pytest.fixture
def processor(registry, session_factory, research, categorizer, settings):
    return RecordingProcessor(registry, session_factory, research, categorizer, settings)


@pytest.fixture
def client(session_factory, processor):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.state.processor = processor
    yield TestClient(app)
    app.dependency_overrides.clear()


BATCH = {
    "label": "anz-banks.csv",
    "accounts": [
        {"company_name": "Alpha Bank", "domain": "AlphaBank.com.au", "industry": "Banking"},
        {"company_name": "Beta Retail", "domain": "betaretail.co.nz", "industry": "Retail"},
    ],
    "mode": "parallel",
    "concurrency": 2,
}


class TestAccountsApi:
    def test_batch_creates_and_starts_job(self, client, processor):
        resp = client.post("/api/accounts/batch", json=BATCH)

        assert resp.status_code == 201
        body = resp.json()
        assert body["job"]["total_accounts"] == 2
        assert body["started"] is True
        assert len(body["created_ids"]) == 2
        job_id, options = processor.started[0]
        assert job_id == body["job"]["id"]
        assert options.concurrency == 2
        assert options.mode.value == "parallel"

    def test_batch_without_auto_start(self, client, processor):
        resp = client.post("/api/accounts/batch", json={**BATCH, "auto_start": False})

        assert resp.status_code == 201
        assert resp.json()["job"]["status"] == "pending"
        assert processor.started == []

    def test_batch_all_duplicates_conflict(self, client):
        client.post("/api/accounts/batch", json={**BATCH, "auto_start": False})
        resp = client.post("/api/accounts/batch", json={**BATCH, "auto_start": False})
        assert resp.status_code == 409

    @pytest.mark.parametrize("payload", [
        {**BATCH, "concurrency": 11},
        {**BATCH, "concurrency": 0},
        {**BATCH, "accounts": []},
        {**BATCH, "research_type": "azure"},
        {**BATCH, "accounts": [{"company_name": " ", "industry": "x"}]},
    ])
    def test_batch_validation(self, client, payload):
        assert client.post("/api/accounts/batch", json=payload).status_code == 422

    def test_list_stats_and_detail(self, client, db):
        job = make_job(db, 2)
        account_id = job_store.get_accounts_by_job(db, job.id)[0].id

        listed = client.get("/api/accounts", params={"job_id": job.id})
        assert [a["company_name"] for a in listed.json()] == ["Alpha Bank", "Beta Retail"]

        stats = client.get("/api/accounts/stats").json()
        assert stats["pending"] == 2 and stats["total"] == 2

        detail = client.get(f"/api/accounts/{account_id}").json()
        assert detail["status"] == "pending"
        assert set(detail["research"]) == {"auth0", "okta"}
        assert detail["categorization"]["auth0"]["use_cases"] == []

    def test_unknown_account_404(self, client):
        assert client.get("/api/accounts/999").status_code == 404

    def test_retry_pending_account_rejected(self, client, db):
        job = make_job(db, 1)
        account_id = job_store.get_accounts_by_job(db, job.id)[0].id

        resp = client.post(f"/api/accounts/{account_id}/retry")
        assert resp.status_code == 400
        assert resp.json()["detail"]["account_ids"] == [account_id]

    def test_retry_failed_account_starts_new_job(self, client, db, processor):
        job = make_job(db, 1)
        job_store.mark_job_started(
            db, job.id, research_type="both", mode="sequential", concurrency=1, model=None,
        )
        account = job_store.claim_next_account(db, job.id)
        job_store.fail_account(db, job.id, account, "429 rate limit")

        resp = client.post(f"/api/accounts/{account.id}/retry")

        assert resp.status_code == 202
        new_job = resp.json()
        assert new_job["id"] != job.id
        assert new_job["filename"].startswith("Retry: Alpha Bank")
        assert processor.started[0][0] == new_job["id"]

    def test_reprocess_single_account(self, client, db, processor):
        job = make_job(db, 2)
        account_id = job_store.get_accounts_by_job(db, job.id)[1].id

        resp = client.post(f"/api/accounts/{account_id}/reprocess", json={"research_type": "okta"})

        assert resp.status_code == 202
        new_job = resp.json()
        assert new_job["filename"].startswith("Reprocess (Okta): Beta Retail")
        assert new_job["total_accounts"] == 1
        started_id, options = processor.started[0]
        assert started_id == new_job["id"]
        assert options.research_type.value == "okta"

    def test_rerun_section(self, client, db, research):
        job = make_job(db, 1)
        account_id = job_store.get_accounts_by_job(db, job.id)[0].id

        resp = client.post(
            f"/api/accounts/{account_id}/rerun-section",
            json={
                "perspective": "okta",
                "sections": ["okta_ecosystem"],
                "additional_context": "  Existing Okta customer since 2021 ",
            },
        )

        assert resp.status_code == 200
        assert resp.json() == {
            "account_id": account_id,
            "perspective": "okta",
            "results": {"okta_ecosystem": "Okta okta_ecosystem notes for Alpha Bank"},
        }
        assert research.additional_contexts == ["Existing Okta customer since 2021"]
        detail = client.get(f"/api/accounts/{account_id}").json()
        assert detail["research"]["okta"]["okta_ecosystem"] == "Okta okta_ecosystem notes for Alpha Bank"

    def test_rerun_section_validation(self, client, db):
        job = make_job(db, 1)
        account_id = job_store.get_accounts_by_job(db, job.id)[0].id
        url = f"/api/accounts/{account_id}/rerun-section"

        assert client.post(url, json={"perspective": "auth0", "sections": []}).status_code == 422
        assert client.post(url, json={"perspective": "azure", "sections": ["prospects"]}).status_code == 400
        bad_key = client.post(url, json={"perspective": "auth0", "sections": ["okta_ecosystem"]})
        assert bad_key.status_code == 400
        assert "okta_ecosystem" in bad_key.json()["detail"]
        missing = client.post(
            "/api/accounts/999/rerun-section", json={"perspective": "auth0", "sections": ["prospects"]},
        )
        assert missing.status_code == 404

    def test_bulk_ids_required(self, client):
        assert client.post("/api/accounts/retry-bulk", json={"account_ids": []}).status_code == 422
        assert client.post("/api/accounts/reprocess-bulk", json={"account_ids": [5]}).status_code == 404


class TestJobsApi:
    def test_snapshot_and_active(self, client, db):
        job = make_job(db, 2)

        snap = client.get(f"/api/jobs/{job.id}").json()
        assert snap["job"]["total_accounts"] == 2
        assert len(snap["accounts"]) == 2

        active = client.get(f"/api/jobs/{job.id}/active").json()
        assert active == {"job_id": job.id, "status": "pending", "is_active": False, "interrupted": False}

    def test_list_jobs(self, client, db):
        make_job(db, 1, label="first.csv")
        assert [j["filename"] for j in client.get("/api/jobs").json()] == ["first.csv"]

    def test_events_since(self, client, db):
        job = make_job(db, 1)
        for i in range(3):
            job_store.append_event(db, job.id, EventType.RESEARCH_STEP, f"step {i}")

        first = client.get(f"/api/jobs/{job.id}/events").json()
        tail = client.get(f"/api/jobs/{job.id}/events", params={"since_id": first[0]["id"]}).json()
        assert [e["message"] for e in tail] == ["step 1", "step 2"]

    def test_stream_replays_after_last_event_id(self, client, db):
        job = make_job(db, 1)
        for i in range(4):
            job_store.append_event(db, job.id, EventType.RESEARCH_STEP, f"step {i}")
        job_store.cancel_job(db, job.id)
        ids = [e.id for e in events_since(db, job.id, JobType.PROCESSING)]

        resp = client.get(f"/api/jobs/{job.id}/stream", headers={"Last-Event-ID": str(ids[1])})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache, no-transform"
        frames = [f for f in resp.text.split("\n\n") if f]
        assert [int(f.split("\n")[0][4:]) for f in frames[:-1]] == ids[2:]
        assert json.loads(frames[-1][6:]) == {"event_type": "job_done", "status": "cancelled"}

    def test_stream_unknown_job(self, client):
        assert client.get("/api/jobs/404/stream").status_code == 404
        assert client.get("/api/jobs/abc/stream").status_code == 422


class TestProcessApi:
    def test_start_and_duplicate_start(self, client, db, processor, registry):
        job = make_job(db, 1)

        resp = client.post("/api/process/start", json={"job_id": job.id, "mode": "sequential"})
        assert resp.status_code == 202
        assert processor.started[0][0] == job.id

        registry.register(job.id)
        resp = client.post("/api/process/start", json={"job_id": job.id})
        assert resp.status_code == 409

    def test_start_unknown_job(self, client):
        assert client.post("/api/process/start", json={"job_id": 555}).status_code == 404

    def test_cancel_then_cancel_again(self, client, db):
        job = make_job(db, 2)

        first = client.post(f"/api/process/{job.id}/cancel")
        assert first.status_code == 200
        assert first.json()["status"] == "cancelled"

        second = client.post(f"/api/process/{job.id}/cancel")
        assert second.status_code == 409
        assert second.json()["detail"]["status"] == "cancelled"
        db.expire_all()
        assert job_store.get_job(db, job.id).status == JobStatus.CANCELLED

    def test_pause_requires_processing(self, client, db):
        job = make_job(db, 1)
        assert client.post(f"/api/process/{job.id}/pause").status_code == 409

    def test_resume_interrupted_job(self, client, db, processor):
        job = make_job(db, 2)
        job_store.mark_job_started(
            db, job.id, research_type="both", mode="sequential", concurrency=1, model=None,
        )
        job_store.claim_next_account(db, job.id)

        resp = client.post(f"/api/process/{job.id}/resume")

        assert resp.status_code == 202
        assert resp.json()["pending_accounts"] == 2
        assert processor.started[0][0] == job.id

    def test_delete(self, client, db, registry):
        job = make_job(db, 1)
        registry.register(job.id)
        assert client.delete(f"/api/process/{job.id}").status_code == 409

        registry.clear()
        assert client.delete(f"/api/process/{job.id}").status_code == 204
        assert client.get(f"/api/jobs/{job.id}").status_code == 404


class TestAuth:
    def test_api_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(deps.settings, "API_AUTH_KEY", "s3cret")

        assert client.get("/api/jobs").status_code == 401
        assert client.get("/api/jobs", headers={"X-API-Key": "wrong"}).status_code == 401
        assert client.get("/api/jobs", headers={"X-API-Key": "s3cret"}).status_code == 200
