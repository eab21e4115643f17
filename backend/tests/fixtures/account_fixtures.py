"""
Shared test doubles and builders for the job processing tests.

The fake collaborators stand in for the OpenAI-backed research and
categorization clients; they record every call and can be told to fail,
hang, or wait on a gate for specific companies.
"""
import asyncio
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from account_research.models.processing_job import JobType
from account_research.services import job_store
from account_research.services.collaborators import (
    CategorizationCollaborator,
    CategorizationResult,
    CompanyIdentity,
    ResearchCollaborator,
)
from account_research.services.errors import CollaboratorError
from account_research.services.jobs import BatchRow, register_batch
from account_research.services.perspectives import Perspective

COMPANIES = [
    ("Alpha Bank", "alphabank.com.au", "Banking"),
    ("Beta Retail", "betaretail.co.nz", "Retail"),
    ("Gamma Health", "gammahealth.com.au", "Healthcare"),
    ("Delta Energy", "deltaenergy.com.au", "Energy"),
    ("Epsilon Media", "epsilonmedia.co.nz", "Media"),
    ("Zeta Logistics", "zetalogistics.com.au", "Logistics"),
    ("Eta Insurance", "etainsurance.com.au", "Insurance"),
    ("Theta Education", "thetaedu.edu.au", "Education"),
]


class FakeResearch(ResearchCollaborator):
    def __init__(
        self,
        failures: Optional[Dict[str, str]] = None,
        hang: Iterable[str] = (),
        gates: Optional[Dict[str, asyncio.Event]] = None,
        delay: float = 0.0,
    ) -> None:
        self.failures = failures or {}
        self.hang: Set[str] = set(hang)
        self.gates = gates or {}
        self.delay = delay
        self.calls: List[Tuple[str, str, str]] = []
        self.additional_contexts: List[Optional[str]] = []

    async def research(
        self,
        company: CompanyIdentity,
        perspective: Perspective,
        section_key: str,
        context=None,
        model=None,
        additional_context=None,
    ) -> str:
        self.calls.append((company.company_name, perspective.name, section_key))
        self.additional_contexts.append(additional_context)
        gate = self.gates.get(company.company_name)
        if gate is not None:
            await gate.wait()
        if company.company_name in self.hang:
            await asyncio.sleep(3600)
        if self.delay:
            await asyncio.sleep(self.delay)
        if company.company_name in self.failures:
            raise CollaboratorError(self.failures[company.company_name])
        return f"{perspective.title} {section_key} notes for {company.company_name}"

    def companies(self) -> List[str]:
        seen: List[str] = []
        for name, _, _ in self.calls:
            if name not in seen:
                seen.append(name)
        return seen


class FakeCategorizer(CategorizationCollaborator):
    def __init__(self, failures: Optional[Dict[str, str]] = None) -> None:
        self.failures = failures or {}
        self.calls: List[Tuple[str, str]] = []

    async def categorize(self, account, perspective: Perspective) -> CategorizationResult:
        self.calls.append((account.company_name, perspective.name))
        if account.company_name in self.failures:
            raise CollaboratorError(self.failures[account.company_name])
        return CategorizationResult(
            tier="B",
            estimated_annual_revenue="$50M-$100M",
            estimated_user_volume="100K-500K users",
            use_cases=["Customer login", "MFA"],
            skus=["Core", "MFA"],
            priority_score=6,
            confidence={"tier": 0.7, "revenue": 0.5},
        )


def make_job(
    db: Session,
    count: int = 3,
    label: str = "test.csv",
    job_type: JobType = JobType.PROCESSING,
):
    """Register the first ``count`` companies as a pending job."""
    rows = [BatchRow(company_name=n, domain=d, industry=i) for n, d, i in COMPANIES[:count]]
    result = register_batch(db, label, rows, job_type=job_type)
    return result.job


def job_state(session_factory, job_id: int):
    """Fresh read of the job and its accounts, detached from any open session."""
    db = session_factory()
    try:
        job = job_store.get_job(db, job_id)
        accounts = job_store.get_accounts_by_job(db, job_id)
        db.expunge_all()
        return job, accounts
    finally:
        db.close()


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)
