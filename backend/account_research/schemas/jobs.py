# backend/account_research/schemas/jobs.py
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.config import MAX_CONCURRENCY
from ..services.perspectives import ResearchType
from ..services.processor import ProcessingMode

MAX_COMPANY_NAME_LEN = 200
MAX_DOMAIN_LEN = 253
MAX_LABEL_LEN = 255


class BatchAccountRow(BaseModel):
    company_name: str
    domain: str | None = None
    industry: str

    @field_validator("company_name", "industry")
    @classmethod
    def _required_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        if len(v) > MAX_COMPANY_NAME_LEN:
            raise ValueError(f"must be at most {MAX_COMPANY_NAME_LEN} characters")
        return v

    @field_validator("domain", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            stripped = v.strip().lower()
            if len(stripped) > MAX_DOMAIN_LEN:
                raise ValueError("domain is too long")
            return stripped or None
        return v


class ProcessingParams(BaseModel):
    research_type: ResearchType = ResearchType.BOTH
    mode: ProcessingMode | None = None
    concurrency: int | None = Field(default=None, ge=1, le=MAX_CONCURRENCY)
    model: str | None = None


class BatchRequest(ProcessingParams):
    label: str = "Batch"
    accounts: List[BatchAccountRow]
    auto_start: bool = True

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: str) -> str:
        v = v.strip() or "Batch"
        return v[:MAX_LABEL_LEN]

    @field_validator("accounts")
    @classmethod
    def validate_accounts(cls, v: List[BatchAccountRow]) -> List[BatchAccountRow]:
        if not v:
            raise ValueError("accounts must not be empty")
        return v


class StartJobRequest(ProcessingParams):
    job_id: int


class AccountIdsRequest(ProcessingParams):
    account_ids: List[int]
    auto_start: bool = True

    @field_validator("account_ids")
    @classmethod
    def validate_ids(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("account_ids must be a non-empty list")
        return v


class RerunSectionRequest(BaseModel):
    perspective: str
    sections: List[str]
    additional_context: str | None = None
    model: str | None = None

    @field_validator("sections")
    @classmethod
    def validate_sections(cls, v: List[str]) -> List[str]:
        keys = list(dict.fromkeys(s.strip() for s in v if s.strip()))
        if not keys:
            raise ValueError("sections must be a non-empty list of section keys")
        return keys

    @field_validator("additional_context")
    @classmethod
    def blank_context_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class RerunSectionOut(BaseModel):
    account_id: int
    perspective: str
    results: Dict[str, str]


class JobOut(BaseModel):
    id: int
    filename: str
    job_type: str
    status: str
    paused: bool
    total_accounts: int
    processed_count: int
    failed_count: int
    progress_percent: int
    current_account_id: Optional[int] = None
    research_type: Optional[str] = None
    processing_mode: Optional[str] = None
    concurrency: Optional[int] = None
    is_active: bool
    interrupted: bool
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class AccountOut(BaseModel):
    id: int
    company_name: str
    domain: Optional[str] = None
    industry: str
    status: str
    error_message: Optional[str] = None
    error_display: Optional[str] = None
    job_id: Optional[int] = None
    tier: Optional[str] = None
    okta_tier: Optional[str] = None
    priority_score: Optional[int] = None
    okta_priority_score: Optional[int] = None
    processed_at: Optional[datetime] = None


class AccountDetailOut(AccountOut):
    research: dict
    categorization: dict


class JobEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_id: int
    job_type: str
    event_type: str
    account_id: Optional[int] = None
    company_name: Optional[str] = None
    message: str
    step_index: Optional[int] = None
    total_steps: Optional[int] = None
    created_at: datetime


class JobSnapshotOut(BaseModel):
    job: JobOut
    current_account: Optional[dict] = None
    accounts: List[AccountOut]


class BatchOut(BaseModel):
    job: JobOut
    created_ids: List[int]
    skipped_domains: List[str]
    started: bool


class JobActionOut(BaseModel):
    job_id: int
    status: str
    changed: bool
    message: str
    pending_accounts: Optional[int] = None
