from sqlalchemy import Boolean, Column, Integer, String, Text, DateTime, Enum
from datetime import datetime
import enum

from ..core.db import Base


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class JobType(str, enum.Enum):
    PROCESSING = "processing"          # research + categorization
    CATEGORIZATION = "categorization"  # categorization over existing research


def _enum_column(enum_cls, **kwargs):
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
        ),
        **kwargs,
    )


class ProcessingJob(Base):
    __tablename__ = "processing_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    filename = Column(String, nullable=False)
    job_type = _enum_column(JobType, nullable=False, default=JobType.PROCESSING)
    total_accounts = Column(Integer, nullable=False, default=0)
    processed_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    status = _enum_column(JobStatus, nullable=False, default=JobStatus.PENDING, index=True)
    current_account_id = Column(Integer, nullable=True)
    paused = Column(Boolean, nullable=False, default=False)

    # options of the last start, reused when an interrupted job is resumed
    research_type = Column(String(8), nullable=True)
    processing_mode = Column(String(16), nullable=True)
    concurrency = Column(Integer, nullable=True)
    model = Column(String, nullable=True)

    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES
