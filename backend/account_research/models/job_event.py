from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index
from datetime import datetime

from ..core.db import Base


class JobEvent(Base):
    __tablename__ = "job_events"
    __table_args__ = (
        Index("ix_job_events_lookup", "job_id", "job_type", "id"),
    )

    # auto-increment id is the replay cursor; never assigned by callers
    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Integer,
                    ForeignKey("processing_jobs.id", ondelete="CASCADE"),
                    nullable=False)
    job_type = Column(String(32), nullable=False, default="processing")
    event_type = Column(String(32), nullable=False)  # "account_start", "research_step", …
    account_id = Column(Integer, nullable=True)
    company_name = Column(String, nullable=True)
    message = Column(Text, nullable=False)
    step_index = Column(Integer, nullable=True)
    total_steps = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
