from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, ForeignKey
from datetime import datetime
import enum

from ..core.db import Base


class AccountStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_name = Column(String, nullable=False)
    domain = Column(String, unique=True, index=True, nullable=True)
    industry = Column(String, nullable=False)

    research_status = Column(
        Enum(
            AccountStatus,
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=AccountStatus.PENDING,
        index=True,
    )
    error_message = Column(Text, nullable=True)
    job_id = Column(Integer, ForeignKey("processing_jobs.id"), index=True, nullable=True)
    research_model = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)

    # auth0 (customer identity) research
    current_auth_solution = Column(Text, nullable=True)
    customer_base_info = Column(Text, nullable=True)
    security_incidents = Column(Text, nullable=True)
    news_and_funding = Column(Text, nullable=True)
    tech_transformation = Column(Text, nullable=True)
    prospects = Column(Text, nullable=True)
    research_summary = Column(Text, nullable=True)

    # okta (workforce identity) research
    okta_current_iam_solution = Column(Text, nullable=True)
    okta_workforce_info = Column(Text, nullable=True)
    okta_security_incidents = Column(Text, nullable=True)
    okta_news_and_funding = Column(Text, nullable=True)
    okta_tech_transformation = Column(Text, nullable=True)
    okta_ecosystem = Column(Text, nullable=True)
    okta_prospects = Column(Text, nullable=True)
    okta_research_summary = Column(Text, nullable=True)
    okta_processed_at = Column(DateTime, nullable=True)

    # auth0 categorization
    tier = Column(String(1), nullable=True)
    estimated_annual_revenue = Column(String, nullable=True)
    estimated_user_volume = Column(String, nullable=True)
    use_cases = Column(Text, nullable=True)       # JSON list
    auth0_skus = Column(Text, nullable=True)      # JSON list
    priority_score = Column(Integer, nullable=True)
    ai_suggestions = Column(Text, nullable=True)  # JSON, full collaborator payload
    last_edited_at = Column(DateTime, nullable=True)

    # okta categorization
    okta_tier = Column(String(1), nullable=True)
    okta_estimated_annual_revenue = Column(String, nullable=True)
    okta_estimated_user_volume = Column(String, nullable=True)
    okta_use_cases = Column(Text, nullable=True)
    okta_skus = Column(Text, nullable=True)
    okta_priority_score = Column(Integer, nullable=True)
    okta_ai_suggestions = Column(Text, nullable=True)
    okta_last_edited_at = Column(DateTime, nullable=True)
