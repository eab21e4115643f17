"""create accounts, processing_jobs and job_events tables

Revision ID: 5e1f0a2b7c3d
Revises:
Create Date: 2026-10-17 09:12:44.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5e1f0a2b7c3d'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

AUTH0_RESEARCH = (
    "current_auth_solution",
    "customer_base_info",
    "security_incidents",
    "news_and_funding",
    "tech_transformation",
    "prospects",
    "research_summary",
)
OKTA_RESEARCH = (
    "okta_current_iam_solution",
    "okta_workforce_info",
    "okta_security_incidents",
    "okta_news_and_funding",
    "okta_tech_transformation",
    "okta_ecosystem",
    "okta_prospects",
    "okta_research_summary",
)


def _categorization_columns(prefix: str, skus: str, suggestions: str, edited_at: str):
    return [
        sa.Column(f"{prefix}tier", sa.String(1), nullable=True),
        sa.Column(f"{prefix}estimated_annual_revenue", sa.String(), nullable=True),
        sa.Column(f"{prefix}estimated_user_volume", sa.String(), nullable=True),
        sa.Column(f"{prefix}use_cases", sa.Text(), nullable=True),
        sa.Column(skus, sa.Text(), nullable=True),
        sa.Column(f"{prefix}priority_score", sa.Integer(), nullable=True),
        sa.Column(suggestions, sa.Text(), nullable=True),
        sa.Column(edited_at, sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    """Create the job, account and job event tables."""
    op.create_table(
        "processing_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("filename", sa.String(), nullable=False),
        sa.Column("job_type", sa.String(16), nullable=False, server_default="processing"),
        sa.Column("total_accounts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("current_account_id", sa.Integer(), nullable=True),
        sa.Column("paused", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("research_type", sa.String(8), nullable=True),
        sa.Column("processing_mode", sa.String(16), nullable=True),
        sa.Column("concurrency", sa.Integer(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_processing_jobs_status", "processing_jobs", ["status"])

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_name", sa.String(), nullable=False),
        sa.Column("domain", sa.String(), nullable=True),
        sa.Column("industry", sa.String(), nullable=False),
        sa.Column("research_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("processing_jobs.id"), nullable=True),
        sa.Column("research_model", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        *[sa.Column(name, sa.Text(), nullable=True) for name in AUTH0_RESEARCH],
        *[sa.Column(name, sa.Text(), nullable=True) for name in OKTA_RESEARCH],
        sa.Column("okta_processed_at", sa.DateTime(), nullable=True),
        *_categorization_columns("", "auth0_skus", "ai_suggestions", "last_edited_at"),
        *_categorization_columns("okta_", "okta_skus", "okta_ai_suggestions", "okta_last_edited_at"),
    )
    op.create_index("ix_accounts_domain", "accounts", ["domain"], unique=True)
    op.create_index("ix_accounts_research_status", "accounts", ["research_status"])
    op.create_index("ix_accounts_job_id", "accounts", ["job_id"])

    op.create_table(
        "job_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "job_id",
            sa.Integer(),
            sa.ForeignKey("processing_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("job_type", sa.String(32), nullable=False, server_default="processing"),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("company_name", sa.String(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("step_index", sa.Integer(), nullable=True),
        sa.Column("total_steps", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_job_events_lookup", "job_events", ["job_id", "job_type", "id"])


def downgrade() -> None:
    """Drop the job event, account and job tables."""
    op.drop_index("ix_job_events_lookup", table_name="job_events")
    op.drop_table("job_events")
    op.drop_index("ix_accounts_job_id", table_name="accounts")
    op.drop_index("ix_accounts_research_status", table_name="accounts")
    op.drop_index("ix_accounts_domain", table_name="accounts")
    op.drop_table("accounts")
    op.drop_index("ix_processing_jobs_status", table_name="processing_jobs")
    op.drop_table("processing_jobs")
