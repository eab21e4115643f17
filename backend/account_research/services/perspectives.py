"""
Research perspectives.

An account is researched and categorized along two independent tracks:

- ``auth0``: customer identity (CIAM) view, 7 research sections.
- ``okta``: workforce identity view, 8 research sections.

Each section maps to one column on ``accounts``; each perspective also owns a
set of categorization columns. ``both`` runs auth0 first, then okta.
"""
from __future__ import annotations

from dataclasses import dataclass
import enum
from typing import Dict, Tuple


class ResearchType(str, enum.Enum):
    AUTH0 = "auth0"
    OKTA = "okta"
    BOTH = "both"


@dataclass(frozen=True)
class ResearchSection:
    key: str
    label: str
    column: str


@dataclass(frozen=True)
class CategorizationColumns:
    tier: str
    revenue: str
    volume: str
    use_cases: str
    skus: str
    priority: str
    suggestions: str
    edited_at: str


@dataclass(frozen=True)
class Perspective:
    name: str
    title: str
    sections: Tuple[ResearchSection, ...]
    categorization: CategorizationColumns
    processed_at_column: str | None = None

    @property
    def total_steps(self) -> int:
        return len(self.sections)


AUTH0 = Perspective(
    name="auth0",
    title="Auth0",
    sections=(
        ResearchSection("current_auth_solution", "Current authentication solution", "current_auth_solution"),
        ResearchSection("customer_base", "Customer base and scale", "customer_base_info"),
        ResearchSection("security_incidents", "Security incidents and compliance", "security_incidents"),
        ResearchSection("news_and_funding", "News and funding", "news_and_funding"),
        ResearchSection("tech_transformation", "Tech transformation", "tech_transformation"),
        ResearchSection("prospects", "Key decision-makers", "prospects"),
        ResearchSection("research_summary", "Executive summary", "research_summary"),
    ),
    categorization=CategorizationColumns(
        tier="tier",
        revenue="estimated_annual_revenue",
        volume="estimated_user_volume",
        use_cases="use_cases",
        skus="auth0_skus",
        priority="priority_score",
        suggestions="ai_suggestions",
        edited_at="last_edited_at",
    ),
)

OKTA = Perspective(
    name="okta",
    title="Okta",
    sections=(
        ResearchSection("current_iam_solution", "Current IAM solution", "okta_current_iam_solution"),
        ResearchSection("workforce_info", "Workforce and IT environment", "okta_workforce_info"),
        ResearchSection("security_incidents", "Security incidents and Zero Trust maturity", "okta_security_incidents"),
        ResearchSection("news_and_funding", "News and funding", "okta_news_and_funding"),
        ResearchSection("tech_transformation", "IT modernisation", "okta_tech_transformation"),
        ResearchSection("okta_ecosystem", "Okta ecosystem relationship", "okta_ecosystem"),
        ResearchSection("prospects", "Key decision-makers", "okta_prospects"),
        ResearchSection("research_summary", "Executive summary", "okta_research_summary"),
    ),
    categorization=CategorizationColumns(
        tier="okta_tier",
        revenue="okta_estimated_annual_revenue",
        volume="okta_estimated_user_volume",
        use_cases="okta_use_cases",
        skus="okta_skus",
        priority="okta_priority_score",
        suggestions="okta_ai_suggestions",
        edited_at="okta_last_edited_at",
    ),
    processed_at_column="okta_processed_at",
)

PERSPECTIVES: Dict[str, Perspective] = {p.name: p for p in (AUTH0, OKTA)}


def perspectives_for(research_type: ResearchType | str) -> Tuple[Perspective, ...]:
    value = ResearchType(research_type)
    if value == ResearchType.BOTH:
        return (AUTH0, OKTA)
    return (PERSPECTIVES[value.value],)


def has_research(account, perspective: Perspective) -> bool:
    """True when the summary section of ``perspective`` is populated."""
    return bool(getattr(account, perspective.sections[-1].column, None))
