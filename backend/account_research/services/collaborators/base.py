from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Literal

from pydantic import BaseModel, Field, field_validator

from ..perspectives import Perspective


@dataclass(frozen=True)
class CompanyIdentity:
    company_name: str
    domain: str | None
    industry: str

    @property
    def label(self) -> str:
        return f"{self.company_name} ({self.domain})" if self.domain else self.company_name


class CategorizationResult(BaseModel):
    tier: Literal["A", "B", "C"]
    tier_reasoning: str | None = None
    estimated_annual_revenue: str | None = None
    estimated_user_volume: str | None = None
    use_cases: List[str] = Field(default_factory=list)
    skus: List[str] = Field(default_factory=list)
    priority_score: int = Field(ge=1, le=10)
    priority_reasoning: str | None = None
    confidence: Dict[str, float] = Field(default_factory=dict)

    @field_validator("tier", mode="before")
    @classmethod
    def _normalise_tier(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class ResearchCollaborator(ABC):
    @abstractmethod
    async def research(
        self,
        company: CompanyIdentity,
        perspective: Perspective,
        section_key: str,
        context: Dict[str, str] | None = None,
        model: str | None = None,
        additional_context: str | None = None,
    ) -> str:
        """
        Return research text for one section.

        ``context`` holds earlier sections; ``additional_context`` is free text
        from an operator re-running the section.
        """


class CategorizationCollaborator(ABC):
    @abstractmethod
    async def categorize(self, account, perspective: Perspective) -> CategorizationResult:
        ...
