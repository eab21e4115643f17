from __future__ import annotations

from dataclasses import dataclass

from .base import (
    CategorizationCollaborator,
    CategorizationResult,
    CompanyIdentity,
    ResearchCollaborator,
)
from .categorization import OpenAICategorizationCollaborator
from .research import OpenAIResearchCollaborator

__all__ = [
    "CategorizationCollaborator",
    "CategorizationResult",
    "Collaborators",
    "CompanyIdentity",
    "ResearchCollaborator",
    "get_collaborators",
]


@dataclass
class Collaborators:
    research: ResearchCollaborator
    categorizer: CategorizationCollaborator


def get_collaborators() -> Collaborators:
    """Default OpenAI-backed collaborators. Clients are created lazily on first call."""
    return Collaborators(
        research=OpenAIResearchCollaborator(),
        categorizer=OpenAICategorizationCollaborator(),
    )
