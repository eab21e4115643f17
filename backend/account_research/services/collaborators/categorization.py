from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from pydantic import ValidationError

from .base import CategorizationCollaborator, CategorizationResult
from ..errors import CollaboratorError
from ..llm import get_llm_client, limit_llm_concurrency, retry_transient
from ..perspectives import Perspective
from ...core.config import get_settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a {title} sales intelligence analyst. Be highly selective with Tier A "
    "assignments; most accounts are Tier B or C. Respond with valid JSON only."
)

RESPONSE_SHAPE = {
    "tier": "A|B|C",
    "tier_reasoning": "...",
    "estimated_annual_revenue": "$X-$Y",
    "estimated_user_volume": "X-Y users",
    "use_cases": ["..."],
    "skus": ["..."],
    "priority_score": 5,
    "priority_reasoning": "...",
    "confidence": {"tier": 0.8, "revenue": 0.6, "volume": 0.6, "use_cases": 0.7, "skus": 0.7},
}


def parse_categorization(raw: str | None) -> CategorizationResult:
    """Validate the model's JSON. Unusable output is a collaborator failure."""
    if not raw:
        raise CollaboratorError("No content in categorization response")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CollaboratorError(f"Categorization response is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise CollaboratorError("Categorization response must be a JSON object")
    try:
        return CategorizationResult.model_validate(data)
    except ValidationError as e:
        raise CollaboratorError(f"Invalid categorization output: {e.errors()[0]['msg']}") from e


class OpenAICategorizationCollaborator(CategorizationCollaborator):
    def __init__(self, model: str | None = None) -> None:
        self.model = model or get_settings().CATEGORIZATION_MODEL

    def _build_prompt(self, account, perspective: Perspective) -> str:
        lines = [
            f"Company: {account.company_name}",
            f"Industry: {account.industry}",
            f"Domain: {account.domain or 'unknown'}",
            "",
            "## Research",
        ]
        for section in perspective.sections:
            value = getattr(account, section.column, None) or "Not available"
            lines.append(f"### {section.label}\n{value}")
        lines.append("")
        lines.append("Return JSON shaped like:")
        lines.append(json.dumps(RESPONSE_SHAPE))
        return "\n".join(lines)

    async def categorize(self, account, perspective: Perspective) -> CategorizationResult:
        prompt = self._build_prompt(account, perspective)

        @retry_transient
        def _call_openai_sync() -> Any:
            client = get_llm_client()
            with limit_llm_concurrency():
                return client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT.format(title=perspective.title)},
                        {"role": "user", "content": prompt},
                    ],
                    response_format={"type": "json_object"},
                )

        try:
            resp = await asyncio.to_thread(_call_openai_sync)
        except Exception as e:
            logger.warning(
                "Categorization call failed for %s: %s",
                account.company_name,
                e,
                extra={"account_id": account.id, "perspective": perspective.name},
            )
            raise CollaboratorError(str(e)) from e

        return parse_categorization(resp.choices[0].message.content)
