from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from .base import CompanyIdentity, ResearchCollaborator
from ..errors import CollaboratorError
from ..llm import get_llm_client, limit_llm_concurrency, retry_transient
from ..perspectives import Perspective
from ...core.config import get_settings

logger = logging.getLogger(__name__)

INSTRUCTIONS = {
    "auth0": (
        "You are an SDR researcher for Auth0 (customer identity, CIAM) in the "
        "Australia/New Zealand region. Use the web_search tool. Answer in markdown "
        "with sources; say clearly when information is not public."
    ),
    "okta": (
        "You are an SDR researcher for Okta Workforce Identity in the "
        "Australia/New Zealand region. Use the web_search tool. Answer in markdown "
        "with sources; say clearly when information is not public."
    ),
}

SECTION_PROMPTS = {
    "current_auth_solution": "Identify the current authentication and customer identity platform of {company}.",
    "customer_base": "Describe the customer base, user volume and B2C/B2B model of {company}.",
    "current_iam_solution": "Identify the workforce IAM, SSO and MFA stack of {company}.",
    "workforce_info": "Describe the workforce size, IT environment and organisational complexity of {company}.",
    "security_incidents": "List security incidents, breaches and compliance obligations of {company}.",
    "news_and_funding": "Summarise recent news, funding and financial results of {company}.",
    "tech_transformation": "Describe technology transformation and modernisation initiatives at {company}.",
    "okta_ecosystem": "Describe any existing relationship between {company} and the Okta ecosystem.",
    "prospects": "Find security, identity, engineering and IT decision-makers at {company}.",
    "research_summary": "Write a 2-3 paragraph executive summary for an SDR about {company}.",
}


class OpenAIResearchCollaborator(ResearchCollaborator):
    """
    Section-by-section company research via the Responses API + ``web_search``.

    The OpenAI client is synchronous; the call runs in a worker thread so the
    event loop keeps serving other accounts and the stream endpoint.
    """

    def __init__(self, model: str | None = None) -> None:
        self.model = model or get_settings().LLM_MODEL

    def _build_prompt(
        self,
        company: CompanyIdentity,
        section_key: str,
        context: Dict[str, str] | None,
        additional_context: str | None = None,
    ) -> str:
        template = SECTION_PROMPTS.get(section_key)
        if template is None:
            raise CollaboratorError(f"Unknown research section '{section_key}'")

        prompt = (
            template.format(company=company.label)
            + f"\nIndustry: {company.industry}."
        )
        if section_key == "research_summary" and context:
            findings = "\n\n".join(f"## {k}\n{v}" for k, v in context.items() if v)
            prompt += f"\n\nResearch so far:\n{findings}"
        if additional_context:
            prompt += f"\n\nAdditional context from the account owner:\n{additional_context}"
        return prompt

    async def research(
        self,
        company: CompanyIdentity,
        perspective: Perspective,
        section_key: str,
        context: Dict[str, str] | None = None,
        model: str | None = None,
        additional_context: str | None = None,
    ) -> str:
        prompt = self._build_prompt(company, section_key, context, additional_context)
        instructions = INSTRUCTIONS[perspective.name]

        @retry_transient
        def _call_openai_sync() -> Any:
            client = get_llm_client()
            with limit_llm_concurrency():
                return client.responses.create(
                    model=model or self.model,
                    instructions=instructions,
                    input=prompt,
                    tools=[{"type": "web_search"}],
                )

        try:
            response = await asyncio.to_thread(_call_openai_sync)
        except Exception as e:
            logger.warning(
                "Research call failed for %s / %s: %s",
                company.company_name,
                section_key,
                e,
                extra={"perspective": perspective.name, "step": section_key},
            )
            raise CollaboratorError(str(e)) from e

        text = (getattr(response, "output_text", None) or "").strip()
        if not text:
            raise CollaboratorError(
                f"Empty research output for section '{section_key}'"
            )
        return text
