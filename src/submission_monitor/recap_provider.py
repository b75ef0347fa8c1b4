"""External company summary generation.

The provider is optional: without credentials :meth:`HttpRecapProvider.from_env`
returns ``None`` and the recap cache serves placeholders for unknown companies.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional, Protocol

from .http_client import HTTPClient
from .logging_config import get_logger
from .models import HttpConfig

logger = get_logger("recap_provider")

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "openai/gpt-4o-mini"
DEFAULT_MAX_TOKENS = 160

SYSTEM_PROMPT = (
    "You write short, factual summaries of medical device manufacturers for a "
    "regulatory intelligence report. Answer in at most two sentences."
)


class RecapProvider(Protocol):
    """Generates a short summary text for a company."""

    async def generate_summary(self, company_name: str) -> str:
        ...


class HttpRecapProvider:
    """Recap provider backed by an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        http_client: Optional[HTTPClient] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.http_client = http_client or HTTPClient(HttpConfig(timeout_seconds=20.0, max_retries=1))

    @classmethod
    def from_env(
        cls,
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        http_client: Optional[HTTPClient] = None,
    ) -> Optional["HttpRecapProvider"]:
        """Build a provider from environment variables, or ``None`` without a key."""
        api_key = os.environ.get("SUBMISSION_MONITOR_RECAP_API_KEY")
        if not api_key:
            logger.info("No recap API key configured; company recaps will use cached data only")
            return None
        return cls(
            api_key,
            base_url=os.environ.get("SUBMISSION_MONITOR_RECAP_BASE_URL", base_url or DEFAULT_BASE_URL),
            model=os.environ.get("SUBMISSION_MONITOR_RECAP_MODEL", model or DEFAULT_MODEL),
            http_client=http_client,
        )

    def _build_payload(self, company_name: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": 0.2,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Summarize the company '{company_name}' and its medical device portfolio.",
                },
            ],
        }

    async def generate_summary(self, company_name: str) -> str:
        response = await self.http_client.post_async(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=self._build_payload(company_name),
        )
        data = response.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ValueError(f"Unexpected recap response shape for {company_name}") from exc
        summary = (content or "").strip()
        if not summary:
            raise ValueError(f"Empty recap returned for {company_name}")
        return summary
