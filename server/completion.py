"""
Text completion client used for hints and game summaries.

The completion service is a nice-to-have: every call is best-effort and
returns fallback text instead of raising, so a slow or broken service never
holds up a game transition.
"""

import logging
from typing import Optional, Protocol

import httpx

from server.config import settings
from shared.constants import COMPLETION_FALLBACK


logger = logging.getLogger(__name__)


class CompletionService(Protocol):
    async def complete(self, prompt: str, fallback: str | None = None) -> str:
        ...


class TextCompletionClient:
    """
    Client for an OpenAI-compatible ``/chat/completions`` endpoint.

    Configuration via environment variables (see ``server/config.py``):
        COMPLETION_BASE_URL: Base URL of the API; empty disables the client
        COMPLETION_MODEL: Model name
        COMPLETION_API_KEY: Optional bearer token
        COMPLETION_TIMEOUT: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        api_key: Optional[str] = None,
        timeout: float | None = None,
        fallback: str = COMPLETION_FALLBACK,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.COMPLETION_BASE_URL).rstrip("/")
        self.model = model or settings.COMPLETION_MODEL
        self.api_key = api_key if api_key is not None else settings.COMPLETION_API_KEY
        self.timeout = timeout or settings.COMPLETION_TIMEOUT
        self.fallback = fallback
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def complete(self, prompt: str, fallback: str | None = None) -> str:
        """Return the completion text, or fallback text on any failure."""
        fallback = fallback or self.fallback
        if not self.enabled:
            return fallback

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
        }

        try:
            if self._client is not None:
                response = await self._client.post(
                    f"{self.base_url}/chat/completions", json=payload, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        f"{self.base_url}/chat/completions", json=payload, headers=headers
                    )
            response.raise_for_status()
            text = self._extract_text(response.json())
        except Exception as e:
            logger.warning(f"Completion request failed: {e}")
            return fallback

        if not text:
            logger.warning("Completion response had no text")
            return fallback
        return text

    @staticmethod
    def _extract_text(body: dict) -> str | None:
        choices = body.get("choices") or []
        if not choices:
            return None
        message = choices[0].get("message") or {}
        content = message.get("content")
        return content.strip() if isinstance(content, str) else None

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class StaticCompletion:
    """Completion service that always answers with fixed text."""

    def __init__(self, text: str | None = None):
        self.text = text
        self.prompts: list[str] = []

    async def complete(self, prompt: str, fallback: str | None = None) -> str:
        self.prompts.append(prompt)
        return self.text or fallback or COMPLETION_FALLBACK


def hint_prompt(display_text: str) -> str:
    return (
        f'Explain how to solve the math equation "{display_text}" or provide a subtle hint '
        f"to solve it. Do not give the answer directly."
    )


def summary_prompt(players_text: str, winner_message: str) -> str:
    return (
        "Generate a short (1-2 paragraphs) and fun game summary for a math board game called "
        f'"Equation Challengers". The players were: {players_text}. The winner is: '
        f"{winner_message}. Highlight any interesting moments based on the stats or general "
        "game theme."
    )
