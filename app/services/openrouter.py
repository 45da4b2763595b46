"""Integration helpers for the OpenRouter API."""

from __future__ import annotations

import logging

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are CineMatch, a recommendation engine for movies and TV shows. "
    "You answer with plain titles only and never add commentary."
)


class OpenRouterClient:
    """Text-completion client backed by OpenRouter chat completions."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def complete(
        self,
        prompt: str,
        *,
        api_key: str | None = None,
        model: str | None = None,
    ) -> str:
        """Return the model's raw text answer to ``prompt``."""

        resolved_key = api_key or self._settings.openrouter_api_key
        if not resolved_key:
            raise RuntimeError("OpenRouter API key is required for AI search")

        payload = {
            "model": model or self._settings.openrouter_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        headers = {
            "Authorization": f"Bearer {resolved_key}",
            "Content-Type": "application/json",
            "X-Title": self._settings.app_name,
        }

        response = await self._client.post("/chat/completions", json=payload, headers=headers)
        if response.status_code >= 400:
            logger.error(
                "Completion request failed (%s): %s", response.status_code, response.text
            )
            raise RuntimeError(response.text)

        data = response.json()
        choices = data.get("choices", [])
        if not choices:
            raise RuntimeError("Model returned no choices")
        message = choices[0].get("message", {})
        content = message.get("content")
        if not isinstance(content, str):
            raise RuntimeError("Model response missing content")
        return content
