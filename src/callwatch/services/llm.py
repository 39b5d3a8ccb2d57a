"""Ollama native API client using httpx.

Covers the three endpoints the hosted evaluator needs:

- ``GET  /api/tags``     installed model names (availability probe)
- ``POST /api/pull``     fetch a missing model
- ``POST /api/generate`` single non-streaming completion with ``format: json``

Every request runs under the configured timeout. This client never retries;
callers decide what a failure means.
"""

import logging
from dataclasses import dataclass

import httpx

from callwatch.config import Settings
from callwatch.exceptions import ProviderProtocolError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerateResponse:
    content: str
    model: str
    total_duration: int | None = None
    eval_count: int | None = None


class OllamaClient:
    """Async client for Ollama's native endpoints."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base_url = settings.llm_base_url.rstrip("/")
        # Accept an OpenAI-compatible .../v1 URL; the native API lives at the root
        if base_url.endswith("/v1"):
            base_url = base_url[:-3]

        self._base_url = base_url
        self._temperature = settings.llm_temperature
        self._top_p = settings.llm_top_p
        self._max_tokens = settings.llm_max_tokens
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.llm_timeout),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def list_models(self) -> list[str]:
        """Names of the models installed on the server.

        Raises ``ProviderProtocolError`` when the body is not JSON.
        """
        response = await self._client.get(f"{self._base_url}/api/tags")
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderProtocolError(f"Ollama returned a non-JSON tag list: {e}") from e
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return []
        return [
            str(m["name"]) for m in models if isinstance(m, dict) and "name" in m
        ]

    async def pull_model(self, name: str) -> None:
        """Ask the server to download *name*; returns once the pull completes."""
        logger.info("Pulling model %s ...", name)
        response = await self._client.post(
            f"{self._base_url}/api/pull",
            json={"name": name, "stream": False},
        )
        response.raise_for_status()
        logger.info("Pulled model %s", name)

    async def generate(
        self,
        *,
        model: str,
        prompt: str,
        system: str,
    ) -> GenerateResponse:
        """Run one JSON-mode completion.

        Raises ``httpx.HTTPError`` on transport failure or non-2xx status and
        ``ProviderProtocolError`` when the body lacks a ``response`` string.
        """
        payload = {
            "model": model,
            "prompt": prompt,
            "system": system,
            "stream": False,
            "format": "json",
            "options": {
                "temperature": self._temperature,
                "top_p": self._top_p,
                "max_tokens": self._max_tokens,
            },
        }
        response = await self._client.post(
            f"{self._base_url}/api/generate", json=payload
        )
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderProtocolError(f"Ollama returned a non-JSON body: {e}") from e

        content = data.get("response") if isinstance(data, dict) else None
        if not isinstance(content, str):
            raise ProviderProtocolError("Ollama response has no 'response' text field")

        logger.debug("Ollama response (first 200 chars): %s", content[:200])
        return GenerateResponse(
            content=content,
            model=str(data.get("model", model)),
            total_duration=data.get("total_duration"),
            eval_count=data.get("eval_count"),
        )

    async def close(self) -> None:
        await self._client.aclose()
