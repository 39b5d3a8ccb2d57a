"""Hosted (LLM) compliance evaluator.

Sends the rendered rule catalog, call metadata and transcript to an Ollama
model and validates the reply against a strict JSON contract. There is no
partial-result mode and no retry: any transport error, non-2xx status or
contract violation fails the call, and the orchestrator falls back to the
deterministic evaluator.

The configured model and its availability are guarded by a reader/writer
lock. Evaluations share the read side; probing and model changes take the
write side.
"""

import logging

import httpx
from pydantic import ValidationError

from callwatch.exceptions import ProviderProtocolError, ProviderUnavailable
from callwatch.schemas.evaluation import LlmResponse, LlmStatus
from callwatch.services.llm import OllamaClient
from callwatch.utils.locks import AsyncRWLock

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT_TEMPLATE = """\
You are a TCPA compliance evaluator for live call center calls. Analyze transcripts in real-time and identify potential compliance violations.

LEGAL DISCLAIMER: This is NOT legal advice. Compliance depends on jurisdiction and requires legal counsel review.

RULES TO EVALUATE:
{rules}

OUTPUT FORMAT (STRICT JSON ONLY):
{{
  "alerts": [
    {{
      "rule_id": "DNC-001",
      "title": "Customer requested no further calls",
      "severity": "high",
      "confidence": 92,
      "evidence": {{
        "quote": "exact quote from transcript",
        "start_char": 0,
        "end_char": 50
      }},
      "rationale": "brief explanation",
      "remediation": "what agent should say"
    }}
  ],
  "suggested_next_lines": [
    {{ "text": "compliant response suggestion", "confidence": 88 }}
  ]
}}

RULES:
1. Return ONLY valid JSON - no markdown, no explanation
2. Only flag actual violations with evidence from the transcript
3. Include accurate character positions for evidence quotes
4. Severity is one of "low", "medium", "high"; confidence is an integer 0-100
5. If no violations, return: {{"alerts": [], "suggested_next_lines": []}}

Analyze the transcript now:"""


def build_system_prompt(rendered_catalog: str) -> str:
    return _SYSTEM_PROMPT_TEMPLATE.format(rules=rendered_catalog)


def build_user_prompt(metadata_text: str, transcript: str) -> str:
    return (
        f"CALL METADATA:\n{metadata_text}\n\n"
        f"TRANSCRIPT:\n{transcript}\n\n"
        "Analyze and return JSON:"
    )


def parse_llm_response(raw: str) -> LlmResponse:
    """Validate the model's text against the alert/suggestion contract.

    Strict: no type coercion, no unknown keys.
    """
    try:
        return LlmResponse.model_validate_json(raw, strict=True)
    except ValidationError as e:
        raise ProviderProtocolError(
            f"LLM output does not match the contract: {e.error_count()} error(s); "
            f"raw={raw[:200]!r}"
        ) from e


def model_matches(installed: str, wanted: str) -> bool:
    """Ollama tags carry a ``:variant`` suffix; compare on the base name."""
    base = wanted.split(":", 1)[0]
    return installed.startswith(base)


class HostedEvaluator:
    def __init__(self, client: OllamaClient, model: str) -> None:
        self._client = client
        self._model = model
        self._available = False
        self._lock = AsyncRWLock()

    @property
    def available(self) -> bool:
        return self._available

    @property
    def model(self) -> str:
        return self._model

    def status(self) -> LlmStatus:
        return LlmStatus(
            available=self._available,
            model=self._model,
            endpoint=self._client.base_url,
        )

    async def check_availability(self) -> LlmStatus:
        """Probe the server, pulling the configured model if it is missing.

        Never raises: every failure leaves the evaluator unavailable.
        """
        async with self._lock.write():
            try:
                self._available = await self._probe()
            except (ProviderUnavailable, ProviderProtocolError) as e:
                logger.warning("%s. Running in rules-only mode.", e)
                self._available = False
            return self.status()

    async def set_model(self, name: str) -> LlmStatus:
        """Switch models; the evaluator stays unavailable until the next check."""
        async with self._lock.write():
            logger.info("LLM model changed: %s -> %s", self._model, name)
            self._model = name
            self._available = False
            return self.status()

    async def evaluate(
        self,
        metadata_text: str,
        transcript: str,
        rendered_catalog: str,
    ) -> LlmResponse:
        """Evaluate one transcript snapshot.

        Raises:
            ProviderUnavailable: not marked available, transport failure,
                timeout or non-2xx status.
            ProviderProtocolError: the reply is not valid contract JSON.
        """
        async with self._lock.read():
            if not self._available:
                raise ProviderUnavailable(
                    "LLM not enabled. Check Ollama connection."
                )
            model = self._model

            try:
                response = await self._client.generate(
                    model=model,
                    prompt=build_user_prompt(metadata_text, transcript),
                    system=build_system_prompt(rendered_catalog),
                )
            except httpx.HTTPStatusError as e:
                raise ProviderUnavailable(
                    f"LLM error status: {e.response.status_code}"
                ) from e
            except httpx.HTTPError as e:
                raise ProviderUnavailable(f"LLM request failed: {e!r}") from e

        return parse_llm_response(response.content)

    async def _probe(self) -> bool:
        try:
            installed = await self._client.list_models()
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(
                f"Ollama returned status: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Ollama not available: {e!r}") from e

        if any(model_matches(name, self._model) for name in installed):
            logger.info("LLM connected: Ollama with model %s", self._model)
            return True

        logger.warning(
            "Model %s not found in Ollama. Available models: %s",
            self._model,
            installed,
        )
        try:
            await self._client.pull_model(self._model)
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(
                f"Failed to pull model {self._model}: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(
                f"Failed to pull model {self._model}: {e!r}"
            ) from e
        return True
