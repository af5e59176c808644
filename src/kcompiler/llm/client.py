"""LiteLLM generation client with retry, JSON output, and API key validation.

All structured generation in the pipeline routes through a GenerationService.
LiteLLM's built-in retry is used (num_retries, exponential backoff).
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Protocol

import litellm

from kcompiler.errors import GenerationError

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
    "deterministic": None,
}


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


class GenerationService(Protocol):
    """Structured text generation: prompt in, decoded JSON object out."""

    model: str

    def call(
        self,
        task: str,
        system: str,
        user: str,
        schema: str,
        temperature: float = 0.0,
    ) -> dict[str, Any]: ...

    def call_with_meta(
        self,
        task: str,
        system: str,
        user: str,
        schema: str,
        temperature: float = 0.0,
    ) -> tuple[dict[str, Any], dict[str, Any]]: ...


class LiteLLMGenerationService:
    """GenerationService backed by ``litellm.completion`` in JSON mode."""

    def __init__(
        self,
        model: str,
        *,
        num_retries: int = 3,
        max_tokens: int = 4096,
    ) -> None:
        self.model = model
        self.num_retries = num_retries
        self.max_tokens = max_tokens

    def call(
        self,
        task: str,
        system: str,
        user: str,
        schema: str,
        temperature: float = 0.0,
    ) -> dict[str, Any]:
        data, _meta = self.call_with_meta(task, system, user, schema, temperature)
        return data

    def call_with_meta(
        self,
        task: str,
        system: str,
        user: str,
        schema: str,
        temperature: float = 0.0,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Run one completion and decode its JSON object body.

        Returns:
            ``(data, meta)`` where meta carries model, task, schema, raw text,
            usage and latency_ms.

        Raises:
            GenerationError: On API failure after retries or non-object JSON.
        """
        started = time.monotonic()
        try:
            response = litellm.completion(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                max_tokens=self.max_tokens,
                temperature=temperature,
                num_retries=self.num_retries,
                response_format={"type": "json_object"},
            )
        except Exception as exc:
            raise GenerationError(f"{task}: generation call failed: {exc}") from exc

        raw = response.choices[0].message.content or ""
        meta: dict[str, Any] = {
            "model": self.model,
            "task": task,
            "schema": schema,
            "raw": raw,
            "usage": _usage_dict(response),
            "latency_ms": int((time.monotonic() - started) * 1000),
        }
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise GenerationError(f"{task}: response is not valid JSON", raw=raw) from exc
        if not isinstance(data, dict):
            raise GenerationError(f"{task}: response is not a JSON object", raw=raw)

        logger.debug("llm.call task=%s schema=%s latency_ms=%s", task, schema, meta["latency_ms"])
        return data, meta


def _usage_dict(response: Any) -> dict[str, int]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return {}
    return {
        "prompt_tokens": int(getattr(usage, "prompt_tokens", 0) or 0),
        "completion_tokens": int(getattr(usage, "completion_tokens", 0) or 0),
    }
