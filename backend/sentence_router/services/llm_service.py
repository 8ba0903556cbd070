"""
LLM Service - language model adapters.

The pipeline only knows `LanguageModel.generate(prompt, params) -> text`.
Adapters:
- ClaudeModel: Anthropic Messages API via the `anthropic` SDK
- OllamaModel: self-hosted Ollama via `httpx`

Adapters are created once per process and shared by every request, so they
hold no per-request state.

Raises (from generate):
    LLMTimeoutError: Request timed out
    GenerationError: API call failed
    EmptyResponseError: Empty response received
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import anthropic
import httpx

from sentence_router.config import ModelParams, Settings
from sentence_router.services.pipeline_errors import (
    ConfigurationError,
    EmptyResponseError,
    GenerationError,
    LLMTimeoutError,
)

logger = logging.getLogger(__name__)


class LanguageModel(ABC):
    """A text generation backend."""

    provider: str = ""

    @abstractmethod
    async def generate(self, prompt: str, params: ModelParams) -> str:
        """Return the model's raw text. Never returns empty text."""

    async def aclose(self) -> None:
        """Release network resources."""


class ClaudeModel(LanguageModel):
    provider = "claude"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: float = 30.0,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout_seconds)

    async def generate(self, prompt: str, params: ModelParams) -> str:
        model_name = params.resolve_name(self.provider)
        logger.debug(f"Generating response with Claude model {model_name}")

        try:
            response = await self._client.messages.create(
                model=model_name,
                max_tokens=params.max_tokens,
                temperature=params.temperature,
                messages=[
                    {"role": "user", "content": prompt}
                ]
            )
        except anthropic.APITimeoutError as e:
            raise LLMTimeoutError(f"LLM call timed out after {self.timeout_seconds}s") from e
        except anthropic.APIError as e:
            raise GenerationError(f"LLM API error: {e}") from e

        if not response.content:
            raise EmptyResponseError("LLM returned empty content array")

        text_block = response.content[0]
        text = getattr(text_block, "text", None)
        if not text or not text.strip():
            raise EmptyResponseError("LLM returned empty text")

        logger.info(f"Received response from Claude ({len(text)} chars)")
        return text

    async def aclose(self) -> None:
        await self._client.close()


class OllamaModel(LanguageModel):
    provider = "ollama"

    def __init__(
        self,
        host: str = "http://localhost:11434",
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.host = host
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.AsyncClient(base_url=host, timeout=timeout_seconds)

    async def generate(self, prompt: str, params: ModelParams) -> str:
        model_name = params.resolve_name(self.provider)
        payload = {
            "model": model_name,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": params.temperature,
                "num_predict": params.max_tokens,
            },
        }

        logger.debug(f"Sending request to Ollama API for model: {model_name}")
        try:
            response = await self._client.post("/api/generate", json=payload)
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"Ollama request timed out after {self.timeout_seconds}s") from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Ollama request failed: {e}") from e

        if response.status_code >= 400:
            error_msg = f"Ollama request failed: {response.status_code}"
            logger.error(error_msg)
            raise GenerationError(error_msg, metadata={"status_code": response.status_code})

        try:
            text = response.json().get("response") or ""
        except ValueError as e:
            raise GenerationError(f"Ollama returned a non-JSON body: {e}") from e

        if not text.strip():
            logger.error("Received empty response from Ollama")
            raise EmptyResponseError("Empty response from Ollama")

        logger.info(f"Received response from Ollama ({len(text)} chars)")
        return text.strip()

    async def aclose(self) -> None:
        await self._client.aclose()


def create_model(settings: Settings) -> LanguageModel:
    """Build the adapter selected by `settings.provider`."""
    if settings.provider == "claude":
        logger.info("Using Claude API")
        return ClaudeModel(
            api_key=settings.anthropic_api_key,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    if settings.provider == "ollama":
        logger.info(f"Using self-hosted Ollama at {settings.ollama_host}")
        return OllamaModel(
            host=settings.ollama_host,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    raise ConfigurationError(f"Unknown LLM provider: {settings.provider}")
