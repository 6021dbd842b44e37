# =============================================================================
# Generation Providers - Anthropic and OpenAI-Compatible Chat APIs
# =============================================================================
#
# The synthesizer needs one thing from a model: given a system prompt and a
# user prompt holding the numbered sources, return text (or a JSON object
# when a structured answer was asked for). Both providers below expose that
# as `complete()` and normalise the reply into an LLMResponse.
#
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        - `system=` kwarg; JSON mode is an
#   │                              appended instruction
#   ├── OpenAICompatibleProvider - system message; JSON mode via
#   │                              response_format (OpenAI, DeepSeek, Qwen...)
#   └── get_llm_provider()       - singleton chosen by LLM_PROVIDER
#
# Timeouts and retries are the SDK's own (LLM_TIMEOUT_SECONDS,
# LLM_MAX_RETRIES). SDK errors surface as GenerationServiceError; a missing
# key is a ConfigurationError raised when the provider is first built.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from mr_broker.config import settings
from mr_broker.errors import ConfigurationError, GenerationServiceError

logger = logging.getLogger(__name__)

_JSON_INSTRUCTION = "Respond with a single valid JSON object and nothing else."


@dataclass
class LLMResponse:
    """A completion normalised across providers."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


class LLMProvider(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Generate one completion.

        Args:
            messages: "user"/"assistant" turns; the system prompt goes in `system`.
            system: System prompt.
            json_mode: The whole reply must be a single JSON object.

        Raises:
            GenerationServiceError: The provider failed or timed out.
        """
        ...


def _resolve_key(explicit: str | None, provider_key: str, env_name: str) -> str:
    key = explicit or settings.llm_api_key or provider_key
    if not key:
        raise ConfigurationError(f"No API key configured. Set LLM_API_KEY or {env_name}")
    return key


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """Claude via the native async SDK."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        from anthropic import AsyncAnthropic

        self._client = AsyncAnthropic(
            api_key=_resolve_key(api_key, settings.anthropic_api_key, "ANTHROPIC_API_KEY"),
            timeout=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )
        self._model = model or settings.llm_model
        logger.info("Using Anthropic for generation (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        import anthropic

        if json_mode:
            system = f"{system}\n\n{_JSON_INSTRUCTION}" if system else _JSON_INSTRUCTION

        request: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": settings.llm_max_tokens,
            "temperature": settings.llm_temperature,
        }
        if system:
            request["system"] = system

        try:
            reply = await self._client.messages.create(**request)
        except anthropic.APIError as exc:
            raise GenerationServiceError(f"Anthropic request failed: {exc}") from exc

        text = next((block.text for block in reply.content if block.type == "text"), "")
        return LLMResponse(
            content=text,
            model=reply.model,
            input_tokens=reply.usage.input_tokens,
            output_tokens=reply.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Any chat-completions API that follows OpenAI's wire format.

    Pointing at another vendor is configuration only:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        self._base_url = base_url or settings.llm_base_url
        self._client = AsyncOpenAI(
            api_key=_resolve_key(api_key, settings.openai_api_key, "OPENAI_API_KEY"),
            base_url=self._base_url,
            timeout=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )
        self._model = model or settings.llm_model
        logger.info(
            "Using OpenAI-compatible generation (model=%s, base_url=%s)",
            self._model, self._base_url or "default",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        import openai

        chat = [{"role": "system", "content": system}] if system else []
        chat.extend(messages)

        request: dict = {
            "model": self._model,
            "messages": chat,
            "max_tokens": settings.llm_max_tokens,
            "temperature": settings.llm_temperature,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            reply = await self._client.chat.completions.create(**request)
        except openai.OpenAIError as exc:
            raise GenerationServiceError(f"Generation request failed: {exc}") from exc

        usage = reply.usage
        return LLMResponse(
            content=reply.choices[0].message.content or "",
            model=reply.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """Build the provider named by LLM_PROVIDER on first use."""
    global _provider
    if _provider is None:
        if settings.llm_provider == "anthropic":
            _provider = AnthropicProvider()
        else:
            _provider = OpenAICompatibleProvider()
    return _provider
