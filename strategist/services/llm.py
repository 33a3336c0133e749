# =============================================================================
# LLM Invocation Primitive — Pluggable Provider + Structured Output
# =============================================================================
#
# Two layers:
#
# 1. LLMProvider (Protocol) with concrete Anthropic and OpenAI-compatible
#    implementations. One `complete()` call, normalised LLMResponse.
#
# 2. invoke_llm(): "prompt in, structured JSON out". When a Pydantic
#    response model is given, its JSON schema is attached to the system
#    prompt, the reply is parsed as JSON and validated against the model.
#    Anything that does not validate raises StructuredOutputError. Callers
#    decide whether that is recoverable (intent classification) or fatal
#    (synthesis).
#
# DESIGN DECISION: Native SDKs over LangChain wrappers. LangGraph wires the
# pipeline; model calls go straight through anthropic / openai.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — system prompt as top-level kwarg
#   ├── OpenAICompatibleProvider — system prompt as message role,
#   │                              native JSON mode when requested
#   ├── get_llm_provider()       — lazy singleton for the API process
#   └── create_llm_provider()    — fresh instance (Celery workers)
#   invoke_llm()                 — structured invocation on any provider
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from strategist.config import settings

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Normalised completion from any provider."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


class StructuredOutputError(Exception):
    """The model's reply could not be parsed into the requested schema."""

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Anything with a compatible async `complete()` is a provider."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation messages as dicts with "role" and
                "content". Roles: "user", "assistant".
            system: System prompt (Anthropic: `system=` kwarg; OpenAI:
                prepended system message).
            temperature: Override sampling temperature.
            max_tokens: Override max output tokens.
            json_mode: Ask the provider for a bare JSON object where the API
                supports it natively.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native async SDK.

    Anthropic has no JSON mode flag; structured output relies on the schema
    instructions invoke_llm() puts in the system prompt.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": (
                temperature if temperature is not None else self._temperature
            ),
        }
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)

        content = "".join(
            block.text for block in response.content if block.type == "text"
        )

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Provider for any API that follows the OpenAI chat completions protocol.

    Switching vendors is a config change:
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

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        kwargs: dict = {
            "model": self._model,
            "messages": all_messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": (
                temperature if temperature is not None else self._temperature
            ),
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self._client.chat.completions.create(**kwargs)

        content = response.choices[0].message.content or ""
        usage = response.usage

        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factory Functions
# ---------------------------------------------------------------------------

_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def create_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Build a new provider from settings.

    Celery workers call this once per task: each task runs its own event
    loop, and SDK clients must not outlive the loop they were used on.
    """
    if settings.llm_provider == "openai_compatible":
        return OpenAICompatibleProvider()
    return AnthropicProvider()


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """Lazy singleton used by the API process."""
    global _provider
    if _provider is None:
        _provider = create_llm_provider()
    return _provider


# ---------------------------------------------------------------------------
# Structured Invocation
# ---------------------------------------------------------------------------

_JSON_FENCE = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)

_STRUCTURED_SYSTEM = (
    "You are a component of a strategic-analysis system. Respond with ONLY "
    "a single valid JSON object (no markdown, no commentary) that conforms "
    "to this JSON schema:\n{schema}"
)


def extract_json_object(text: str) -> dict:
    """
    Pull a JSON object out of a model reply.

    Accepts a bare object, an object inside a ```json fence, or an object
    surrounded by stray prose (first "{" to last "}").

    Raises:
        StructuredOutputError: No JSON object could be decoded.
    """
    candidates = [text.strip()]
    fenced = _JSON_FENCE.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise StructuredOutputError("Reply is not a JSON object", raw=text)


async def invoke_llm(
    llm: LLMProvider,
    prompt: str,
    response_model: type[ModelT] | None = None,
    *,
    system: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> ModelT | str:
    """
    Send a single prompt and return text, or a validated model instance.

    Args:
        llm: Provider to call.
        prompt: User-turn content.
        response_model: Pydantic model the reply must conform to. When
            omitted, the raw reply text is returned.
        system: Extra system instructions, placed before the schema block.

    Raises:
        StructuredOutputError: The reply is not valid JSON or violates
            response_model.
    """
    messages = [{"role": "user", "content": prompt}]

    if response_model is None:
        response = await llm.complete(
            messages=messages,
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.content

    schema = json.dumps(response_model.model_json_schema(), indent=2)
    structured_system = _STRUCTURED_SYSTEM.format(schema=schema)
    if system:
        structured_system = f"{system}\n\n{structured_system}"

    response = await llm.complete(
        messages=messages,
        system=structured_system,
        temperature=temperature,
        max_tokens=max_tokens,
        json_mode=True,
    )

    payload = extract_json_object(response.content)
    try:
        result = response_model.model_validate(payload)
    except ValidationError as e:
        raise StructuredOutputError(
            f"Reply violates {response_model.__name__} schema: "
            f"{e.error_count()} error(s)",
            raw=response.content,
        ) from e

    logger.debug(
        "Structured LLM call ok: model=%s, schema=%s, tokens=%d+%d",
        response.model, response_model.__name__,
        response.input_tokens, response.output_tokens,
    )
    return result
