"""
MCPChat Provider Base - Abstract base classes for LLM providers.

This module defines the interface that all LLM providers must implement,
and provides a factory for creating provider instances. Every backend is
called the same way: ``send_message(messages, system_prompt, temperature)``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

import httpx

from mcpchat.core.conversation import Message
from mcpchat.validation.config import Config

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when an LLM backend call fails."""

    pass


@dataclass
class ProviderResponse:
    """Response from an LLM provider."""

    content: str
    model: str
    provider: str
    token_usage: int = 0
    finish_reason: str = "stop"
    metadata: Dict[str, Any] = field(default_factory=dict)


def with_request_metadata(system_prompt: str, now: Optional[datetime] = None) -> str:
    """Prefix a system prompt with the time the request was made."""
    now = now or datetime.now(timezone.utc)
    return (
        "=== REQUEST METADATA ===\n"
        f"CURRENT_UTC_TIME: {now.isoformat()}\n"
        "This is the timestamp when the user's request was received.\n"
        "========================\n\n"
        f"{system_prompt}"
    )


class Provider(ABC):
    """
    Abstract base class for LLM providers.

    All provider implementations must inherit from this class and
    implement the required methods.

    Example:
        >>> class EchoProvider(Provider):
        ...     provider_name = "echo"
        ...     async def send_message(self, messages, system_prompt=None, temperature=None):
        ...         return ProviderResponse(messages[-1].content, self.model, "echo")
    """

    def __init__(self, model: str, config: Config, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the provider.

        Args:
            model: The model identifier, without the provider prefix.
            config: MCPChat configuration.
            http_client: Shared client; a short-lived one is used per call if omitted.
        """
        self.model = model
        self.config = config
        self._http_client = http_client

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_message(
        self,
        messages: Sequence[Message],
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> ProviderResponse:
        """
        Send a conversation to the model and return its reply.

        Args:
            messages: Transcript to send, oldest first.
            system_prompt: ``None`` uses the configured default prompt,
                ``""`` sends no system message, anything else is used as is.
            temperature: Sampling temperature; configured default if omitted.

        Returns:
            ProviderResponse with the completion.

        Raises:
            ProviderError: The backend call failed.
        """
        pass

    def get_api_key(self) -> Optional[str]:
        """Get the API key for this provider."""
        return self.config.get_api_key(self.provider_name)

    def build_messages(
        self,
        messages: Sequence[Message],
        system_prompt: Optional[str] = None,
    ) -> List[Dict[str, str]]:
        """Wire-format messages with the system prompt injected in front."""
        prompt = self.config.merged.agent.system_prompt if system_prompt is None else system_prompt
        wire = [m.to_dict() for m in messages]
        if not prompt:
            return wire
        return [{"role": "system", "content": with_request_metadata(prompt)}] + wire

    def _temperature(self, temperature: Optional[float]) -> float:
        return self.config.merged.agent.temperature if temperature is None else temperature

    async def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        timeout = self.config.merged.agent.timeout
        if self._http_client is not None:
            return await self._http_client.post(url, timeout=timeout, **kwargs)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, **kwargs)

    def _base_url(self, default: str) -> str:
        provider_config = self.config.get_provider_config(self.provider_name)
        if provider_config and provider_config.api_base:
            return provider_config.api_base.rstrip("/")
        return default


def _upstream_error(response: httpx.Response) -> str:
    """Best-effort extraction of ``error.message`` from an error body."""
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return error.get("message") or str(error)
    if error:
        return str(error)
    return f"HTTP {response.status_code}"


class OpenAICompatibleProvider(Provider):
    """
    Base for providers that expose an OpenAI-compatible chat completions API.

    Subclasses only need to set _default_base_url and provider_name.
    """

    _default_base_url: str = ""

    @property
    def provider_name(self) -> str:
        raise NotImplementedError

    def _model_id(self) -> str:
        return self.model

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def send_message(
        self,
        messages: Sequence[Message],
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> ProviderResponse:
        api_key = self.get_api_key()
        if not api_key:
            raise ProviderError(f"{self.provider_name} API key not configured")

        payload = {
            "model": self._model_id(),
            "messages": self.build_messages(messages, system_prompt),
            "temperature": self._temperature(temperature),
        }
        url = f"{self._base_url(self._default_base_url)}/chat/completions"
        logger.debug("POST %s model=%s messages=%d", url, payload["model"], len(payload["messages"]))

        try:
            response = await self._post(url, headers=self._headers(api_key), json=payload)
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.provider_name} API error: {e}") from e

        if response.status_code >= 400:
            message = _upstream_error(response)
            logger.error("%s request failed: %s", self.provider_name, message)
            raise ProviderError(f"{self.provider_name} API error: {message}")

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("Empty response from API")

        choice = choices[0]
        usage = data.get("usage") or {}
        return ProviderResponse(
            content=choice["message"]["content"] or "",
            model=data.get("model", self._model_id()),
            provider=self.provider_name,
            token_usage=usage.get("total_tokens", 0),
            finish_reason=choice.get("finish_reason") or "stop",
            metadata={"usage": usage} if usage else {},
        )


class OpenAIProvider(OpenAICompatibleProvider):
    """OpenAI API provider implementation."""

    _default_base_url = "https://api.openai.com/v1"

    @property
    def provider_name(self) -> str:
        return "openai"


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter - unified API for 100+ open and commercial models."""

    _default_base_url = "https://openrouter.ai/api/v1"

    @property
    def provider_name(self) -> str:
        return "openrouter"

    def _headers(self, api_key: str) -> Dict[str, str]:
        headers = super()._headers(api_key)
        headers["X-Title"] = "MCPChat"
        return headers


class HuggingFaceProvider(OpenAICompatibleProvider):
    """Hugging Face inference router; each model is served by a named inference provider."""

    _default_base_url = "https://router.huggingface.co/v1"

    DEFAULT_INFERENCE_PROVIDER = "featherless-ai"
    MODEL_PROVIDERS: Dict[str, str] = {
        "deepseek-ai/DeepSeek-V3.2": "novita",
        "OpenBuddy/openbuddy-llama3.1-8b-v22.3-131k": "featherless-ai",
    }

    @property
    def provider_name(self) -> str:
        return "huggingface"

    def _model_id(self) -> str:
        # already routed, e.g. "org/model:novita"
        if ":" in self.model:
            return self.model
        provider = self.MODEL_PROVIDERS.get(self.model, self.DEFAULT_INFERENCE_PROVIDER)
        return f"{self.model}:{provider}"


class TogetherProvider(OpenAICompatibleProvider):
    """Together AI - fast inference for open-source models."""

    _default_base_url = "https://api.together.xyz/v1"

    @property
    def provider_name(self) -> str:
        return "together"


class GroqProvider(OpenAICompatibleProvider):
    """Groq - ultra-fast inference for open models."""

    _default_base_url = "https://api.groq.com/openai/v1"

    @property
    def provider_name(self) -> str:
        return "groq"


class OllamaProvider(Provider):
    """Ollama local provider implementation."""

    @property
    def provider_name(self) -> str:
        return "ollama"

    async def send_message(
        self,
        messages: Sequence[Message],
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> ProviderResponse:
        url = f"{self._base_url('http://localhost:11434')}/api/chat"
        payload = {
            "model": self.model,
            "messages": self.build_messages(messages, system_prompt),
            "stream": False,
            "options": {"temperature": self._temperature(temperature)},
        }

        try:
            response = await self._post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError(f"ollama API error: {e}") from e

        data = response.json()
        message = data.get("message") or {}
        if "content" not in message:
            raise ProviderError("Empty response from API")

        return ProviderResponse(
            content=message["content"],
            model=data.get("model", self.model),
            provider=self.provider_name,
            token_usage=data.get("eval_count", 0),
            finish_reason="stop",
        )


class ProviderFactory:
    """Factory for creating provider instances."""

    _providers: Dict[str, Type[Provider]] = {
        "openai": OpenAIProvider,
        "openrouter": OpenRouterProvider,
        "huggingface": HuggingFaceProvider,
        "together": TogetherProvider,
        "groq": GroqProvider,
        "ollama": OllamaProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: Type[Provider]) -> None:
        """Register a new provider."""
        cls._providers[name] = provider_class

    @classmethod
    def create(
        cls,
        model: str,
        config: Config,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> Provider:
        """
        Create a provider instance for the given model.

        Args:
            model: Model identifier, e.g. "openrouter/mistralai/mistral-7b-instruct:free"
                or a bare name like "gpt-4o".
            config: MCPChat configuration.
            http_client: Optional shared HTTP client.

        Returns:
            Provider instance.

        Raises:
            ValueError: If the provider is not recognized.
        """
        provider_name, model_name = cls.split_model(model)
        if provider_name not in cls._providers:
            raise ValueError(f"Unknown provider: {provider_name}")

        provider_class = cls._providers[provider_name]
        return provider_class(model=model_name, config=config, http_client=http_client)

    @classmethod
    def split_model(cls, model: str) -> Tuple[str, str]:
        """
        Split "provider/model" into its parts.

        A prefix that is not a known provider is part of the model name
        ("mistralai/mistral-7b-instruct"), so the provider is inferred.
        """
        if "/" in model:
            prefix, rest = model.split("/", 1)
            if prefix in cls._providers:
                return prefix, rest
        return cls._infer_provider(model), model

    @classmethod
    def _infer_provider(cls, model: str) -> str:
        """Infer the provider from the model name."""
        model_lower = model.lower()

        if model_lower.startswith("gpt") or model_lower.startswith("o1"):
            return "openai"
        elif model_lower.startswith("llama") or model_lower.startswith("deepseek-r1"):
            return "groq"
        elif model_lower.startswith("mixtral") or model_lower.startswith("qwen"):
            return "together"
        elif model_lower in ("codellama", "phi", "phi-2"):
            return "ollama"

        # Default to openrouter (broadest model catalog)
        return "openrouter"

    @classmethod
    def available_providers(cls) -> List[str]:
        """Get list of available provider names."""
        return list(cls._providers.keys())
