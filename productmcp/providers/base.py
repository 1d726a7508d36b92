"""
productmcp Provider Base - LLM providers used to translate questions into tool calls.

This module defines the interface every chat provider implements, the
adapters for the OpenAI SDK and for OpenAI-compatible HTTP APIs, and a
factory that picks one from a ``provider/model`` name.
"""

import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

from productmcp.validation.config import Config


class ProviderError(Exception):
    """Raised when a provider cannot be reached or returns something unusable."""


@dataclass
class ProviderToolCall:
    """A function call requested by the model. ``arguments`` is the raw JSON text."""

    name: str
    arguments: str = "{}"
    id: str = ""


@dataclass
class ProviderResponse:
    """Response from an LLM provider."""

    content: str
    model: str
    provider: str
    tool_calls: List[ProviderToolCall] = field(default_factory=list)
    token_usage: int = 0
    finish_reason: str = "stop"


class Provider(ABC):
    """
    Abstract base class for chat providers.

    Example:
        >>> provider = ProviderFactory.create("openai/gpt-4o", config)
        >>> response = provider.chat([{"role": "user", "content": "hi"}])
    """

    def __init__(self, model: str, config: Config):
        """
        Initialize the provider.

        Args:
            model: The model identifier, without provider prefix.
            config: productmcp configuration.
        """
        self.model = model
        self.config = config

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    def chat(
        self,
        messages: List[Dict[str, str]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ) -> ProviderResponse:
        """
        Run one chat completion.

        Args:
            messages: Chat messages (``role``/``content`` dicts).
            tools: OpenAI-style function tool definitions the model may call.
            **kwargs: ``max_tokens`` / ``temperature`` overrides.

        Returns:
            ProviderResponse with text content and any requested tool calls.

        Raises:
            ProviderError: If the request fails.
        """
        pass

    def get_api_key(self) -> Optional[str]:
        """Get the API key for this provider."""
        return self.config.get_api_key(self.provider_name)

    def _settings(self, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        agent = self.config.merged.agent
        return {
            "max_tokens": kwargs.get("max_tokens", agent.max_tokens),
            "temperature": kwargs.get("temperature", agent.temperature),
        }


class OpenAIProvider(Provider):
    """OpenAI API provider implementation (official SDK)."""

    @property
    def provider_name(self) -> str:
        return "openai"

    def chat(
        self,
        messages: List[Dict[str, str]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ) -> ProviderResponse:
        """Generate a completion using the OpenAI SDK."""
        try:
            import openai
        except ImportError:
            raise ProviderError("openai package required. Install with: pip install productmcp[openai]")

        api_key = self.get_api_key()
        if not api_key:
            raise ProviderError("OpenAI API key not configured. Set OPENAI_API_KEY or add it to config.")

        provider_config = self.config.get_provider_config("openai")
        request: Dict[str, Any] = {"model": self.model, "messages": messages, **self._settings(kwargs)}
        if tools:
            request["tools"] = tools

        try:
            client = openai.OpenAI(
                api_key=api_key,
                base_url=provider_config.api_base if provider_config and provider_config.api_base else None,
                timeout=self.config.merged.agent.timeout,
            )
            response = client.chat.completions.create(**request)
        except openai.OpenAIError as exc:
            raise ProviderError(f"OpenAI request failed: {exc}") from exc

        if not response.choices:
            raise ProviderError(f"OpenAI returned no choices for {self.model}")
        choice = response.choices[0]
        calls = [
            ProviderToolCall(name=c.function.name, arguments=c.function.arguments or "{}", id=c.id)
            for c in (choice.message.tool_calls or [])
        ]
        return ProviderResponse(
            content=choice.message.content or "",
            model=response.model,
            provider=self.provider_name,
            tool_calls=calls,
            token_usage=response.usage.total_tokens if response.usage else 0,
            finish_reason=choice.finish_reason or "stop",
        )


class OpenAICompatibleProvider(Provider):
    """
    Base for providers that expose an OpenAI-compatible chat completions API.

    Subclasses only need to set _base_url, _env_key, and provider_name.
    Uses httpx so no extra packages are required.
    """

    _base_url: str = ""
    _env_key: str = ""
    _requires_key: bool = True

    @property
    def provider_name(self) -> str:
        raise NotImplementedError

    def _get_key(self) -> Optional[str]:
        return self.get_api_key() or (os.environ.get(self._env_key) if self._env_key else None)

    def _get_base_url(self) -> str:
        provider_config = self.config.get_provider_config(self.provider_name)
        if provider_config and provider_config.api_base:
            return provider_config.api_base.rstrip("/")
        return self._base_url

    def chat(
        self,
        messages: List[Dict[str, str]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ) -> ProviderResponse:
        import httpx

        api_key = self._get_key()
        if self._requires_key and not api_key:
            raise ProviderError(
                f"{self.provider_name} API key not configured. "
                f"Set {self._env_key} or add it to config."
            )

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        body: Dict[str, Any] = {"model": self.model, "messages": messages, **self._settings(kwargs)}
        if tools:
            body["tools"] = tools

        try:
            response = httpx.post(
                f"{self._get_base_url()}/chat/completions",
                headers=headers,
                json=body,
                timeout=self.config.merged.agent.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"{self.provider_name} request failed: {exc}") from exc

        try:
            choice = data["choices"][0]
            message = choice["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"{self.provider_name} returned an unexpected payload: {data!r}") from exc

        calls = []
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            arguments = function.get("arguments", "{}")
            if not isinstance(arguments, str):
                # Some servers (ollama) send the arguments already decoded.
                arguments = json.dumps(arguments)
            calls.append(ProviderToolCall(
                name=function.get("name", ""),
                arguments=arguments,
                id=call.get("id", ""),
            ))

        usage = data.get("usage") or {}
        return ProviderResponse(
            content=message.get("content") or "",
            model=data.get("model", self.model),
            provider=self.provider_name,
            tool_calls=calls,
            token_usage=usage.get("total_tokens", 0),
            finish_reason=choice.get("finish_reason") or "stop",
        )


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter - unified API for 100+ open and commercial models."""

    _base_url = "https://openrouter.ai/api/v1"
    _env_key = "OPENROUTER_API_KEY"

    @property
    def provider_name(self) -> str:
        return "openrouter"


class TogetherProvider(OpenAICompatibleProvider):
    """Together AI - fast inference for open-source models."""

    _base_url = "https://api.together.xyz/v1"
    _env_key = "TOGETHER_API_KEY"

    @property
    def provider_name(self) -> str:
        return "together"


class GroqProvider(OpenAICompatibleProvider):
    """Groq - ultra-fast inference for open models."""

    _base_url = "https://api.groq.com/openai/v1"
    _env_key = "GROQ_API_KEY"

    @property
    def provider_name(self) -> str:
        return "groq"


class OllamaProvider(OpenAICompatibleProvider):
    """Ollama local server through its OpenAI-compatible endpoint."""

    _base_url = "http://localhost:11434/v1"
    _requires_key = False

    @property
    def provider_name(self) -> str:
        return "ollama"


class ProviderFactory:
    """Factory for creating provider instances."""

    _providers: Dict[str, Type[Provider]] = {
        "openai": OpenAIProvider,
        "openrouter": OpenRouterProvider,
        "together": TogetherProvider,
        "groq": GroqProvider,
        "ollama": OllamaProvider,
    }

    @classmethod
    def create(cls, model: str, config: Config) -> Provider:
        """
        Create a provider instance for the given model.

        Args:
            model: Model identifier (e.g., "openai/gpt-4o" or "gpt-4o").
            config: productmcp configuration.

        Returns:
            Provider instance.

        Raises:
            ValueError: If the provider is not recognized.
        """
        prefix, _, rest = model.partition("/")
        if rest and prefix in cls._providers:
            provider_name, model_name = prefix, rest
        else:
            provider_name = cls._infer_provider(model)
            model_name = model

        if provider_name not in cls._providers:
            raise ValueError(f"Unknown provider: {provider_name}")

        provider_config = config.get_provider_config(provider_name)
        if provider_config is not None and not provider_config.enabled:
            raise ValueError(f"Provider {provider_name} is disabled in config")

        provider_class = cls._providers[provider_name]
        return provider_class(model=model_name, config=config)

    @classmethod
    def _infer_provider(cls, model: str) -> str:
        """Infer the provider from the model name."""
        model_lower = model.lower()

        if model_lower.startswith(("gpt", "o1", "o3", "o4")):
            return "openai"
        elif model_lower.startswith("llama") or model_lower.startswith("deepseek"):
            return "groq"
        elif model_lower.startswith("mixtral") or model_lower.startswith("qwen"):
            return "together"

        # Default to openrouter (broadest model catalog)
        return "openrouter"

    @classmethod
    def available_providers(cls) -> List[str]:
        """Get list of available provider names."""
        return list(cls._providers.keys())
