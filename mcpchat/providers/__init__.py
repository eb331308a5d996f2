"""MCPChat LLM providers."""

from mcpchat.providers.base import Provider, ProviderError, ProviderFactory, ProviderResponse

__all__ = ["Provider", "ProviderError", "ProviderFactory", "ProviderResponse"]
