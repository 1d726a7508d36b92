"""
productmcp providers module.

This module provides abstractions for the chat providers that translate
questions into tool calls.
"""

from productmcp.providers.base import (
    Provider,
    ProviderError,
    ProviderFactory,
    ProviderResponse,
    ProviderToolCall,
)

__all__ = ["Provider", "ProviderError", "ProviderFactory", "ProviderResponse", "ProviderToolCall"]
