"""Translation of provider SDK exceptions into Groundbot errors.

Adapters catch SDK-specific exceptions and re-raise them through these
helpers so the shared retry policy only has to know two categories:
transient (retried) and everything else (not retried).
"""

from __future__ import annotations

import anthropic
import httpx
import openai

from src.utils.errors import (
    GroundbotError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
    TransientProviderError,
)


def _is_server_error(exc: Exception, status_error_type: type[Exception]) -> bool:
    return isinstance(exc, status_error_type) and exc.status_code >= 500


def translate_openai_error(exc: openai.OpenAIError, provider_name: str) -> GroundbotError:
    """Map an ``openai`` SDK exception (also used for Ollama's /v1 API)."""
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(message=f"Rate limit exceeded: {exc}", provider_name=provider_name)
    # APITimeoutError subclasses APIConnectionError, so check it first.
    if isinstance(exc, openai.APITimeoutError):
        return ProviderTimeoutError(message=f"Request timed out: {exc}", provider_name=provider_name)
    if isinstance(exc, openai.APIConnectionError) or _is_server_error(exc, openai.APIStatusError):
        return TransientProviderError(message=f"Transient API error: {exc}", provider_name=provider_name)
    return ProviderError(message=f"API error: {exc}", provider_name=provider_name)


def translate_anthropic_error(exc: anthropic.AnthropicError, provider_name: str) -> GroundbotError:
    """Map an ``anthropic`` SDK exception."""
    if isinstance(exc, anthropic.RateLimitError):
        return RateLimitError(message=f"Rate limit exceeded: {exc}", provider_name=provider_name)
    if isinstance(exc, anthropic.APITimeoutError):
        return ProviderTimeoutError(message=f"Request timed out: {exc}", provider_name=provider_name)
    # 529 overloaded and 503 unavailable are APIStatusError siblings of
    # InternalServerError, so classify by status code.
    if isinstance(exc, anthropic.APIConnectionError) or _is_server_error(exc, anthropic.APIStatusError):
        return TransientProviderError(message=f"Transient API error: {exc}", provider_name=provider_name)
    return ProviderError(message=f"API error: {exc}", provider_name=provider_name)


def translate_httpx_error(exc: httpx.HTTPError, provider_name: str) -> GroundbotError:
    """Map an ``httpx`` exception from a raw REST call."""
    if isinstance(exc, httpx.TimeoutException):
        return ProviderTimeoutError(message=f"Request timed out: {exc}", provider_name=provider_name)
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return RateLimitError(message=f"Rate limit exceeded: {exc}", provider_name=provider_name)
        if status >= 500:
            return TransientProviderError(message=f"Server error {status}: {exc}", provider_name=provider_name)
        return ProviderError(message=f"HTTP {status}: {exc}", provider_name=provider_name)
    if isinstance(exc, httpx.TransportError):
        return TransientProviderError(message=f"Connection error: {exc}", provider_name=provider_name)
    return ProviderError(message=f"HTTP error: {exc}", provider_name=provider_name)
