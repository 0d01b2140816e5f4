"""Shared helpers for provider exception mapping."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx

from persona.core.providers.errors import (
    ProviderApiError,
    ProviderAuthenticationError,
    ProviderBadRequestError,
    ProviderConnectionError,
    ProviderContentPolicyViolationError,
    ProviderContextLengthExceededError,
    ProviderInsufficientBalanceError,
    ProviderMappedError,
    ProviderModelNotFoundError,
    ProviderPermissionDeniedError,
    ProviderRateLimitError,
    ProviderServiceUnavailableError,
    ProviderTimeoutError,
)

_TIMEOUT_HINTS = ("timed out", "timeout")
_RETRYABLE_CONNECTION_HINTS = (
    "incomplete chunked read",
    "peer closed connection",
    "connection reset",
    "connection aborted",
    "broken pipe",
    "server disconnected",
)
_CONTEXT_HINTS = (
    "context length",
    "context window",
    "maximum context",
    "prompt is too long",
    "input is too long",
    "too many tokens",
)
_MAX_BODY_CHARS = 500


def is_timeout_message(message: str) -> bool:
    """Return True when an error message describes timeout-like behavior."""
    lowered = message.lower()
    return any(hint in lowered for hint in _TIMEOUT_HINTS)


def _clip(text: str) -> str:
    text = text.strip()
    if len(text) > _MAX_BODY_CHARS:
        return text[:_MAX_BODY_CHARS] + "..."
    return text


def map_connection_error(message: str, *, retryable: Optional[bool] = None) -> ProviderMappedError:
    """Map a provider connection error message to a normalized error."""
    if is_timeout_message(message):
        return ProviderTimeoutError(f"Request timed out: {message}")
    if retryable is None:
        lowered = message.lower()
        retryable = any(hint in lowered for hint in _RETRYABLE_CONNECTION_HINTS)
    return ProviderConnectionError(f"Connection error: {message}", retryable=retryable)


def map_status_error(status: int, body: str) -> ProviderMappedError:
    """Map a non-success HTTP status and its body text to a normalized error.

    The message always carries the status code and the (clipped) body so the
    user sees what the upstream server said.
    """
    detail = _clip(body) or "<empty body>"
    lowered = detail.lower()
    summary = f"HTTP {status}: {detail}"

    if status == 401:
        return ProviderAuthenticationError(f"Authentication failed ({summary})", status_code=status)
    if status == 402 or (status == 403 and ("balance" in lowered or "insufficient" in lowered)):
        return ProviderInsufficientBalanceError(f"Insufficient balance ({summary})", status_code=status)
    if status == 403:
        return ProviderPermissionDeniedError(f"Permission denied ({summary})", status_code=status)
    if status == 404:
        return ProviderModelNotFoundError(f"Model not found ({summary})", status_code=status)
    if status == 429:
        return ProviderRateLimitError(f"Rate limit exceeded ({summary})", status_code=status)
    if status in (400, 413, 422):
        if any(hint in lowered for hint in _CONTEXT_HINTS):
            return ProviderContextLengthExceededError(
                f"Context length exceeded ({summary})", status_code=status
            )
        if "content" in lowered and "policy" in lowered:
            return ProviderContentPolicyViolationError(
                f"Content policy violation ({summary})", status_code=status
            )
        return ProviderBadRequestError(f"Invalid request ({summary})", status_code=status)
    if status in (502, 503, 504, 529):
        return ProviderServiceUnavailableError(f"Service unavailable ({summary})", status_code=status)
    return ProviderApiError(f"API error ({summary})", status_code=status)


def map_transport_exception(exc: BaseException) -> ProviderMappedError:
    """Map ``httpx`` and asyncio transport failures to normalized errors."""
    if isinstance(exc, ProviderMappedError):
        return exc
    message = str(exc) or type(exc).__name__
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return ProviderTimeoutError(f"Request timed out: {message}")
    if isinstance(exc, httpx.HTTPStatusError):
        return map_status_error(exc.response.status_code, exc.response.text)
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return map_connection_error(message)
    if isinstance(exc, httpx.HTTPError):
        return ProviderApiError(f"HTTP error: {message}")
    return ProviderMappedError(
        "unknown_error", f"Unexpected error ({type(exc).__name__}): {message}"
    )


def status_code_of(exc: Any) -> Optional[int]:
    """Best-effort HTTP status extraction from SDK exceptions."""
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None
