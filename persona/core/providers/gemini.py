"""Gemini adapter over the ``google-genai`` streaming SDK."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, List, Optional

from google import genai
from google.genai import errors as genai_errors

from persona.core.config import ModelConfig
from persona.core.providers.base import ProviderAdapter, StreamStats, iter_with_timeout
from persona.core.providers.error_mapping import (
    map_status_error,
    map_transport_exception,
    status_code_of,
)
from persona.core.providers.errors import ProviderMappedError
from persona.utils.log import get_logger

logger = get_logger()

GEMINI_MODELS_ENDPOINT_ERROR = "Gemini client is missing the async 'models' endpoint"

ClientFactory = Callable[[ModelConfig], Any]


def _collect_parts(candidate: Any) -> List[Any]:
    """Return a list of parts from a candidate regardless of SDK shape."""
    content = getattr(candidate, "content", None)
    if content is None:
        return []
    if hasattr(content, "parts"):
        return list(getattr(content, "parts", []) or [])
    if isinstance(content, list):
        return content
    return []


def _collect_text_from_parts(parts: List[Any]) -> str:
    texts: List[str] = []
    for part in parts:
        # Thought summaries are not part of the answer text.
        if getattr(part, "thought", False):
            continue
        text_val = getattr(part, "text", None)
        if isinstance(text_val, str):
            texts.append(text_val)
    return "".join(texts)


def chunk_text(chunk: Any) -> str:
    """Text carried by one streamed response chunk (first candidate only)."""
    candidates = getattr(chunk, "candidates", None) or []
    if not candidates:
        text_val = getattr(chunk, "text", None)
        return text_val if isinstance(text_val, str) else ""
    return _collect_text_from_parts(_collect_parts(candidates[0]))


class GeminiAdapter(ProviderAdapter):
    """Wraps the vendor streaming call into the uniform fragment contract."""

    name = "gemini"

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        *,
        read_timeout: Optional[float] = None,
    ) -> None:
        self._client_factory = client_factory
        self._read_timeout = read_timeout

    async def _client(self, config: ModelConfig) -> Any:
        if self._client_factory is not None:
            client = self._client_factory(config)
            return await client if inspect.isawaitable(client) else client
        return genai.Client(api_key=config.resolved_credential())

    async def iter_text(
        self, prompt: str, config: ModelConfig, stats: StreamStats
    ) -> AsyncIterator[str]:
        client = await self._client(config)
        models_api = getattr(getattr(client, "aio", None), "models", None)
        if models_api is None:
            raise RuntimeError(GEMINI_MODELS_ENDPOINT_ERROR)

        model_id = config.effective_model_identifier()
        logger.debug("[gemini] Initiating stream request", extra={"model": model_id})
        request = models_api.generate_content_stream(model=model_id, contents=prompt)
        if self._read_timeout is not None and self._read_timeout > 0:
            stream = await asyncio.wait_for(request, timeout=self._read_timeout)
        else:
            stream = await request
        try:
            async with aclosing(iter_with_timeout(stream, self._read_timeout)) as chunks:
                async for chunk in chunks:
                    stats.lines += 1
                    text = chunk_text(chunk)
                    if text:
                        yield text
        finally:
            close = getattr(stream, "aclose", None)
            if close is not None:
                await close()

    def map_exception(self, exc: Exception) -> ProviderMappedError:
        if isinstance(exc, ProviderMappedError):
            return exc
        if isinstance(exc, genai_errors.APIError):
            return map_status_error(exc.code, exc.message or str(exc))
        status = status_code_of(exc)
        if status is not None:
            return map_status_error(status, str(exc))
        return map_transport_exception(exc)
