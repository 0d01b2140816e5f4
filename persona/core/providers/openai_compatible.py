"""OpenAI-compatible chat completion adapter.

Streams ``POST <base_url>/chat/completions`` responses as Server-Sent Events,
one JSON chunk per ``data:`` line, and turns ``choices[0].delta.content`` into
text pieces. HTTP clients are pooled per base URL for the process lifetime.
"""

from __future__ import annotations

import threading
from typing import AsyncIterator, Dict, List, Optional

import httpx
from pydantic import BaseModel, ValidationError

from persona import __version__
from persona.core.config import ModelConfig
from persona.core.providers.base import ProviderAdapter, StreamStats
from persona.core.providers.error_mapping import map_status_error
from persona.core.providers.errors import ProviderConfigurationError
from persona.utils.log import get_logger

logger = get_logger()

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
COMPLETIONS_PATH = "chat/completions"
USER_AGENT = f"persona-stream/{__version__}"


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatCompletionRequest(BaseModel):
    model: str
    messages: List[ChatMessage]
    stream: bool = True


class ChunkDelta(BaseModel):
    content: Optional[str] = None


class ChunkChoice(BaseModel):
    delta: Optional[ChunkDelta] = None


class ChatCompletionChunk(BaseModel):
    """The subset of a streamed chunk we read; other fields are ignored."""

    choices: Optional[List[ChunkChoice]] = None

    def first_content(self) -> Optional[str]:
        if not self.choices:
            return None
        delta = self.choices[0].delta
        return delta.content if delta else None


def normalize_sse_line(raw: str) -> Optional[str]:
    """Strip the ``data:`` prefix and whitespace; return None for blank lines."""
    line = raw.strip()
    if line.startswith(DATA_PREFIX):
        line = line[len(DATA_PREFIX):].strip()
    return line or None


class ConnectionPool:
    """One lazily created ``httpx.AsyncClient`` per endpoint base URL."""

    def __init__(
        self,
        *,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout if timeout is not None else httpx.Timeout(60.0, connect=10.0)
        self._transport = transport
        self._clients: Dict[str, httpx.AsyncClient] = {}
        self._lock = threading.Lock()

    @staticmethod
    def normalize(base_url: str) -> str:
        return base_url.strip().rstrip("/")

    def get(self, base_url: str) -> httpx.AsyncClient:
        key = self.normalize(base_url)
        with self._lock:
            client = self._clients.get(key)
            if client is None or client.is_closed:
                client = httpx.AsyncClient(
                    base_url=key + "/",
                    timeout=self._timeout,
                    transport=self._transport,
                    headers={"User-Agent": USER_AGENT},
                )
                self._clients[key] = client
                logger.debug(
                    "[openai_compatible] Created HTTP client",
                    extra={"base_url": key, "pool_size": len(self._clients)},
                )
            return client

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    async def aclose(self) -> None:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.aclose()


class OpenAICompatibleAdapter(ProviderAdapter):
    """Adapter for endpoints speaking the OpenAI chat-completions stream format."""

    name = "openai_compatible"

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    async def iter_text(
        self, prompt: str, config: ModelConfig, stats: StreamStats
    ) -> AsyncIterator[str]:
        base_url = config.endpoint_base_url
        model_id = config.effective_model_identifier()
        if not base_url or not model_id:
            raise ProviderConfigurationError(
                f"Model '{config.name}' needs both an endpoint base URL and a model identifier."
            )

        client = self._pool.get(base_url)
        request = ChatCompletionRequest(
            model=model_id,
            messages=[ChatMessage(role="user", content=prompt)],
        )
        headers = {
            "Authorization": f"Bearer {config.resolved_credential()}",
            "Accept": "text/event-stream",
        }
        logger.debug(
            "[openai_compatible] POST chat/completions",
            extra={"base_url": self._pool.normalize(base_url), "model": model_id},
        )

        async with client.stream(
            "POST", COMPLETIONS_PATH, json=request.model_dump(), headers=headers
        ) as response:
            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise map_status_error(response.status_code, body)

            async for raw_line in response.aiter_lines():
                stats.lines += 1
                line = normalize_sse_line(raw_line)
                # Blank separators and ":" keep-alive comments carry no data.
                if line is None or line.startswith(":"):
                    continue
                if line == DONE_SENTINEL:
                    return
                try:
                    chunk = ChatCompletionChunk.model_validate_json(line)
                except ValidationError as exc:
                    stats.skipped_events += 1
                    logger.warning(
                        "[openai_compatible] Skipping malformed stream event",
                        extra={
                            "line": line[:200],
                            "error_count": exc.error_count(),
                            "skipped_events": stats.skipped_events,
                        },
                    )
                    continue
                content = chunk.first_content()
                if content:
                    yield content
