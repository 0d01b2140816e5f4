"""Unified streaming completion client.

Dispatches a prompt to the adapter matching the model's provider kind and
hands the caller a :class:`ResponseStream`, so consumers never need to know
which upstream protocol produced the text.
"""

from __future__ import annotations

import threading
from typing import Any, AsyncGenerator, Dict, Mapping, Optional

from persona.core.config import ModelConfig, ProviderKind, StreamSettings
from persona.core.providers import get_adapter
from persona.core.providers.base import ProviderAdapter
from persona.core.providers.errors import ProviderConfigurationError
from persona.core.providers.openai_compatible import ConnectionPool
from persona.core.streaming import ResponseStream, StreamEvent, StreamOutcome
from persona.utils.log import get_logger

logger = get_logger()


class StreamingCompletionClient:
    """Streams completions from any configured model through one interface."""

    def __init__(
        self,
        settings: Optional[StreamSettings] = None,
        *,
        pool: Optional[ConnectionPool] = None,
        adapters: Optional[Mapping[ProviderKind, ProviderAdapter]] = None,
    ) -> None:
        self.settings = settings if settings is not None else StreamSettings()
        self.pool = pool if pool is not None else ConnectionPool(timeout=self.settings.httpx_timeout())
        self._adapters: Dict[ProviderKind, ProviderAdapter] = dict(adapters or {})
        self._adapter_lock = threading.Lock()

    def _adapter_kwargs(self, kind: ProviderKind) -> Dict[str, Any]:
        if kind == ProviderKind.GENERIC_COMPATIBLE:
            return {"pool": self.pool}
        return {"read_timeout": self.settings.read_timeout}

    def adapter_for(self, kind: ProviderKind) -> ProviderAdapter:
        with self._adapter_lock:
            adapter = self._adapters.get(kind)
            if adapter is None:
                adapter = get_adapter(kind, **self._adapter_kwargs(kind))
                self._adapters[kind] = adapter
            return adapter

    def generate_response(self, prompt: str, model: ModelConfig) -> ResponseStream:
        """Start streaming a reply to ``prompt`` from ``model``.

        Must be called from a running event loop. The request runs in its own
        task; the returned stream can be consumed from any other task and
        cancelled at any time.
        """
        return ResponseStream(self._events(prompt, model), buffer_size=self.settings.buffer_size)

    async def _events(self, prompt: str, model: ModelConfig) -> AsyncGenerator[StreamEvent, None]:
        missing = model.missing_fields()
        if missing:
            error = ProviderConfigurationError(
                f"Model '{model.name}' is missing required settings: {', '.join(missing)}"
            )
            logger.warning(
                "[client] Refusing to stream with incomplete model configuration",
                extra={"model_id": model.id, "missing": missing},
            )
            yield StreamOutcome.failure(error)
            return

        adapter = self.adapter_for(model.provider_kind)
        logger.debug(
            "[client] Dispatching stream",
            extra={"model_id": model.id, "kind": model.provider_kind.value, "adapter": adapter.name},
        )
        events = adapter.generate(prompt, model)
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()

    async def aclose(self) -> None:
        await self.pool.aclose()

    async def __aenter__(self) -> "StreamingCompletionClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
