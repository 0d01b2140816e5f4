"""Shared abstractions for provider adapters."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterable, AsyncIterator, Iterable, Optional

from persona.core.config import ModelConfig
from persona.core.providers.error_mapping import map_transport_exception
from persona.core.providers.errors import ProviderMappedError
from persona.core.streaming import StreamEvent, StreamFragment, StreamOutcome
from persona.utils.log import get_logger

logger = get_logger()


@dataclass
class StreamStats:
    """Per-request counters an adapter updates while reading upstream events."""

    lines: int = 0
    skipped_events: int = 0


class ProviderAdapter(ABC):
    """Abstract base for provider protocol adapters.

    Subclasses implement :meth:`iter_text`, yielding raw text pieces and raising
    on failure. :meth:`generate` wraps that into the uniform contract: ordered
    :class:`StreamFragment` values followed by exactly one :class:`StreamOutcome`.
    """

    name = "provider"

    @abstractmethod
    def iter_text(
        self, prompt: str, config: ModelConfig, stats: StreamStats
    ) -> AsyncIterator[str]:
        """Yield generated text pieces in upstream order."""

    def map_exception(self, exc: Exception) -> ProviderMappedError:
        return map_transport_exception(exc)

    async def generate(
        self, prompt: str, config: ModelConfig
    ) -> AsyncGenerator[StreamEvent, None]:
        stats = StreamStats()
        index = 0
        text_iter = self.iter_text(prompt, config, stats)
        try:
            async for text in text_iter:
                yield StreamFragment(text=text, index=index)
                index += 1
        except asyncio.CancelledError:
            raise  # Don't suppress task cancellation
        except Exception as exc:
            mapped = self.map_exception(exc)
            logger.debug(
                f"[{self.name}] Exception details",
                extra={
                    "model": config.effective_model_identifier(),
                    "exception_type": type(exc).__name__,
                    "exception_str": str(exc),
                    "error_code": mapped.error_code,
                },
            )
            logger.error(
                f"[{self.name}] Stream failed",
                extra={
                    "model": config.effective_model_identifier(),
                    "error_code": mapped.error_code,
                    "error_message": str(mapped),
                    "fragments": index,
                },
            )
            if mapped is not exc and mapped.__cause__ is None:
                mapped.__cause__ = exc
            yield StreamOutcome.failure(
                mapped, fragment_count=index, skipped_events=stats.skipped_events
            )
            return
        finally:
            await text_iter.aclose()  # type: ignore[attr-defined]

        logger.debug(
            f"[{self.name}] Stream completed",
            extra={
                "model": config.effective_model_identifier(),
                "fragments": index,
                "lines": stats.lines,
                "skipped_events": stats.skipped_events,
            },
        )
        yield StreamOutcome.success(fragment_count=index, skipped_events=stats.skipped_events)


async def iter_with_timeout(
    stream: Iterable[Any] | AsyncIterable[Any], timeout: Optional[float]
) -> AsyncIterator[Any]:
    """Yield items from an async or sync iterable, enforcing per-item timeout if provided."""
    if timeout is None or timeout <= 0:
        if hasattr(stream, "__aiter__"):
            async for item in stream:  # type: ignore[union-attr]
                yield item
        else:
            for item in stream:  # type: ignore[union-attr]
                yield item
        return

    if hasattr(stream, "__aiter__"):
        aiter = stream.__aiter__()  # type: ignore[union-attr]
        while True:
            try:
                yield await asyncio.wait_for(aiter.__anext__(), timeout=timeout)
            except StopAsyncIteration:
                break
    else:
        iterator = iter(stream)  # type: ignore[arg-type]
        sentinel = object()
        while True:
            next_item = await asyncio.wait_for(
                asyncio.to_thread(next, iterator, sentinel), timeout=timeout
            )
            if next_item is sentinel:
                break
            yield next_item
