"""Stream values and the producer/consumer channel that delivers them."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncGenerator, AsyncIterator, List, Optional, Union

from persona.core.providers.error_mapping import map_transport_exception
from persona.core.providers.errors import ProviderMappedError
from persona.utils.log import get_logger

logger = get_logger()


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    TRANSPORT = "transport"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StreamFragment:
    """One incremental piece of generated text."""

    text: str
    index: int


@dataclass(frozen=True)
class StreamOutcome:
    """Terminal signal for one streaming request."""

    ok: bool
    error_kind: Optional[ErrorKind] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    cause: Optional[BaseException] = None
    fragment_count: int = 0
    # Upstream events dropped because they could not be parsed.
    skipped_events: int = 0

    @classmethod
    def success(cls, *, fragment_count: int = 0, skipped_events: int = 0) -> "StreamOutcome":
        return cls(ok=True, fragment_count=fragment_count, skipped_events=skipped_events)

    @classmethod
    def failure(
        cls,
        error: ProviderMappedError,
        *,
        fragment_count: int = 0,
        skipped_events: int = 0,
    ) -> "StreamOutcome":
        kind = (
            ErrorKind.CONFIGURATION
            if error.error_code == "configuration_error"
            else ErrorKind.TRANSPORT
        )
        return cls(
            ok=False,
            error_kind=kind,
            error_code=error.error_code,
            message=str(error),
            cause=error.__cause__ or error,
            fragment_count=fragment_count,
            skipped_events=skipped_events,
        )

    @classmethod
    def cancelled(cls, *, fragment_count: int = 0) -> "StreamOutcome":
        return cls(
            ok=False,
            error_kind=ErrorKind.CANCELLED,
            error_code="cancelled",
            message="Stream cancelled",
            fragment_count=fragment_count,
        )


StreamEvent = Union[StreamFragment, StreamOutcome]


class ResponseStream:
    """A cancelable channel of fragments fed by a single producer task.

    Iterate it with ``async for`` to receive :class:`StreamFragment` values in
    upstream order. Iteration stops once the producer has finished and every
    buffered fragment has been delivered; the terminal :class:`StreamOutcome`
    is then available as :attr:`outcome`.

    Must be created from a running event loop. The producer starts
    immediately and blocks once ``buffer_size`` fragments are waiting.
    """

    def __init__(
        self,
        events: AsyncGenerator[StreamEvent, None],
        *,
        buffer_size: int = 64,
    ) -> None:
        self._events = events
        self._queue: asyncio.Queue[StreamFragment] = asyncio.Queue(maxsize=buffer_size)
        self._outcome: Optional[StreamOutcome] = None
        self._done = asyncio.Event()
        self._delivered = 0
        self._task: asyncio.Task[None] = asyncio.get_running_loop().create_task(self._pump())

    @property
    def outcome(self) -> Optional[StreamOutcome]:
        return self._outcome

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def _finish(self, outcome: StreamOutcome) -> None:
        if self._outcome is None:
            self._outcome = outcome
        self._done.set()

    async def _pump(self) -> None:
        produced = 0
        try:
            async for event in self._events:
                if isinstance(event, StreamOutcome):
                    self._finish(event)
                    return
                await self._queue.put(event)
                produced += 1
            self._finish(StreamOutcome.success(fragment_count=produced))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception(
                "[stream] Producer failed unexpectedly",
                extra={"exception_type": type(exc).__name__},
            )
            mapped = map_transport_exception(exc)
            self._finish(StreamOutcome.failure(mapped, fragment_count=produced))
        finally:
            # Releases the adapter's transport on every exit path, including cancellation.
            await self._events.aclose()

    def __aiter__(self) -> AsyncIterator[StreamFragment]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamFragment]:
        while True:
            if not self._queue.empty():
                fragment = self._queue.get_nowait()
            elif self._done.is_set():
                return
            else:
                get_task = asyncio.ensure_future(self._queue.get())
                done_task = asyncio.ensure_future(self._done.wait())
                try:
                    await asyncio.wait(
                        {get_task, done_task}, return_when=asyncio.FIRST_COMPLETED
                    )
                finally:
                    done_task.cancel()
                    if not get_task.done():
                        get_task.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await get_task
                if get_task.cancelled():
                    continue
                fragment = get_task.result()
            self._delivered += 1
            yield fragment

    async def wait(self) -> StreamOutcome:
        """Wait for the terminal outcome.

        The producer stalls once the buffer is full, so a stream longer than
        ``buffer_size`` fragments only finishes while someone keeps reading it.
        """
        await self._done.wait()
        if self._outcome is None:
            raise RuntimeError("Stream finished without an outcome")
        return self._outcome

    async def text(self) -> str:
        """Consume the stream and return the concatenated text."""
        parts: List[str] = []
        async for fragment in self:
            parts.append(fragment.text)
        return "".join(parts)

    async def cancel(self) -> None:
        """Abandon the stream and release its transport resources."""
        if self._task.done():
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        # Drop anything buffered so waiting consumers see the cancellation at once.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._finish(StreamOutcome.cancelled(fragment_count=self._delivered))
        logger.debug("[stream] Stream cancelled", extra={"delivered": self._delivered})

    async def __aenter__(self) -> "ResponseStream":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.cancel()
