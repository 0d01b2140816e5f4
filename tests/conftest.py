"""Pytest configuration and fixtures for all tests."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, List, Optional

import httpx
import pytest

from persona.core.config import ModelConfig, ProviderKind
from persona.core.providers.openai_compatible import ConnectionPool


class RecordingByteStream(httpx.AsyncByteStream):
    """Response body that yields canned chunks and counts close calls.

    With ``hang=True`` the body stalls after the last chunk, like an upstream
    that stops sending without closing the connection.
    """

    def __init__(
        self,
        chunks: List[bytes],
        *,
        hang: bool = False,
        error: Optional[Exception] = None,
    ) -> None:
        self.chunks = chunks
        self.hang = hang
        self.error = error
        self.close_count = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.close_count += 1


class FakeUpstream:
    """Stands in for an OpenAI-compatible server behind ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.streams: List[RecordingByteStream] = []
        self._responder: Callable[[httpx.Request], httpx.Response] = self._default

    def _default(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, stream=self.stream_of([]))

    def stream_of(self, lines: List[str], **kwargs) -> RecordingByteStream:
        body = [(line + "\n").encode("utf-8") for line in lines]
        stream = RecordingByteStream(body, **kwargs)
        self.streams.append(stream)
        return stream

    def respond_with_lines(self, lines: List[str], **kwargs) -> None:
        def _responder(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                stream=self.stream_of(lines, **kwargs),
            )

        self._responder = _responder

    def respond_with_status(self, status: int, body: str) -> None:
        self._responder = lambda request: httpx.Response(status, text=body)

    def raise_error(self, error_factory: Callable[[httpx.Request], Exception]) -> None:
        def _responder(request: httpx.Request) -> httpx.Response:
            raise error_factory(request)

        self._responder = _responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def pool(upstream: FakeUpstream) -> ConnectionPool:
    return ConnectionPool(transport=upstream.transport)


@pytest.fixture
def generic_model() -> ModelConfig:
    return ModelConfig(
        name="Local",
        credential="sk-test",
        provider_kind=ProviderKind.GENERIC_COMPATIBLE,
        endpoint_base_url="https://llm.example.test/v1/",
        model_identifier="test-model",
    )


@pytest.fixture
def native_model() -> ModelConfig:
    return ModelConfig(
        name="Gemini",
        credential="g-test",
        provider_kind=ProviderKind.NATIVE_STREAMING,
    )
