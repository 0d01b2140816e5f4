"""Tests for the unified streaming client and its response channel."""

from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator, List

import pytest

from persona.core.client import StreamingCompletionClient
from persona.core.config import ModelConfig, ProviderKind, StreamSettings
from persona.core.providers import load_adapter_class
from persona.core.providers.base import ProviderAdapter, StreamStats
from persona.core.providers.openai_compatible import OpenAICompatibleAdapter
from persona.core.streaming import ErrorKind, ResponseStream, StreamFragment


class ScriptedAdapter(ProviderAdapter):
    """Adapter that replays fixed text pieces, optionally stalling afterwards."""

    name = "scripted"

    def __init__(self, pieces: List[str], *, hang: bool = False) -> None:
        self.pieces = pieces
        self.hang = hang
        self.prompts: List[str] = []
        self.closed = 0

    async def iter_text(
        self, prompt: str, config: ModelConfig, stats: StreamStats
    ) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        try:
            for piece in self.pieces:
                yield piece
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.closed += 1


def _sse(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]})


@pytest.mark.asyncio
async def test_dispatches_on_provider_kind(native_model, generic_model):
    native = ScriptedAdapter(["from ", "native"])
    generic = ScriptedAdapter(["from ", "generic"])
    client = StreamingCompletionClient(
        adapters={ProviderKind.NATIVE_STREAMING: native, ProviderKind.GENERIC_COMPATIBLE: generic}
    )

    assert await client.generate_response("q1", native_model).text() == "from native"
    assert await client.generate_response("q2", generic_model).text() == "from generic"
    assert native.prompts == ["q1"]
    assert generic.prompts == ["q2"]


@pytest.mark.asyncio
async def test_generic_stream_end_to_end(upstream, pool, generic_model):
    upstream.respond_with_lines([_sse("Hi"), _sse(" there"), "data: [DONE]"])
    async with StreamingCompletionClient(pool=pool) as client:
        stream = client.generate_response("Hello", generic_model)
        fragments = [fragment async for fragment in stream]
        outcome = await stream.wait()

    assert [f.text for f in fragments] == ["Hi", " there"]
    assert [f.index for f in fragments] == [0, 1]
    assert outcome.ok
    assert outcome.fragment_count == 2


@pytest.mark.asyncio
async def test_empty_injected_pool_is_used_for_requests(upstream, pool, generic_model):
    upstream.respond_with_lines([_sse("ok")])
    assert len(pool) == 0
    client = StreamingCompletionClient(StreamSettings(buffer_size=1), pool=pool)

    text = await client.generate_response("Hello", generic_model).text()

    assert client.pool is pool
    assert text == "ok"
    assert len(upstream.requests) == 1
    assert len(pool) == 1


@pytest.mark.asyncio
async def test_incomplete_generic_model_fails_without_network(upstream, pool, generic_model):
    model = generic_model.model_copy(update={"endpoint_base_url": "", "model_identifier": None})
    client = StreamingCompletionClient(pool=pool)

    stream = client.generate_response("Hello", model)
    text = await stream.text()
    outcome = await stream.wait()

    assert text == ""
    assert not outcome.ok
    assert outcome.error_kind == ErrorKind.CONFIGURATION
    assert "endpoint_base_url" in (outcome.message or "")
    assert "model_identifier" in (outcome.message or "")
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_text_returns_partial_output_on_failure(upstream, pool, generic_model):
    upstream.respond_with_status(429, "too many requests")
    client = StreamingCompletionClient(pool=pool)

    stream = client.generate_response("Hello", generic_model)

    assert await stream.text() == ""
    assert stream.outcome is not None
    assert stream.outcome.error_code == "rate_limit"


@pytest.mark.asyncio
async def test_cancel_releases_http_response_once(upstream, pool, generic_model):
    upstream.respond_with_lines([_sse("a"), _sse("b")], hang=True)
    client = StreamingCompletionClient(pool=pool)
    stream = client.generate_response("Hello", generic_model)

    iterator = stream.__aiter__()
    first = await iterator.__anext__()
    await stream.cancel()
    await stream.cancel()

    assert first.text == "a"
    assert stream.done
    assert stream.outcome.error_kind == ErrorKind.CANCELLED
    assert upstream.streams[0].close_count == 1
    assert [f async for f in stream] == []


@pytest.mark.asyncio
async def test_cancel_wakes_consumer_in_other_task(native_model):
    adapter = ScriptedAdapter([], hang=True)
    client = StreamingCompletionClient(adapters={ProviderKind.NATIVE_STREAMING: adapter})
    stream = client.generate_response("Hello", native_model)

    consumer = asyncio.create_task(stream.text())
    await asyncio.sleep(0.01)
    await stream.cancel()

    assert await asyncio.wait_for(consumer, timeout=1) == ""
    assert adapter.closed == 1
    assert (await stream.wait()).error_code == "cancelled"


@pytest.mark.asyncio
async def test_async_with_cancels_unfinished_stream(native_model):
    adapter = ScriptedAdapter(["x"], hang=True)
    client = StreamingCompletionClient(adapters={ProviderKind.NATIVE_STREAMING: adapter})

    async with client.generate_response("Hello", native_model) as stream:
        fragment = await stream.__aiter__().__anext__()

    assert fragment == StreamFragment(text="x", index=0)
    assert stream.outcome.error_kind == ErrorKind.CANCELLED
    assert adapter.closed == 1


@pytest.mark.asyncio
async def test_cancel_after_completion_keeps_success(native_model):
    client = StreamingCompletionClient(
        adapters={ProviderKind.NATIVE_STREAMING: ScriptedAdapter(["done"])}
    )
    stream = client.generate_response("Hello", native_model)

    assert await stream.text() == "done"
    await stream.cancel()

    assert stream.outcome.ok


@pytest.mark.asyncio
async def test_small_buffer_delivers_every_fragment_in_order(native_model):
    pieces = [f"{i} " for i in range(50)]
    client = StreamingCompletionClient(
        StreamSettings(buffer_size=1),
        adapters={ProviderKind.NATIVE_STREAMING: ScriptedAdapter(pieces)},
    )
    stream = client.generate_response("count", native_model)

    received = []
    async for fragment in stream:
        received.append(fragment)
        await asyncio.sleep(0)

    assert [f.text for f in received] == pieces
    assert [f.index for f in received] == list(range(50))
    assert (await stream.wait()).fragment_count == 50


@pytest.mark.asyncio
async def test_producer_crash_becomes_failure_outcome():
    async def events():
        yield StreamFragment(text="a", index=0)
        raise LookupError("broken adapter")

    stream = ResponseStream(events())

    assert await stream.text() == "a"
    outcome = await stream.wait()
    assert not outcome.ok
    assert outcome.error_code == "unknown_error"
    assert outcome.fragment_count == 1


@pytest.mark.asyncio
async def test_adapter_instances_are_cached_and_share_pool(pool):
    client = StreamingCompletionClient(pool=pool)

    adapter = client.adapter_for(ProviderKind.GENERIC_COMPATIBLE)

    assert isinstance(adapter, OpenAICompatibleAdapter)
    assert client.adapter_for(ProviderKind.GENERIC_COMPATIBLE) is adapter
    assert adapter._pool is pool


def test_unknown_provider_kind_is_rejected():
    with pytest.raises(ValueError):
        load_adapter_class("carrier-pigeon")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_aclose_closes_pooled_connections(pool):
    async with StreamingCompletionClient(pool=pool) as client:
        assert client.pool is pool
        http_client = client.pool.get("https://llm.example.test/v1")
        assert len(pool) == 1

    assert http_client.is_closed
    assert len(pool) == 0


@pytest.mark.asyncio
async def test_wait_rejects_done_signal_without_outcome():
    async def events():
        await asyncio.Event().wait()
        yield StreamFragment(text="unreachable", index=0)

    stream = ResponseStream(events())
    stream._done.set()

    with pytest.raises(RuntimeError):
        await stream.wait()
    await stream.cancel()
    assert stream.outcome.error_kind == ErrorKind.CANCELLED
