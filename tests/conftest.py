"""Shared test fixtures for all test modules."""

import asyncio
import json
from typing import AsyncIterator, Iterable, List, Optional

import pytest

from moodlog.models.config import LLMConfig, PipelineConfig


def sse_data(content: Optional[str] = None, reasoning: Optional[str] = None,
             finish_reason: Optional[str] = None) -> str:
    """One OpenAI-style streaming chunk as an SSE ``data`` payload."""
    delta = {}
    if content is not None:
        delta["content"] = content
    if reasoning is not None:
        delta["reasoning_content"] = reasoning
    return json.dumps({
        "id": "chatcmpl-test",
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }, ensure_ascii=False)


def build_sse_body(contents: Iterable[str] = (), reasonings: Iterable[str] = (),
                   done: bool = True) -> bytes:
    """SSE body: reasoning events first, then content events, then [DONE]."""
    events = [sse_data(reasoning=text) for text in reasonings]
    events += [sse_data(content=text) for text in contents]
    body = "".join(f"data: {event}\n\n" for event in events)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode("utf-8")


def split_every(data: bytes, size: int) -> List[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


class FakeUpstream:
    """Stands in for UpstreamStream: yields canned chunks, optionally fails or stalls."""

    def __init__(self, chunks: Iterable[bytes], error: Optional[Exception] = None,
                 stall: bool = False):
        self.chunks = list(chunks)
        self.error = error
        self.stall = stall
        self.closed = False
        self.request_id = "test"

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            await asyncio.sleep(0)
            yield chunk
        if self.error is not None:
            raise self.error
        if self.stall:
            await asyncio.sleep(3600)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def llm_config():
    """Create test LLM configuration."""
    return LLMConfig(
        endpoint="https://api.test.com/v1",
        api_key="test-key",
        model="test-model",
        reasoning_model="test-reasoner",
    )


@pytest.fixture
def pipeline_config():
    return PipelineConfig(commit_timeout=5.0)


@pytest.fixture
def make_sse_body():
    return build_sse_body


@pytest.fixture
def make_upstream():
    return FakeUpstream
