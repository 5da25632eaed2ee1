"""Shared test fixtures for pytest.

Settings are reset to defaults for every test with SQLADVISOR_* variables
removed, so a developer's environment or settings file never leaks in.
"""

import asyncio
import json
import os
from collections.abc import AsyncIterator, Callable, Iterator
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio

from sqladvisor.core.config import Settings, reset_settings


TEST_HOST = "http://ollama.test:11434"
TEST_MODEL = "gemma3:12b"


def ndjson(*records: Any) -> bytes:
    """Encode records (dicts or raw strings) as newline-delimited JSON"""
    lines = []
    for record in records:
        lines.append(record if isinstance(record, str) else json.dumps(record))
    return ("\n".join(lines) + "\n").encode("utf-8")


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served"""

    def __init__(self, handler: Callable[[httpx.Request], Any]):
        self.requests: list[httpx.Request] = []

        async def recording_handler(request: httpx.Request):
            self.requests.append(request)
            result = handler(request)
            if asyncio.iscoroutine(result):
                result = await result
            return result

        super().__init__(recording_handler)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def payload(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)


class GatedStream(httpx.AsyncByteStream):
    """Response body that sends some lines, then waits for `release`"""

    def __init__(self, head: bytes, tail: bytes = b""):
        self.head = head
        self.tail = tail
        self.release = asyncio.Event()
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self.head
        await self.release.wait()
        if self.tail:
            yield self.tail

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def default_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[Settings]:
    for key in list(os.environ):
        if key.startswith("SQLADVISOR_"):
            monkeypatch.delenv(key, raising=False)
    settings = reset_settings(Settings(app_dir=tmp_path))
    yield settings
    reset_settings(Settings(app_dir=tmp_path))


@pytest_asyncio.fixture
async def http_factory() -> AsyncIterator[Callable[[httpx.MockTransport], httpx.AsyncClient]]:
    clients: list[httpx.AsyncClient] = []

    def factory(transport: httpx.MockTransport) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=transport)
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.aclose()


@pytest.fixture
def make_client(http_factory):
    """Build an OllamaRecommendationClient over a mock transport"""
    from sqladvisor.ai.ollama_client import OllamaRecommendationClient

    def factory(transport: httpx.MockTransport, *, stream: Optional[bool] = None, **kwargs):
        return OllamaRecommendationClient(
            host=TEST_HOST,
            model=TEST_MODEL,
            stream=stream,
            http_client=http_factory(transport),
            **kwargs,
        )

    return factory


async def collect(fragments: AsyncIterator) -> list:
    return [fragment async for fragment in fragments]
