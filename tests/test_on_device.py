"""Tests for the on-device model adapter."""

import asyncio
import threading
import time

import pytest

from conftest import collect
from sqladvisor.ai.backend import RecommendationBackend
from sqladvisor.ai.cancellation import CancellationToken
from sqladvisor.ai.fragments import RecommendationFragment
from sqladvisor.ai.on_device import UNAVAILABLE_MESSAGE, OnDeviceRecommendationClient
from sqladvisor.ai.prompts import RecommendationRequest
from sqladvisor.core.constants import BackendKind
from sqladvisor.core.exceptions import GenerationAborted, RecommendationCancelledError


REQUEST = RecommendationRequest("SELECT name FROM sys.tables")


class ScriptedModel:
    """Reports fixed chunks through the progress callback"""

    def __init__(self, chunks: list[str], result: str = "", error: Exception | None = None):
        self.chunks = chunks
        self.result = result
        self.error = error
        self.prompts: list[str] = []

    def generate(self, prompt, on_progress) -> str:
        self.prompts.append(prompt)
        for chunk in self.chunks:
            on_progress(chunk)
        if self.error is not None:
            raise self.error
        return self.result


class EndlessModel:
    """Keeps producing until the callback tells it to stop"""

    def __init__(self):
        self.started = threading.Event()
        self.stopped = threading.Event()

    def generate(self, prompt, on_progress) -> str:
        self.started.set()
        try:
            while True:
                on_progress("tok ")
                time.sleep(0.002)
        except GenerationAborted:
            self.stopped.set()
            raise


class TestOnDeviceStreaming:
    """Buffered output surfaces as one TEXT then DONE."""

    @pytest.mark.asyncio
    async def test_progress_chunks_are_joined(self) -> None:
        model = ScriptedModel(["- Add an ", "index on ", "CustomerId."], result="ignored")
        client = OnDeviceRecommendationClient(lambda: model)

        fragments = await collect(client.stream(REQUEST))

        assert fragments == [
            RecommendationFragment.text("- Add an index on CustomerId."),
            RecommendationFragment.done(),
        ]
        assert "SELECT name FROM sys.tables" in model.prompts[0]

    @pytest.mark.asyncio
    async def test_returned_text_used_without_progress(self) -> None:
        client = OnDeviceRecommendationClient(lambda: ScriptedModel([], result="Rewrite the join."))

        fragments = await collect(client.stream(REQUEST))

        assert fragments == [RecommendationFragment.text("Rewrite the join."), RecommendationFragment.done()]

    @pytest.mark.asyncio
    async def test_empty_output_is_just_done(self) -> None:
        client = OnDeviceRecommendationClient(lambda: ScriptedModel([]))

        assert await collect(client.stream(REQUEST)) == [RecommendationFragment.done()]

    @pytest.mark.asyncio
    async def test_small_queue_still_delivers_everything(self) -> None:
        chunks = [f"{i} " for i in range(50)]
        client = OnDeviceRecommendationClient(lambda: ScriptedModel(chunks), queue_size=2)

        fragments = await collect(client.stream(REQUEST))

        assert fragments[0].content == "".join(chunks)
        assert fragments[-1] == RecommendationFragment.done()

    @pytest.mark.asyncio
    async def test_model_failure_is_an_error_fragment(self) -> None:
        model = ScriptedModel(["partial"], error=RuntimeError("NPU driver crashed"))
        client = OnDeviceRecommendationClient(lambda: model)

        fragments = await collect(client.stream(REQUEST))

        assert fragments == [RecommendationFragment.error("On-device AI service error: NPU driver crashed")]


class TestOnDeviceAvailability:
    """Model creation happens once and failures mark the backend unavailable."""

    def test_satisfies_backend_protocol(self) -> None:
        client = OnDeviceRecommendationClient(lambda: ScriptedModel([]))
        assert isinstance(client, RecommendationBackend)
        assert client.kind is BackendKind.ON_DEVICE

    @pytest.mark.asyncio
    async def test_factory_runs_once(self) -> None:
        calls = []

        def factory():
            calls.append(1)
            return ScriptedModel([])

        client = OnDeviceRecommendationClient(factory)

        results = await asyncio.gather(client.probe(), client.probe(), client.probe())

        assert results == [True, True, True]
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_factory_error_means_unavailable(self) -> None:
        def factory():
            raise OSError("model files missing")

        client = OnDeviceRecommendationClient(factory)

        assert await client.probe() is False
        assert await collect(client.stream(REQUEST)) == [RecommendationFragment.error(UNAVAILABLE_MESSAGE)]

    @pytest.mark.asyncio
    async def test_cancelled_load_is_retried(self) -> None:
        calls = []

        def slow_factory():
            calls.append(1)
            time.sleep(0.3)
            return ScriptedModel(["Loaded fine."])

        client = OnDeviceRecommendationClient(slow_factory)
        token = CancellationToken()

        pending = asyncio.ensure_future(collect(client.stream(REQUEST, token)))
        await asyncio.sleep(0.05)
        token.cancel()
        with pytest.raises(RecommendationCancelledError):
            await pending
        assert client.is_available is False

        fragments = await collect(client.stream(REQUEST))

        assert fragments == [RecommendationFragment.text("Loaded fine."), RecommendationFragment.done()]
        assert client.is_available is True
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_timed_out_probe_is_retried(self) -> None:
        def slow_factory():
            time.sleep(0.2)
            return ScriptedModel([])

        client = OnDeviceRecommendationClient(slow_factory)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(client.probe(), 0.01)

        assert await client.probe() is True

    @pytest.mark.asyncio
    async def test_no_factory_means_unavailable(self) -> None:
        client = OnDeviceRecommendationClient()

        assert await client.probe() is False
        assert client.is_available is False


class TestOnDeviceCancellation:
    """Cancelling stops the wait and tells the model to stop."""

    @pytest.mark.asyncio
    async def test_cancel_aborts_generation(self) -> None:
        model = EndlessModel()
        client = OnDeviceRecommendationClient(lambda: model, queue_size=4)
        token = CancellationToken()

        pending = asyncio.ensure_future(collect(client.stream(REQUEST, token)))
        assert await asyncio.to_thread(model.started.wait, 2.0)
        token.cancel()

        with pytest.raises(RecommendationCancelledError):
            await pending
        assert await asyncio.to_thread(model.stopped.wait, 2.0)

    @pytest.mark.asyncio
    async def test_cancelled_before_start_never_generates(self) -> None:
        model = ScriptedModel(["never"])
        client = OnDeviceRecommendationClient(lambda: model)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(RecommendationCancelledError):
            await collect(client.stream(REQUEST, token))
        assert model.prompts == []
