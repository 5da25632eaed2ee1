"""
On-device model adapter.

Local models report partial output through a progress callback and only
return once generation finishes. The adapter runs the model in a worker
thread, feeds the callback into a bounded queue, and re-exposes the result
with the same fragment contract as the streaming client: one TEXT fragment
holding everything that was generated, then DONE.
"""

import asyncio
import concurrent.futures
import threading
from contextlib import suppress
from typing import AsyncIterator, Callable, Optional, Protocol

from sqladvisor.ai.cancellation import CancellationToken, guarded
from sqladvisor.ai.fragments import RecommendationFragment
from sqladvisor.ai.prompts import RecommendationRequest, build_prompt
from sqladvisor.core.config import get_settings
from sqladvisor.core.constants import BackendKind
from sqladvisor.core.exceptions import GenerationAborted, RecommendationCancelledError
from sqladvisor.core.logger import get_logger

logger = get_logger('ai.on_device')

UNAVAILABLE_MESSAGE = "On-device AI service error: model is not available on this device."

_END = object()


class OnDeviceLanguageModel(Protocol):
    """Blocking local model with a progress callback"""

    def generate(self, prompt: str, on_progress: Callable[[str], None]) -> str:
        """Generate a response, calling on_progress with each partial chunk"""
        ...


ModelFactory = Callable[[], Optional[OnDeviceLanguageModel]]


class ProgressChannel:
    """
    Bounded bridge from a worker-thread callback to an async consumer.

    `push` runs in the worker thread and blocks while the queue is full.
    After `abort` the next (or a blocked) `push` raises GenerationAborted so
    the model stops producing.
    """

    def __init__(self, maxsize: int, poll_interval: float = 0.1):
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._aborted = threading.Event()
        self._poll_interval = poll_interval

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def push(self, chunk: str) -> None:
        if self._aborted.is_set():
            raise GenerationAborted("Consumer stopped listening")
        if not chunk:
            return
        future = asyncio.run_coroutine_threadsafe(self._queue.put(chunk), self._loop)
        while True:
            try:
                future.result(timeout=self._poll_interval)
                return
            except concurrent.futures.TimeoutError:
                if self._aborted.is_set():
                    future.cancel()
                    raise GenerationAborted("Consumer stopped listening")

    def abort(self) -> None:
        self._aborted.set()

    async def close(self) -> None:
        """Signal end of output (loop side)"""
        if not self._aborted.is_set():
            await self._queue.put(_END)

    async def get(self):
        return await self._queue.get()


class OnDeviceRecommendationClient:
    """
    Recommendation backend for a model running on this host.

    The model is created once by `model_factory`; a factory that raises or
    returns None marks the backend unavailable.
    """

    kind = BackendKind.ON_DEVICE

    def __init__(
        self,
        model_factory: Optional[ModelFactory] = None,
        queue_size: Optional[int] = None,
        name: str = "On-device model",
    ):
        self._model_factory = model_factory
        self._queue_size = queue_size or get_settings().ai.progress_queue_size
        self._name = name
        self._model: Optional[OnDeviceLanguageModel] = None
        self._checked = False
        self._init_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_available(self) -> bool:
        return self._checked and self._model is not None

    async def initialize(self) -> None:
        """Create the model once; concurrent callers wait for the first"""
        async with self._init_lock:
            if self._checked:
                return
            # A cancelled load leaves _checked unset so the next caller retries
            try:
                if self._model_factory is None:
                    logger.info("No on-device model configured")
                else:
                    self._model = await asyncio.to_thread(self._model_factory)
                    if self._model is None:
                        logger.warning("On-device model factory returned no model")
            except Exception as e:
                logger.error(f"Error during on-device model initialization: {e}")
                self._model = None
            self._checked = True
            logger.info(f"On-device initialization complete. Model available: {self._model is not None}")

    async def probe(self) -> bool:
        await self.initialize()
        return self.is_available

    async def stream(
        self,
        request: RecommendationRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[RecommendationFragment]:
        """Generate locally and yield the buffered result as one TEXT then DONE"""
        await guarded(self.initialize(), cancel_token, stage="initialize")
        if self._model is None:
            yield RecommendationFragment.error(UNAVAILABLE_MESSAGE)
            return

        prompt = build_prompt(request)
        logger.debug(f"Requesting recommendation (prompt length={len(prompt)}), buffering result")

        channel = ProgressChannel(self._queue_size)
        worker = asyncio.ensure_future(self._run_model(prompt, channel))
        chunks: list[str] = []
        try:
            while True:
                item = await guarded(channel.get(), cancel_token, stage="generate")
                if item is _END:
                    break
                chunks.append(item)
            final_text = await worker
        except RecommendationCancelledError:
            logger.info("On-device generation canceled")
            channel.abort()
            raise
        except asyncio.CancelledError:
            channel.abort()
            raise
        except Exception as e:
            logger.error(f"Error during on-device generation: {e}")
            yield RecommendationFragment.error(f"On-device AI service error: {e}")
            return
        finally:
            if not worker.done():
                worker.cancel()
                with suppress(asyncio.CancelledError, Exception):
                    await worker

        text = "".join(chunks) or (final_text or "")
        logger.debug(f"Generation complete ({len(text)} chars)")
        if text:
            yield RecommendationFragment.text(text)
        yield RecommendationFragment.done()

    async def _run_model(self, prompt: str, channel: ProgressChannel) -> str:
        try:
            return await asyncio.to_thread(self._model.generate, prompt, channel.push)
        finally:
            await channel.close()
