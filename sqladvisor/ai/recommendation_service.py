"""
Recommendation Service - single-flight aggregator over a recommendation backend

The service:
1. Serializes requests against one backend (one request in flight)
2. Relays fragments in arrival order and stops after the first terminal one
3. Turns every failure into a fragment; cancellation becomes CANCELED
4. Accumulates fragments into a RecommendationResult for the UI layer
"""

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, AsyncIterator, Callable, Optional

from sqladvisor.ai.backend import RecommendationBackend
from sqladvisor.ai.cancellation import CancellationToken
from sqladvisor.ai.fragments import FragmentKind, RecommendationFragment
from sqladvisor.ai.ollama_client import OllamaRecommendationClient
from sqladvisor.ai.on_device import ModelFactory, OnDeviceRecommendationClient
from sqladvisor.ai.prompts import RecommendationRequest
from sqladvisor.ai.single_flight import SingleFlightGate
from sqladvisor.core.config import Settings, get_settings
from sqladvisor.core.constants import RecommendationStatus
from sqladvisor.core.exceptions import InvalidRequestError, RecommendationCancelledError
from sqladvisor.core.logger import get_logger, log_exception, request_scope, LogContext

if TYPE_CHECKING:
    from sqladvisor.models.query_info import QueryInfo

logger = get_logger('ai.service')


@dataclass
class RecommendationResult:
    """Accumulated outcome of one recommendation request"""
    status: RecommendationStatus
    text: str = ""
    error: Optional[str] = None
    backend: str = ""
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is RecommendationStatus.COMPLETED

    @property
    def status_text(self) -> str:
        if self.status is RecommendationStatus.COMPLETED:
            return "Analysis complete."
        if self.status is RecommendationStatus.CANCELED:
            return "Analysis canceled."
        if self.status is RecommendationStatus.ERRORED:
            return f"Error during analysis: {self.error}"
        return "Analysis ended without a completion signal."

    @property
    def display_text(self) -> str:
        """Text as shown to the user, with outcome markers appended"""
        if self.status is RecommendationStatus.CANCELED:
            return f"{self.text}\n[Canceled]" if self.text else "[Canceled]"
        if self.status is RecommendationStatus.ERRORED:
            marker = f"[Error: {self.error}]"
            return f"{self.text}\n{marker}" if self.text else marker
        return self.text


async def select_backend(
    preferred: RecommendationBackend,
    fallback: RecommendationBackend,
    probe_timeout: Optional[float] = None,
) -> RecommendationBackend:
    """
    Probe the preferred backend once and pick it or the fallback.

    A probe that returns False, raises, or does not answer within
    `probe_timeout` selects the fallback.
    """
    if probe_timeout is None:
        probe_timeout = get_settings().ai.probe_timeout
    try:
        available = await asyncio.wait_for(preferred.probe(), probe_timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{preferred.name} availability probe timed out after {probe_timeout:g}s")
        available = False
    except Exception as e:
        logger.error(f"{preferred.name} availability probe failed: {e}")
        available = False

    selected = preferred if available is True else fallback
    logger.info(f"Using {selected.name} for recommendations")
    return selected


class RecommendationService:
    """
    Front door for query recommendations.

    Example:
        >>> service = await RecommendationService.create()
        >>> token = CancellationToken()
        >>> async for fragment in service.submit(sql_text, plan_xml, token):
        ...     render(fragment)
    """

    def __init__(self, backend: RecommendationBackend, gate: Optional[SingleFlightGate] = None):
        self.backend = backend
        self.gate = gate or SingleFlightGate(backend.name)

    @classmethod
    async def create(
        cls,
        settings: Optional[Settings] = None,
        on_device_factory: Optional[ModelFactory] = None,
    ) -> 'RecommendationService':
        """Build a service, preferring the on-device model when it is usable"""
        settings = settings or get_settings()
        ollama = OllamaRecommendationClient(settings=settings)
        if not (settings.ai.prefer_on_device and on_device_factory is not None):
            logger.info(f"Using {ollama.name} for recommendations")
            return cls(ollama)

        on_device = OnDeviceRecommendationClient(
            on_device_factory, queue_size=settings.ai.progress_queue_size
        )
        backend = await select_backend(on_device, ollama, settings.ai.probe_timeout)
        return cls(backend)

    @property
    def busy(self) -> bool:
        return self.gate.in_flight

    async def submit(
        self,
        query_text: str,
        execution_plan: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[RecommendationFragment]:
        """
        Request a recommendation and yield its fragments.

        Never raises for request failures: the sequence ends with DONE,
        a terminal ERROR, or CANCELED.
        """
        fragments = self._relay(partial(RecommendationRequest, query_text, execution_plan), cancel_token)
        async with aclosing(fragments):
            async for fragment in fragments:
                yield fragment

    async def submit_query(
        self,
        query: 'QueryInfo',
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[RecommendationFragment]:
        """Same as submit() for a statistics row from the data layer"""
        fragments = self._relay(query.to_request, cancel_token)
        async with aclosing(fragments):
            async for fragment in fragments:
                yield fragment

    async def _relay(
        self,
        make_request: Callable[[], RecommendationRequest],
        cancel_token: Optional[CancellationToken],
    ) -> AsyncIterator[RecommendationFragment]:
        try:
            request = make_request()
        except InvalidRequestError as e:
            yield RecommendationFragment.error(e.message)
            return

        try:
            async with self.gate.hold(cancel_token):
                stream = self.backend.stream(request, cancel_token)
                async with aclosing(stream):
                    async for fragment in stream:
                        yield fragment
                        if fragment.terminal:
                            return
        except RecommendationCancelledError as e:
            logger.info(f"Recommendation canceled (stage={e.stage or 'unknown'})")
            yield RecommendationFragment.canceled()
        except Exception as e:
            log_exception(logger, e, "Unexpected recommendation error")
            yield RecommendationFragment.error(f"Unexpected Error: {e}")

    async def recommend(
        self,
        query_text: str,
        execution_plan: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_update: Optional[Callable[[str], None]] = None,
    ) -> RecommendationResult:
        """
        Run a request to the end and return the accumulated result.

        `on_update` receives the text accumulated so far after every TEXT
        fragment. Text already received is kept on error and cancellation.
        """
        return await self._accumulate(self.submit(query_text, execution_plan, cancel_token), on_update)

    async def recommend_for(
        self,
        query: 'QueryInfo',
        cancel_token: Optional[CancellationToken] = None,
        on_update: Optional[Callable[[str], None]] = None,
    ) -> RecommendationResult:
        return await self._accumulate(self.submit_query(query, cancel_token), on_update)

    async def _accumulate(
        self,
        fragments: AsyncIterator[RecommendationFragment],
        on_update: Optional[Callable[[str], None]],
    ) -> RecommendationResult:
        chunks: list[str] = []
        status = RecommendationStatus.INCOMPLETE
        error: Optional[str] = None

        with request_scope(), LogContext(logger, f"Recommendation via {self.backend.name}") as ctx:
            async with aclosing(fragments):
                async for fragment in fragments:
                    if fragment.kind is FragmentKind.TEXT:
                        chunks.append(fragment.content)
                        if on_update is not None:
                            on_update("".join(chunks))
                    elif fragment.kind is FragmentKind.DONE:
                        status = RecommendationStatus.COMPLETED
                    elif fragment.kind is FragmentKind.CANCELED:
                        status = RecommendationStatus.CANCELED
                    elif fragment.terminal:
                        status = RecommendationStatus.ERRORED
                        error = fragment.content
                    else:
                        logger.warning(f"Backend warning: {fragment.content}")

        return RecommendationResult(
            status=status,
            text="".join(chunks),
            error=error,
            backend=self.backend.name,
            elapsed=ctx.duration,
        )


_service: Optional[RecommendationService] = None
_service_lock = asyncio.Lock()


async def get_recommendation_service(
    on_device_factory: Optional[ModelFactory] = None,
) -> RecommendationService:
    """Process-wide service, backend chosen once on first call"""
    global _service
    async with _service_lock:
        if _service is None:
            _service = await RecommendationService.create(on_device_factory=on_device_factory)
        return _service


def reset_recommendation_service() -> None:
    global _service
    _service = None
