"""
Recommendation backend capability.
"""

from typing import AsyncIterator, Optional, Protocol, runtime_checkable

from sqladvisor.ai.cancellation import CancellationToken
from sqladvisor.ai.fragments import RecommendationFragment
from sqladvisor.ai.prompts import RecommendationRequest
from sqladvisor.core.constants import BackendKind


@runtime_checkable
class RecommendationBackend(Protocol):
    """
    Anything that can turn a request into a fragment stream.

    `stream` must never raise for backend or transport failures (they become
    a terminal ERROR fragment). Cancellation is the one exception: it raises
    RecommendationCancelledError.
    """

    kind: BackendKind

    @property
    def name(self) -> str: ...

    async def probe(self) -> bool: ...

    def stream(
        self,
        request: RecommendationRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[RecommendationFragment]: ...
