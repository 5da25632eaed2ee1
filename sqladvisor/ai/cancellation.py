"""
Cooperative cancellation for recommendation requests.
"""

import asyncio
from typing import Any, Awaitable, Optional, TypeVar

from sqladvisor.core.exceptions import RecommendationCancelledError

T = TypeVar("T")


class CancellationToken:
    """
    Token the caller keeps to cancel a running request.

    Example:
        >>> token = CancellationToken()
        >>> async for fragment in service.submit(sql, plan, token):
        ...     ...
        >>> token.cancel()   # from a button handler
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Mark as cancelled"""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: Optional[str] = None) -> None:
        if self._event.is_set():
            raise RecommendationCancelledError(stage=stage)

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T], stage: Optional[str] = None) -> T:
        """
        Await `awaitable` unless the token fires first.

        When the token wins the awaitable is cancelled and
        RecommendationCancelledError is raised. An awaitable that finished
        anyway keeps its result.
        """
        if self._event.is_set():
            _discard(awaitable)
            raise RecommendationCancelledError(stage=stage)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            return await task
        except asyncio.CancelledError:
            # Only swallow the cancellation we caused
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        raise RecommendationCancelledError(stage=stage)


def _discard(awaitable: Any) -> None:
    # Close never-started coroutines so they don't warn about not being awaited
    close = getattr(awaitable, "close", None)
    if asyncio.iscoroutine(awaitable) and close is not None:
        close()
    elif isinstance(awaitable, asyncio.Future):
        awaitable.cancel()


async def guarded(awaitable: Awaitable[T], token: Optional[CancellationToken], stage: Optional[str] = None) -> T:
    """Await with an optional token; None means never cancelled"""
    if token is None:
        return await awaitable
    return await token.guard(awaitable, stage=stage)
