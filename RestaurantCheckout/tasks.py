"""Best-effort background work versus critical awaited calls.

``BackgroundTasks.spawn`` runs a coroutine without the caller waiting for it: failures
are logged and dropped, nothing is retried. ``critical`` awaits a coroutine and turns
any failure into ``OrderSubmissionFailed`` for the one caller that handles it.
"""
import asyncio
from typing import Any, Awaitable, Set, TypeVar

import structlog

from RestaurantCheckout.exceptions import CheckoutException, OrderSubmissionFailed

logger = structlog.get_logger()

T = TypeVar("T")


class BackgroundTasks:
    """Fire-and-forget coroutines owned by one component."""

    def __init__(self):
        self._tasks: Set["asyncio.Task[Any]"] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, coro: Awaitable[Any]) -> "asyncio.Task[Any]":
        task = asyncio.ensure_future(self._run(name, coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _run(name: str, coro: Awaitable[Any]) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as error:
            logger.error("background_task_failed", task=name, error=str(error))
            return None

    async def drain(self) -> None:
        """Wait for every task spawned so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()


async def critical(name: str, coro: Awaitable[T]) -> T:
    """Await a call on the critical path.

    Raises:
        OrderSubmissionFailed: If the call raised; the original error is chained
    """
    try:
        return await coro
    except asyncio.CancelledError:
        raise
    except (CheckoutException, OSError, ValueError) as error:
        logger.error("critical_call_failed", call=name, error=str(error))
        raise OrderSubmissionFailed(f"{name} failed: {error}") from error
