"""Lifecycle contract for components that own background tasks."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Lifecycle(ABC):
    """A component that must be initialized before use and shut down afterwards."""

    @abstractmethod
    async def initialize(self) -> None:
        """Start background work."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Stop background work and release resources."""
        pass


def start_ticker(
    name: str, interval_seconds: float, tick: Callable[[], Awaitable[object]]
) -> "asyncio.Task[None]":
    """Run ``tick`` every ``interval_seconds`` until the returned task is cancelled."""

    async def _worker() -> None:
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                await tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"{name} worker error: {e}")

    return asyncio.create_task(_worker(), name=name)


async def stop_ticker(task: Optional["asyncio.Task[None]"]) -> None:
    """Cancel a ticker task and wait for it to finish."""
    if task is None:
        return

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
