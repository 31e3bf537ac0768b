"""
Clock and timer abstraction.

The autosave debounce and the export settle interval both wait on time.
Components take a Clock so tests can drive elapsed time explicitly.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Protocol


class TimerHandle(Protocol):
    """A cancellable scheduled callback (asyncio.TimerHandle satisfies this)."""

    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Clock(ABC):
    """Time source and timer factory."""

    @abstractmethod
    def now(self) -> float:
        """Monotonic time in seconds."""
        ...

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay seconds."""
        ...

    @abstractmethod
    async def sleep(self, delay: float) -> None:
        """Suspend the caller for delay seconds."""
        ...


class AsyncioClock(Clock):
    """Clock backed by the running asyncio event loop."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)
