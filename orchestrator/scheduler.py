"""Single-flight guard and periodic task runner for the bridge loops."""
import asyncio
import logging
from typing import Any, Awaitable, Callable

from rpc import TransientRPCError

logger = logging.getLogger(__name__)

class SingleFlight:
    """Runs a coroutine function unless a previous run is still in progress."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._busy = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def busy(self) -> bool:
        return self._busy

    async def run(self, func: Callable[[], Awaitable[Any]]) -> bool:
        """Run ``func`` once.

        Returns:
            False if a run was already in progress and this one was skipped
        """
        if self._busy:
            logger.debug(f"{self.name} still running, skipping cycle")
            return False
        self._busy = True
        self._idle.clear()
        try:
            await func()
        finally:
            self._busy = False
            self._idle.set()
        return True

    async def wait(self) -> None:
        """Wait until no run is in progress."""
        await self._idle.wait()

class PeriodicTask:
    """Runs a cycle every ``interval`` seconds until the stop event is set."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval: float,
        stop_event: asyncio.Event,
        guard: SingleFlight = None
    ) -> None:
        self.name = name
        self.func = func
        self.interval = interval
        self.stop_event = stop_event
        self.guard = guard or SingleFlight(name)

    async def run_once(self) -> bool:
        """Run one guarded cycle, logging instead of raising."""
        try:
            return await self.guard.run(self.func)
        except TransientRPCError as e:
            logger.warning(f"{self.name} cycle skipped, node unavailable: {e}")
        except Exception as e:
            logger.exception(f"Error in {self.name} cycle: {e}")
        return False

    async def run(self) -> None:
        logger.info(f"Starting {self.name} every {self.interval}s")
        while not self.stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info(f"Stopped {self.name}")
