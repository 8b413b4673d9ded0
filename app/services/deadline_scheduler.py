import asyncio
import contextvars
from typing import Awaitable, Callable, Dict, Hashable
from configs.logger import logger


class DeadlineScheduler:
    """Runs a callback once after a delay unless the deadline is cancelled first."""

    def __init__(self):
        self._tasks: Dict[Hashable, asyncio.Task] = {}

    def schedule(self, key: Hashable, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        self.cancel(key)
        # Fresh context: the timer must not inherit the caller's held user locks.
        self._tasks[key] = asyncio.create_task(
            self._fire(key, delay, callback), context=contextvars.Context()
        )

    def cancel(self, key: Hashable) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task is asyncio.current_task():
            return False
        task.cancel()
        return True

    def pending(self) -> int:
        return len(self._tasks)

    async def _fire(self, key: Hashable, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        self._tasks.pop(key, None)
        try:
            await callback()
        except Exception as e:
            logger.exception(f"Deadline callback {key} failed: {str(e)}")

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
