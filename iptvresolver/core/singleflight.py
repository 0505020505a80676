import asyncio
import threading
from functools import partial
from typing import Awaitable, Callable, Dict, Hashable, TypeVar

from iptvresolver.utils.logger import cache_logger

T = TypeVar("T")


# ===========================
# Single Flight Group
# ===========================
class SingleFlight:
    """Deduplicate concurrent work by key.

    The first caller for a key starts the work as a task; callers arriving
    while it runs await the same task. Each caller waits through
    ``asyncio.shield`` so cancelling one waiter leaves the shared work and
    the other waiters untouched. The key is forgotten once the task settles,
    successful or not.
    """

    def __init__(self, name: str = "flight"):
        self.name = name
        self._tasks: Dict[Hashable, asyncio.Task] = {}
        self._lock = threading.Lock()

    async def do(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()

        with self._lock:
            task = self._tasks.get(key)
            joined = task is not None and not task.done() and task.get_loop() is loop
            if not joined:
                task = loop.create_task(factory())
                self._tasks[key] = task
                task.add_done_callback(partial(self._forget, key))

        if joined:
            cache_logger.debug(f"Joined in-flight {self.name}")

        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        with self._lock:
            if self._tasks.get(key) is task:
                del self._tasks[key]

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            task = self._tasks.get(key)
            return task is not None and not task.done()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
