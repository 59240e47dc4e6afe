"""Supervision of the engine's long-running loops."""

import asyncio
import signal
import sys
from typing import Any, Callable, Coroutine, Dict, List, Optional

from heatmap.core.backoff import ReconnectPolicy
from heatmap.core.logger import get_logger

logger = get_logger(__name__)

LoopFactory = Callable[[], Coroutine[Any, Any, None]]


class TaskManager:
    """Named background loops, each restarted after a crash.

    Loops are registered as zero-argument factories so a crashed loop can be
    started again; the delay before each restart comes from a ``ReconnectPolicy``.
    """

    def __init__(self, policy_factory: Optional[Callable[[], ReconnectPolicy]] = None):
        self._tasks: Dict[str, asyncio.Task] = {}
        self._policy_factory = policy_factory or ReconnectPolicy
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def names(self) -> List[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def register(self, name: str, factory: LoopFactory) -> None:
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            raise ValueError(f"loop {name!r} is already running")
        self._running = True
        self._tasks[name] = asyncio.ensure_future(self._supervise(name, factory))
        logger.info("loop_registered", name=name)

    async def _supervise(self, name: str, factory: LoopFactory) -> None:
        policy = self._policy_factory()
        while self._running:
            try:
                await factory()
            except asyncio.CancelledError:
                logger.info("loop_cancelled", name=name)
                return
            except Exception as e:
                logger.error("loop_crashed", name=name, error=str(e), exc_info=True)
            else:
                logger.info("loop_finished", name=name)
                return
            if not self._running:
                return
            delay = policy.next_delay()
            logger.info("loop_restarting", name=name, delay=delay, attempt=policy.attempt)
            await asyncio.sleep(delay)

    async def stop_all(self) -> None:
        self._running = False
        pending = [task for task in self._tasks.values() if not task.done()]
        logger.info("task_manager_stopping", pending=len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        logger.info("task_manager_stopped")

    async def wait_all(self) -> None:
        """Block until every registered loop has ended."""
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)


def setup_signal_handlers(manager: TaskManager, loop: asyncio.AbstractEventLoop) -> None:
    """SIGINT/SIGTERM stop every loop so ``wait_all`` returns and shutdown runs."""
    def _shutdown() -> None:
        logger.info("shutdown_signal_received")
        loop.create_task(manager.stop_all())

    if sys.platform == "win32":
        # No add_signal_handler on the Proactor loop
        signal.signal(signal.SIGINT, lambda signum, frame: loop.call_soon_threadsafe(_shutdown))
        return
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown)
