import asyncio
from typing import Any, Dict, Optional
from cardshop.__init__ import logger

SENTINEL = None  # queue sentinel; one per worker asks it to exit


class BaseWorker():
    """A fixed pool of consumer tasks reading one asyncio.Queue.

    Subclasses implement `task_executor(task, worker_name)`. A failing task is logged and
    counted; the worker moves on to the next one.
    """

    def __init__(self, workers_count: int = 2, max_queue_size: int = 1000, name: str = "worker"):
        self.name = name
        self.workers_count: int = max(1, workers_count)
        self.queue: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue(maxsize=max_queue_size)
        self.worker_loops: Dict[str, asyncio.Task] = {}
        self.processed = 0
        self.failed = 0

    async def __call__(self):
        """Start the pool. Calling it on a running pool does nothing."""
        if self.worker_loops:
            return
        for i in range(1, self.workers_count + 1):
            wname = f"{self.name}:{i}"
            self.worker_loops[wname] = asyncio.create_task(self._worker_loop(wname), name=wname)
        logger.info("[%s] %d workers started", self.name, self.workers_count)

    @property
    def running(self) -> bool:
        return bool(self.worker_loops)

    async def submit(self, task: Dict[str, Any]) -> None:
        await self.queue.put(task)

    async def shutdown(self, *, drain_first: bool = True, drain_timeout: float = 30.0, wait_timeout: float = 30.0):
        """Stop the pool, by default after the queued tasks are done."""
        if not self.worker_loops:
            return

        if drain_first:
            try:
                await asyncio.wait_for(self.queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("[%s] queue not drained after %.0fs, stopping anyway", self.name, drain_timeout)

        for _ in self.worker_loops:
            await self.queue.put(SENTINEL)

        done, pending = await asyncio.wait(list(self.worker_loops.values()), timeout=wait_timeout)
        for task in pending:
            logger.warning("[%s] cancelling worker that did not stop", task.get_name())
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self.worker_loops = {}
        logger.info("[%s] stopped (processed=%d failed=%d)", self.name, self.processed, self.failed)

    async def _worker_loop(self, wname: str):
        while True:
            task = await self.queue.get()
            try:
                if task is SENTINEL:
                    return
                await self.task_executor(task, wname)
                self.processed += 1
            except Exception:
                self.failed += 1
                logger.exception("[%s] task failed: %s", wname, task)
            finally:
                self.queue.task_done()

    async def task_executor(self, task: Dict[str, Any], wname: str) -> None:
        raise NotImplementedError
