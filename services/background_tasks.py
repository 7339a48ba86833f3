# services/background_tasks.py
"""Background task runner with observable outcomes"""
import asyncio
import logging
from dataclasses import asdict, is_dataclass
from typing import Any, Awaitable, Callable, Coroutine, Dict, Optional, Set, Tuple

from config import settings
from core.domain import new_id
from infrastructure.task_store import TaskStore

logger = logging.getLogger(settings.LOGGER_NAME)

CancelHook = Callable[[], Awaitable[Any]]


class BackgroundTaskRunner:
    """
    Runs coroutines as asyncio tasks (at most max_concurrency at once).

    Every submission gets a task id whose outcome is recorded in the TaskStore,
    so callers can poll for completion or failure. Call shutdown() on app exit.
    """

    def __init__(self, task_store: Optional[TaskStore] = None,
                 max_concurrency: int = settings.BACKGROUND_MAX_CONCURRENCY):
        self.task_store = task_store or TaskStore()
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._tasks: Set[asyncio.Task] = set()
        # Submitted coroutines that have not been awaited yet, by task id
        self._waiting: Dict[str, Tuple[Coroutine, Optional[CancelHook]]] = {}

    def submit(self, kind: str, subject_id: str, coro: Coroutine,
               on_cancel: Optional[CancelHook] = None) -> str:
        """
        Schedule coro on the running loop; returns the task id.

        on_cancel is awaited when the task is cancelled before coro started,
        since coro never gets the chance to clean up after itself then.
        """
        task_id = new_id()
        self.task_store.start(task_id, kind, subject_id)
        self._waiting[task_id] = (coro, on_cancel)
        task = asyncio.create_task(self._run(task_id), name=f"{kind}:{subject_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"[TASK] {task_id} submitted ({kind} {subject_id})")
        return task_id

    async def _run(self, task_id: str) -> None:
        try:
            async with self._semaphore:
                coro, _ = self._waiting.pop(task_id)
                result = await coro
        except asyncio.CancelledError:
            await self._abandon(task_id)
            raise
        except Exception as e:
            logger.exception(f"[TASK] {task_id} failed: {e}")
            self.task_store.fail(task_id, str(e))
            return
        self.task_store.complete(task_id, self._serialize(result))
        logger.info(f"[TASK] {task_id} completed")

    async def _abandon(self, task_id: str) -> None:
        entry = self._waiting.pop(task_id, None)
        if entry is not None:
            coro, on_cancel = entry
            coro.close()
            logger.warning(f"[TASK] {task_id} cancelled before it started")
            if on_cancel is not None:
                try:
                    await on_cancel()
                except Exception as e:
                    logger.error(f"[TASK] {task_id} cancel hook failed: {e}", exc_info=True)
        self.task_store.fail(task_id, "cancelled")

    @staticmethod
    def _serialize(result: Any) -> Any:
        if is_dataclass(result) and not isinstance(result, type):
            return asdict(result)
        return result

    def get(self, task_id: str):
        return self.task_store.get(task_id)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self) -> None:
        """Wait until every submitted task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Wait for running tasks, cancelling whatever is left after timeout."""
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} background tasks...")
            _, still_running = await asyncio.wait(list(self._tasks), timeout=timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
        # Tasks cancelled before their first step never reach _run's handler
        for task_id in list(self._waiting):
            await self._abandon(task_id)
