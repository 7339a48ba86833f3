# infrastructure/task_store.py
"""Simple in-memory background task tracking with size limit"""
from typing import Any, Dict, Optional
from datetime import datetime, timezone

from core.domain import TaskStatus


class TaskStore:
    """
    In-memory record of background task outcomes (polling endpoint).

    Auto-cleanup above MAX_ENTRIES (keeps the newest KEEP_ENTRIES). Lost on
    server restart. Usage: start() -> complete()/fail(). Client polls get().
    """
    MAX_ENTRIES = 500
    KEEP_ENTRIES = 250

    def __init__(self):
        self._tasks: Dict[str, Dict[str, Any]] = {}

    def _cleanup_if_full(self):
        """Remove oldest finished entries when limit reached"""
        if len(self._tasks) < self.MAX_ENTRIES:
            return

        finished = sorted(
            (item for item in self._tasks.items() if item[1]["status"] != TaskStatus.RUNNING),
            key=lambda x: x[1]["created_at"],
        )
        to_remove = len(self._tasks) - self.KEEP_ENTRIES
        for task_id, _ in finished[:to_remove]:
            del self._tasks[task_id]

    def start(self, task_id: str, kind: str, subject_id: str) -> None:
        self._cleanup_if_full()
        self._tasks[task_id] = {
            "task_id": task_id,
            "kind": kind,
            "subject_id": subject_id,
            "status": TaskStatus.RUNNING,
            "result": None,
            "error": None,
            "created_at": datetime.now(timezone.utc),
            "finished_at": None,
        }

    def complete(self, task_id: str, result: Any = None) -> None:
        if task_id in self._tasks:
            self._tasks[task_id].update({
                "status": TaskStatus.COMPLETED,
                "result": result,
                "finished_at": datetime.now(timezone.utc),
            })

    def fail(self, task_id: str, error: str) -> None:
        if task_id in self._tasks:
            self._tasks[task_id].update({
                "status": TaskStatus.FAILED,
                "error": error,
                "finished_at": datetime.now(timezone.utc),
            })

    def get(self, task_id: str) -> Optional[Dict[str, Any]]:
        record = self._tasks.get(task_id)
        return dict(record) if record else None

    def remove(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)

    def __len__(self) -> int:
        return len(self._tasks)
