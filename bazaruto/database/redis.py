"""
Lightweight in-memory RedisJobStore replacement for local development.

Holds dead-lettered job records so the dispatcher and the /v1/jobs endpoints
work without a real Redis instance.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional


class RedisJobStore:
    def __init__(self, max_per_queue: int = 1000) -> None:
        self._dead: Dict[str, List[Dict[str, Any]]] = {}
        self._max_per_queue = max_per_queue
        self._lock = threading.Lock()

    def record_dead_job(self, record: Dict[str, Any]) -> None:
        queue = record.get("queue", "default")
        with self._lock:
            items = self._dead.setdefault(queue, [])
            items.append(dict(record))
            # Keep the newest records only.
            del items[: max(0, len(items) - self._max_per_queue)]

    def dead_jobs(self, queue: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        with self._lock:
            if queue is not None:
                items = list(self._dead.get(queue, []))
            else:
                items = [r for q in sorted(self._dead) for r in self._dead[q]]
        return items[-limit:]

    def clear_dead_jobs(self, queue: Optional[str] = None) -> None:
        with self._lock:
            if queue is None:
                self._dead.clear()
            else:
                self._dead.pop(queue, None)

    def ping(self) -> bool:
        return True
