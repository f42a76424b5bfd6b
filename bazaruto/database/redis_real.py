"""
Real Redis-backed dead-letter store for production when REDIS_URL is set.
Implements the same interface as bazaruto.database.redis (in-memory stub).
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import redis


class RedisJobStore:
    """
    Dead-lettered jobs live in one list per queue: ``{prefix}:{queue}``.
    """

    def __init__(self, url: str, key_prefix: str = "dead_jobs", max_per_queue: int = 1000) -> None:
        self._client = redis.from_url(url, decode_responses=True)
        self._prefix = key_prefix
        self._max_per_queue = max_per_queue

    def _key(self, queue: str) -> str:
        return f"{self._prefix}:{queue}"

    def record_dead_job(self, record: Dict[str, Any]) -> None:
        key = self._key(record.get("queue", "default"))
        payload = json.dumps(record, default=str)
        pipe = self._client.pipeline()
        pipe.rpush(key, payload)
        pipe.ltrim(key, -self._max_per_queue, -1)
        pipe.execute()

    def _read(self, key: str, limit: int) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        for raw in self._client.lrange(key, -limit, -1):
            try:
                items.append(json.loads(raw))
            except json.JSONDecodeError:
                continue
        return items

    def dead_jobs(self, queue: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        if queue is not None:
            return self._read(self._key(queue), limit)
        items: List[Dict[str, Any]] = []
        for key in sorted(self._client.scan_iter(match=f"{self._prefix}:*")):
            items.extend(self._read(key, limit))
        return items[-limit:]

    def clear_dead_jobs(self, queue: Optional[str] = None) -> None:
        if queue is not None:
            self._client.delete(self._key(queue))
            return
        keys = list(self._client.scan_iter(match=f"{self._prefix}:*"))
        if keys:
            self._client.delete(*keys)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False
