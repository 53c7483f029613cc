from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Optional

from takehome.core.config import settings

logger = logging.getLogger("interviews")


class EphemeralStore:
    """Short-lived JSON records backed by Redis when available.

    Falls back to an in-process dict with TTL if REDIS_URL is not configured
    or Redis is unreachable. Callers must be able to rebuild any record from
    the database; nothing stored here is authoritative.
    """

    def __init__(self, redis_url: Optional[str] = None) -> None:
        self._mem: dict[str, tuple[float, str]] = {}
        self._redis = None
        if redis_url:
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)

    def _redis_failed(self, op: str, exc: Exception) -> None:
        logger.warning("Redis %s failed, using in-memory store", op, extra={"error": str(exc)})

    async def put(self, key: str, data: dict[str, Any], ttl_seconds: int = 90) -> None:
        payload = json.dumps(data, ensure_ascii=False)
        if self._redis is not None:
            try:
                await self._redis.set(key, payload, ex=ttl_seconds)
                return
            except Exception as exc:
                self._redis_failed("set", exc)
        self._mem[key] = (time.monotonic() + ttl_seconds, payload)

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        if self._redis is not None:
            try:
                val = await self._redis.get(key)
                return json.loads(val) if val else None
            except Exception as exc:
                self._redis_failed("get", exc)
        entry = self._mem.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if expires_at <= time.monotonic():
            self._mem.pop(key, None)
            return None
        return json.loads(raw)

    async def delete(self, key: str) -> None:
        if self._redis is not None:
            try:
                await self._redis.delete(key)
            except Exception as exc:
                self._redis_failed("delete", exc)
        self._mem.pop(key, None)

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex


store = EphemeralStore(settings.redis_url)
