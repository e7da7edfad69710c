"""Prahari — Redis Alert Stream & Score Snapshot, with In-Memory Fallback."""

import json
import logging
from collections import deque
from typing import Optional

logger = logging.getLogger("prahari.redis")


class InMemoryStore:
    """Fallback alert stream and score snapshot when Redis is unavailable."""

    def __init__(self, maxlen: int = 5000):
        self._events: deque = deque(maxlen=maxlen)
        self._scores: Optional[list[dict]] = None

    def publish(self, event_data: dict):
        self._events.append(event_data)

    def get_recent(self, count: int = 100) -> list[dict]:
        items = list(self._events)
        return items[-count:]

    def save_scores(self, scores: list[dict]):
        self._scores = list(scores)

    def load_scores(self) -> Optional[list[dict]]:
        return self._scores


class RedisStreamManager:
    """Publishes alerts to a Redis stream and keeps the latest CII snapshot."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        stream_key: str = "prahari:alerts",
        scores_key: str = "prahari:cii:scores",
        use_redis: bool = False,
    ):
        self._redis_url = redis_url
        self._stream_key = stream_key
        self._scores_key = scores_key
        self._use_redis = use_redis
        self._redis = None
        self._memory = InMemoryStore()

    @property
    def using_redis(self) -> bool:
        return self._redis is not None

    async def connect(self):
        if self._use_redis:
            try:
                import redis.asyncio as aioredis
                self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
                await self._redis.ping()
                logger.info("[redis] Connected to %s", self._redis_url)
            except Exception as e:
                logger.warning("[redis] Unavailable (%s), falling back to in-memory store", e)
                self._redis = None
                self._use_redis = False
        else:
            logger.info("[redis] Using in-memory alert stream (Redis disabled)")

    async def publish_alert(self, alert: dict):
        """Append an alert to the stream."""
        alert_json = json.dumps(alert, default=str)

        if self._redis:
            try:
                await self._redis.xadd(self._stream_key, {"data": alert_json}, maxlen=5000)
                return
            except Exception as e:
                logger.error("[redis] Publish error: %s", e)
        self._memory.publish(alert)

    async def publish_alerts(self, alerts: list[dict]):
        for alert in alerts:
            await self.publish_alert(alert)

    async def get_recent_alerts(self, count: int = 200) -> list[dict]:
        """Recent stream entries, oldest first."""
        if self._redis:
            try:
                entries = await self._redis.xrevrange(self._stream_key, count=count)
                return [json.loads(data["data"]) for _id, data in reversed(entries)]
            except Exception as e:
                logger.warning("[redis] Read error, serving in-memory stream: %s", e)
        return self._memory.get_recent(count)

    async def save_scores(self, scores: list[dict]):
        """Overwrite the cached CII snapshot."""
        if self._redis:
            try:
                await self._redis.set(self._scores_key, json.dumps(scores, default=str))
                return
            except Exception as e:
                logger.error("[redis] Score snapshot write error: %s", e)
        self._memory.save_scores(scores)

    async def load_scores(self) -> Optional[list[dict]]:
        """Cached CII snapshot from a previous run, if any."""
        if self._redis:
            try:
                raw = await self._redis.get(self._scores_key)
                return json.loads(raw) if raw else None
            except Exception as e:
                logger.warning("[redis] Score snapshot read error: %s", e)
        return self._memory.load_scores()

    async def close(self):
        if self._redis:
            await self._redis.aclose()
