"""Кэш бинарных состояний документов в Redis.

Кэш никогда не является источником истины: любые ошибки соединения
трактуются как промах при чтении и как пропуск при записи.
"""

import logging
from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from docpersist.core import telemetry
from docpersist.core.telemetry import TelemetryEvent

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


class RedisCacheStore:
    """Кэш состояний документов с фиксированным TTL"""

    def __init__(self, client: "aioredis.Redis", prefix: str = "ydoc_v2", ttl: int = DEFAULT_TTL_SECONDS):
        self._client = client
        self.prefix = prefix
        self.ttl = ttl

    @classmethod
    def from_url(cls, redis_url: str, prefix: str = "ydoc_v2", ttl: int = DEFAULT_TTL_SECONDS) -> "RedisCacheStore":
        client = aioredis.Redis.from_url(redis_url)
        return cls(client, prefix=prefix, ttl=ttl)

    def key(self, document_name: str) -> str:
        return f"{self.prefix}:{document_name}"

    async def get(self, document_name: str) -> Optional[bytes]:
        """Чтение состояния; ошибка Redis равносильна промаху"""
        try:
            data = await self._client.get(self.key(document_name))
        except (RedisError, OSError) as e:
            telemetry.emit(TelemetryEvent.CACHE_ERROR, logging.WARNING,
                           document=document_name, operation="get", error=str(e))
            return None

        if data is None:
            telemetry.emit(TelemetryEvent.CACHE_MISS, logging.DEBUG, document=document_name)
            return None

        telemetry.emit(TelemetryEvent.CACHE_HIT, logging.DEBUG, document=document_name, size=len(data))
        return bytes(data)

    async def set(self, document_name: str, state: bytes, ttl: Optional[int] = None) -> bool:
        """Запись состояния с TTL; ошибки только логируются"""
        try:
            await self._client.set(self.key(document_name), bytes(state), ex=ttl or self.ttl)
        except (RedisError, OSError) as e:
            telemetry.emit(TelemetryEvent.CACHE_ERROR, logging.WARNING,
                           document=document_name, operation="set", error=str(e))
            return False

        logger.debug(f"Cached {document_name} ({len(state)} bytes, TTL {ttl or self.ttl}s)")
        return True

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        await self._client.aclose()
