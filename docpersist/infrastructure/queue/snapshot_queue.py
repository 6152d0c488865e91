"""Очередь заданий на сохранение снимков в Redis.

Ключи под именем очереди (по умолчанию "snapshot"):
- {name}:id          счётчик идентификаторов заданий
- {name}:job:{id}    хеш с данными, попытками и отметками времени
- {name}:wait        список готовых заданий (LPUSH на вход, выборка справа)
- {name}:active      список заданий в обработке
- {name}:delayed     zset заданий, ждущих повтора (score: время готовности, мс)
- {name}:completed   zset завершённых заданий (score: время завершения, мс)
- {name}:failed      zset исчерпавших попытки заданий (score: время завершения, мс)
- {name}:lock:{id}   блокировка обработки с токеном владельца

Доставка "хотя бы один раз": задание без блокировки считается зависшим
и через recover_stalled() возвращается в список ожидания.
"""

import binascii
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from redis import asyncio as aioredis
from redis.exceptions import WatchError

from docpersist.core import telemetry
from docpersist.core.exceptions import JobLockLostError
from docpersist.core.telemetry import TelemetryEvent
from docpersist.domains.persistence.entities import SnapshotJob

logger = logging.getLogger(__name__)

JOB_NAME = "process-snapshot"


@dataclass
class QueueOptions:
    """Параметры, общие для всех заданий очереди"""
    attempts: int = 3
    backoff_ms: int = 2000
    priority: int = 1
    keep_completed: int = 100
    completed_age_seconds: int = 3600
    keep_failed: int = 500
    failed_age_seconds: int = 86400
    lock_ms: int = 30000

    @classmethod
    def from_settings(cls, settings) -> "QueueOptions":
        return cls(
            attempts=settings.queue_attempts,
            backoff_ms=settings.queue_backoff_ms,
            priority=settings.queue_priority,
            keep_completed=settings.queue_keep_completed,
            completed_age_seconds=settings.queue_completed_age_seconds,
            keep_failed=settings.queue_keep_failed,
            failed_age_seconds=settings.queue_failed_age_seconds,
            lock_ms=settings.queue_lock_ms,
        )


@dataclass
class QueuedJob:
    """Задание, взятое обработчиком из очереди"""
    id: str
    job: SnapshotJob
    attempts_made: int = 0
    name: str = JOB_NAME
    token: str = ""


def _now_ms() -> int:
    return int(time.time() * 1000)


class SnapshotQueue:
    """Надёжная очередь между источниками снимков и пулом обработчиков"""

    def __init__(
        self,
        client: "aioredis.Redis",
        name: str = "snapshot",
        options: Optional[QueueOptions] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        # клиент должен быть создан с decode_responses=True
        self._client = client
        self.name = name
        self.options = options or QueueOptions()
        self._now_ms = clock or _now_ms

    @classmethod
    def from_url(cls, redis_url: str, name: str = "snapshot", options: Optional[QueueOptions] = None) -> "SnapshotQueue":
        client = aioredis.Redis.from_url(redis_url, decode_responses=True)
        return cls(client, name=name, options=options)

    def _key(self, *parts: str) -> str:
        return ":".join((self.name,) + parts)

    def backoff_delay(self, attempts_made: int) -> int:
        """Экспоненциальная задержка (мс) после заданного числа неудачных попыток"""
        return self.options.backoff_ms * (2 ** max(attempts_made - 1, 0))

    async def enqueue(self, job: SnapshotJob) -> str:
        """Постановка задания; возврат сразу после записи в Redis"""
        job_id = str(await self._client.incr(self._key("id")))
        record = {
            "name": JOB_NAME,
            "data": json.dumps(job.to_payload()),
            "priority": self.options.priority,
            "attempts_made": 0,
            "timestamp": self._now_ms(),
        }

        async with self._client.pipeline(transaction=True) as pipe:
            pipe.hset(self._key("job", job_id), mapping=record)
            pipe.lpush(self._key("wait"), job_id)
            await pipe.execute()

        logger.debug(f"Queued job {job_id} for page {job.page_id}")
        return job_id

    async def claim(self) -> Optional[QueuedJob]:
        """Следующее готовое задание с блокировкой обработки; None, если ждать нечего"""
        await self.promote_delayed()

        while True:
            job_id = await self._client.lmove(self._key("wait"), self._key("active"), "RIGHT", "LEFT")
            if job_id is None:
                return None

            job_key = self._key("job", job_id)
            record = await self._client.hgetall(job_key)
            if not record:
                # хеш уже удалён политикой хранения
                await self._client.lrem(self._key("active"), 1, job_id)
                continue

            try:
                job = SnapshotJob.from_payload(json.loads(record["data"]))
            except (KeyError, ValueError, binascii.Error) as e:
                logger.error(f"Job {job_id} has malformed payload: {e}")
                await self._park_failed(job_id, f"Malformed payload: {e}")
                continue

            token = uuid.uuid4().hex
            await self._client.set(self._key("lock", job_id), token, px=self.options.lock_ms)
            await self._client.hset(job_key, "processed_on", self._now_ms())
            return QueuedJob(
                id=job_id,
                job=job,
                attempts_made=int(record.get("attempts_made", 0)),
                name=record.get("name", JOB_NAME),
                token=token,
            )

    async def extend_lock(self, queued: QueuedJob) -> bool:
        """Продление блокировки; False, если задание уже не принадлежит владельцу"""
        lock_key = self._key("lock", queued.id)
        async with self._client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(lock_key)
                if await pipe.get(lock_key) != queued.token:
                    return False
                pipe.multi()
                pipe.pexpire(lock_key, self.options.lock_ms)
                await pipe.execute()
            except WatchError:
                return False
        return True

    async def complete(self, queued: QueuedJob, result: Dict[str, Any]) -> None:
        """Перевод задания в завершённые; JobLockLostError, если блокировка потеряна"""
        lock_key = self._key("lock", queued.id)
        now = self._now_ms()
        async with self._client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(lock_key)
                await self._check_owner(pipe, queued)
                pipe.multi()
                pipe.lrem(self._key("active"), 1, queued.id)
                pipe.delete(lock_key)
                pipe.zadd(self._key("completed"), {queued.id: now})
                pipe.hset(self._key("job", queued.id), mapping={
                    "finished_on": now,
                    "return_value": json.dumps(result),
                })
                await pipe.execute()
            except WatchError as e:
                raise JobLockLostError(f"Job {queued.id} lock changed while completing") from e

        await self._trim(self._key("completed"), self.options.keep_completed, self.options.completed_age_seconds)

    async def fail(self, queued: QueuedJob, error: BaseException) -> bool:
        """Учёт неудачной попытки.

        True, если назначен повтор; False, если попытки исчерпаны и задание
        перенесено в неудачные. JobLockLostError, если блокировка потеряна.
        """
        lock_key = self._key("lock", queued.id)
        job_key = self._key("job", queued.id)
        reason = f"{type(error).__name__}: {error}"
        now = self._now_ms()

        async with self._client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(lock_key)
                await self._check_owner(pipe, queued)
                attempts = int(await pipe.hget(job_key, "attempts_made") or 0) + 1
                will_retry = attempts < self.options.attempts
                delay = self.backoff_delay(attempts)

                pipe.multi()
                pipe.hset(job_key, "attempts_made", attempts)
                if will_retry:
                    pipe.lrem(self._key("active"), 1, queued.id)
                    pipe.delete(lock_key)
                    pipe.zadd(self._key("delayed"), {queued.id: now + delay})
                    pipe.hset(job_key, "failed_reason", reason)
                else:
                    self._stage_failed(pipe, queued.id, reason, now)
                await pipe.execute()
            except WatchError as e:
                raise JobLockLostError(f"Job {queued.id} lock changed while failing") from e

        queued.attempts_made = attempts
        if will_retry:
            telemetry.emit(TelemetryEvent.JOB_RETRY, logging.WARNING, job=queued.id,
                           page=queued.job.page_id, attempt=attempts, delay_ms=delay, error=reason)
            return True

        await self._trim(self._key("failed"), self.options.keep_failed, self.options.failed_age_seconds)
        telemetry.emit(TelemetryEvent.JOB_FAILED, logging.ERROR, job=queued.id,
                       page=queued.job.page_id, attempts=attempts, error=reason)
        return False

    async def _check_owner(self, pipe, queued: QueuedJob) -> None:
        if await pipe.get(self._key("lock", queued.id)) != queued.token:
            raise JobLockLostError(f"Job {queued.id} is no longer owned by this worker")

    def _stage_failed(self, pipe, job_id: str, reason: str, now: int) -> None:
        pipe.lrem(self._key("active"), 1, job_id)
        pipe.delete(self._key("lock", job_id))
        pipe.zadd(self._key("failed"), {job_id: now})
        pipe.hset(self._key("job", job_id), mapping={"failed_reason": reason, "finished_on": now})

    async def _park_failed(self, job_id: str, reason: str) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            self._stage_failed(pipe, job_id, reason, self._now_ms())
            await pipe.execute()

        await self._trim(self._key("failed"), self.options.keep_failed, self.options.failed_age_seconds)

    async def promote_delayed(self) -> int:
        """Возврат в ожидание заданий, у которых истекла задержка"""
        due = await self._client.zrangebyscore(self._key("delayed"), "-inf", self._now_ms())
        promoted = 0
        for job_id in due:
            # zrem определяет, кто из обработчиков переносит задание
            if await self._client.zrem(self._key("delayed"), job_id):
                await self._client.lpush(self._key("wait"), job_id)
                promoted += 1
        return promoted

    async def recover_stalled(self) -> int:
        """Возврат в ожидание активных заданий с истёкшей блокировкой"""
        recovered = 0
        for job_id in await self._client.lrange(self._key("active"), 0, -1):
            if await self._client.exists(self._key("lock", job_id)):
                continue
            if await self._client.lrem(self._key("active"), 1, job_id):
                await self._client.lpush(self._key("wait"), job_id)
                recovered += 1
                telemetry.emit(TelemetryEvent.JOB_RECOVERED, logging.WARNING, job=job_id)
        return recovered

    async def _trim(self, key: str, keep: int, max_age_seconds: int) -> None:
        """Удаление записей старше max_age_seconds, затем всех, кроме keep последних"""
        cutoff = self._now_ms() - max_age_seconds * 1000
        expired: List[str] = await self._client.zrangebyscore(key, "-inf", cutoff)
        await self._purge(key, expired)

        excess = await self._client.zcard(key) - keep
        if excess > 0:
            await self._purge(key, await self._client.zrange(key, 0, excess - 1))

    async def _purge(self, key: str, job_ids: List[str]) -> None:
        if not job_ids:
            return
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zrem(key, *job_ids)
            pipe.delete(*[self._key("job", job_id) for job_id in job_ids])
            await pipe.execute()

    async def get_job(self, job_id: str) -> Optional[Dict[str, str]]:
        record = await self._client.hgetall(self._key("job", job_id))
        return record or None

    async def counts(self) -> Dict[str, int]:
        """Число заданий в каждом состоянии"""
        return {
            "wait": await self._client.llen(self._key("wait")),
            "active": await self._client.llen(self._key("active")),
            "delayed": await self._client.zcard(self._key("delayed")),
            "completed": await self._client.zcard(self._key("completed")),
            "failed": await self._client.zcard(self._key("failed")),
        }

    async def close(self) -> None:
        await self._client.aclose()
