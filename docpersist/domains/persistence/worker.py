import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from docpersist.core import telemetry
from docpersist.core.exceptions import JobLockLostError
from docpersist.core.telemetry import TelemetryEvent
from docpersist.domains.persistence.services import SnapshotService
from docpersist.infrastructure.queue.rate_limiter import TokenBucket
from docpersist.infrastructure.queue.snapshot_queue import QueuedJob, SnapshotQueue

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    """Результат одной попытки обработки задания"""
    job_id: str
    page_id: str
    success: bool
    will_retry: bool = False
    error: Optional[str] = None
    lock_lost: bool = False


class SnapshotWorker:
    """Пул обработчиков очереди снимков"""

    def __init__(
        self,
        queue: SnapshotQueue,
        service: SnapshotService,
        concurrency: int = 5,
        limiter: Optional[TokenBucket] = None,
        poll_interval: float = 0.5,
        stalled_check_interval: float = 30.0
    ):
        self.queue = queue
        self.service = service
        self.concurrency = concurrency
        self.limiter = limiter or TokenBucket(10, 1.0)
        self.poll_interval = poll_interval
        self.stalled_check_interval = stalled_check_interval
        self._tasks: List[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def process_next(self) -> Optional[JobOutcome]:
        """Обработка одного задания; None, если очередь пуста"""
        # лимит ожидается до взятия блокировки
        await self.limiter.acquire()
        try:
            queued = await self.queue.claim()
        except Exception:
            self.limiter.release()
            raise
        if queued is None:
            self.limiter.release()
            return None

        page_id = queued.job.page_id
        try:
            result = await self._process_locked(queued)
        except Exception as e:
            logger.error(f"Snapshot failed for page {page_id} (job {queued.id}): {e}")
            try:
                will_retry = await self.queue.fail(queued, e)
            except JobLockLostError as lost:
                logger.warning(f"Job {queued.id} was taken over before failing: {lost}")
                return JobOutcome(queued.id, page_id, success=False, error=str(e), lock_lost=True)
            return JobOutcome(queued.id, page_id, success=False, will_retry=will_retry, error=str(e))

        try:
            await self.queue.complete(queued, result.to_dict())
        except JobLockLostError as lost:
            # задание завершит новый владелец
            logger.warning(f"Job {queued.id} was taken over before completing: {lost}")
            return JobOutcome(queued.id, page_id, success=True, lock_lost=True)

        telemetry.emit(TelemetryEvent.JOB_COMPLETED, job=queued.id, page=page_id,
                       attempts=queued.attempts_made + 1, nodes=result.nodes_processed)
        return JobOutcome(queued.id, page_id, success=True)

    async def _process_locked(self, queued: QueuedJob):
        heartbeat = asyncio.create_task(self._keep_lock(queued))
        try:
            return await self.service.process(queued.job)
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)

    async def _keep_lock(self, queued: QueuedJob) -> None:
        interval = self.queue.options.lock_ms / 3000
        while True:
            await asyncio.sleep(interval)
            try:
                extended = await self.queue.extend_lock(queued)
            except Exception:
                logger.exception(f"Cannot extend lock for job {queued.id}")
                continue
            if not extended:
                logger.warning(f"Lost processing lock for job {queued.id}")
                return

    async def _run_slot(self, slot: int) -> None:
        while self._running:
            try:
                outcome = await self.process_next()
            except asyncio.CancelledError:
                raise
            except Exception:
                # ошибка брокера не должна останавливать слот
                logger.exception(f"Worker slot {slot} failed to process a job")
                outcome = None

            if outcome is None:
                await asyncio.sleep(self.poll_interval)

    async def _watch_stalled(self) -> None:
        while self._running:
            await asyncio.sleep(self.stalled_check_interval)
            try:
                await self.queue.recover_stalled()
            except Exception:
                logger.exception("Stalled job recovery failed")

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        recovered = await self.queue.recover_stalled()
        if recovered:
            logger.warning(f"Recovered {recovered} stalled jobs")

        self._tasks = [asyncio.create_task(self._run_slot(slot)) for slot in range(self.concurrency)]
        self._tasks.append(asyncio.create_task(self._watch_stalled()))
        logger.info(f"Snapshot worker started with {self.concurrency} slots")

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Snapshot worker stopped")
