import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from docpersist.core import telemetry
from docpersist.core.telemetry import TelemetryEvent
from docpersist.db.repositories.node_repository import NodeRepository
from docpersist.db.repositories.snapshot_repository import SnapshotRepository
from docpersist.domains.persistence.decoding import NodeDecoder
from docpersist.domains.persistence.entities import SnapshotJob, SnapshotResult, document_name_for
from docpersist.infrastructure.cache.redis_cache import RedisCacheStore

logger = logging.getLogger(__name__)


class SnapshotService:
    """Сохранение снимков и синхронизация структурной проекции"""

    def __init__(
        self,
        session_factory,
        decoder: NodeDecoder,
        cache: Optional[RedisCacheStore] = None,
        document_prefix: str = "page:"
    ):
        self.session_factory = session_factory
        self.decoder = decoder
        self.cache = cache
        self.document_prefix = document_prefix

    async def process(self, job: SnapshotJob) -> SnapshotResult:
        """Декодирование, дифф узлов и снимок в одной транзакции"""
        logger.info(f"Processing snapshot for page {job.page_id}...")
        candidates = self.decoder.decode(job.document_state)
        synced_at = datetime.now(timezone.utc)

        async with self.session_factory() as session:
            async with session.begin():
                nodes = NodeRepository(session)
                existing = await nodes.get_page_nodes(job.page_id)
                decoded_ids = {candidate.id for candidate in candidates}

                removed = [node for node_id, node in existing.items() if node_id not in decoded_ids]
                deleted = await nodes.delete_nodes(removed)

                inserted = updated = 0
                for candidate in candidates:
                    node = existing.get(candidate.id)
                    if node is None:
                        nodes.insert(job.page_id, candidate, synced_at)
                        inserted += 1
                    else:
                        nodes.update(node, candidate, synced_at, job.triggered_by)
                        updated += 1

                record = await SnapshotRepository(session).append(
                    job.page_id, job.document_state, job.version, job.triggered_by
                )
                snapshot_id = record.id

        result = SnapshotResult(
            page_id=job.page_id,
            snapshot_id=snapshot_id,
            inserted=inserted,
            updated=updated,
            deleted=deleted
        )
        logger.info(
            f"Snapshot completed for page {job.page_id}: "
            f"+{inserted} ~{updated} -{deleted} nodes, snapshot {snapshot_id}"
        )
        await self._refresh_cache(job)
        return result

    async def save_direct(self, job: SnapshotJob) -> int:
        """Синхронное сохранение снимка без обновления проекции"""
        # ошибка декодирования отклоняет только это событие
        self.decoder.engine.decode(job.document_state)

        async with self.session_factory() as session:
            async with session.begin():
                record = await SnapshotRepository(session).append(
                    job.page_id, job.document_state, job.version, job.triggered_by
                )
                snapshot_id = record.id

        await self._refresh_cache(job)
        return snapshot_id

    async def _refresh_cache(self, job: SnapshotJob) -> None:
        if self.cache is not None:
            await self.cache.set(document_name_for(job.page_id, self.document_prefix), job.document_state)


class SnapshotPersister(Protocol):
    mode: str

    async def persist(self, job: SnapshotJob) -> str: ...


class QueuedSnapshotPersister:
    """Асинхронный режим: задание уходит в очередь"""
    mode = "queued"

    def __init__(self, queue):
        self.queue = queue

    async def persist(self, job: SnapshotJob) -> str:
        job_id = await self.queue.enqueue(job)
        telemetry.emit(TelemetryEvent.SNAPSHOT_QUEUED, page=job.page_id, job=job_id,
                       triggered_by=job.triggered_by, size=len(job.document_state))
        return job_id


class DirectSnapshotPersister:
    """Прямой режим: снимок записывается сразу, проекция не трогается"""
    mode = "direct"

    def __init__(self, service: SnapshotService):
        self.service = service

    async def persist(self, job: SnapshotJob) -> str:
        snapshot_id = await self.service.save_direct(job)
        telemetry.emit(TelemetryEvent.SNAPSHOT_SAVED, page=job.page_id, snapshot=snapshot_id,
                       triggered_by=job.triggered_by, size=len(job.document_state))
        return str(snapshot_id)
