import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from docpersist.core import telemetry
from docpersist.core.telemetry import TelemetryEvent
from docpersist.db.repositories.snapshot_repository import SnapshotRepository
from docpersist.domains.persistence.entities import page_id_from_name
from docpersist.infrastructure.cache.redis_cache import RedisCacheStore

logger = logging.getLogger(__name__)


class DocumentStore:
    """Чтение и запись состояния документа по схеме cache-aside"""

    def __init__(self, cache: RedisCacheStore, session_factory, document_prefix: str = "page:"):
        self.cache = cache
        self.session_factory = session_factory
        self.document_prefix = document_prefix

    async def fetch(self, document_name: str) -> Optional[bytes]:
        """Состояние документа: сначала кэш, затем последний снимок"""
        state = await self.cache.get(document_name)
        if state is not None:
            return state

        page_id = page_id_from_name(document_name, self.document_prefix)
        try:
            async with self.session_factory() as session:
                state = await SnapshotRepository(session).most_recent(page_id)
        except (SQLAlchemyError, OSError) as e:
            # недоступность журнала неотличима от отсутствия данных
            telemetry.emit(TelemetryEvent.SNAPSHOT_FALLBACK_ERROR, logging.ERROR,
                           document=document_name, error=str(e))
            return None

        if state is None:
            logger.info(f"No data found for {document_name}, starting fresh")
            return None

        await self.cache.set(document_name, state)
        telemetry.emit(TelemetryEvent.CACHE_RESTORED, document=document_name, size=len(state))
        return state

    async def store(self, document_name: str, state: bytes) -> bool:
        return await self.cache.set(document_name, state)
