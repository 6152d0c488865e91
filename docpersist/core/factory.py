from docpersist.core.config import Settings
from docpersist.core.db import SessionLocal
from docpersist.domains.persistence.decoding import NodeDecoder
from docpersist.domains.persistence.document_store import DocumentStore
from docpersist.domains.persistence.lifecycle import LifecycleHandler
from docpersist.domains.persistence.services import (
    SnapshotService, QueuedSnapshotPersister, DirectSnapshotPersister
)
from docpersist.domains.persistence.sessions import SessionRegistry
from docpersist.domains.persistence.worker import SnapshotWorker
from docpersist.infrastructure.cache.redis_cache import RedisCacheStore
from docpersist.infrastructure.queue.rate_limiter import TokenBucket
from docpersist.infrastructure.queue.snapshot_queue import SnapshotQueue, QueueOptions
from docpersist.infrastructure.sync.engine import PycrdtSyncEngine


def build_cache(settings: Settings) -> RedisCacheStore:
    return RedisCacheStore.from_url(settings.redis_url, prefix=settings.cache_key_prefix, ttl=settings.cache_ttl_seconds)


def build_queue(settings: Settings) -> SnapshotQueue:
    return SnapshotQueue.from_url(settings.broker_url, name=settings.queue_name, options=QueueOptions.from_settings(settings))


def build_snapshot_service(settings: Settings, engine, cache: RedisCacheStore, session_factory=SessionLocal) -> SnapshotService:
    decoder = NodeDecoder(engine, identity=settings.node_identity, id_length=settings.node_id_length)
    return SnapshotService(session_factory, decoder, cache=cache, document_prefix=settings.document_prefix)


def build_engine(settings: Settings, cache: RedisCacheStore, session_factory=SessionLocal) -> PycrdtSyncEngine:
    store = DocumentStore(cache, session_factory, document_prefix=settings.document_prefix)
    return PycrdtSyncEngine(store)


def build_lifecycle_handler(settings: Settings, engine, service: SnapshotService, queue=None) -> LifecycleHandler:
    """Выбор режима сохранения действует на всё развертывание"""
    if settings.async_snapshots:
        persister = QueuedSnapshotPersister(queue)
    else:
        persister = DirectSnapshotPersister(service)

    return LifecycleHandler(
        SessionRegistry(),
        engine,
        persister,
        snapshot_interval=settings.snapshot_interval_ms / 1000
    )


def build_worker(settings: Settings, queue: SnapshotQueue, service: SnapshotService) -> SnapshotWorker:
    return SnapshotWorker(
        queue,
        service,
        concurrency=settings.worker_concurrency,
        limiter=TokenBucket(settings.limiter_max, settings.limiter_duration_ms / 1000),
        poll_interval=settings.queue_poll_interval_ms / 1000
    )
