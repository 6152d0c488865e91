"""Общие фикстуры тестов.

Реляционное хранилище: SQLite (aiosqlite) во временном каталоге,
Redis: fakeredis. Внешние сервисы не нужны.
"""

from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from pycrdt import Doc, XmlElement, XmlFragment, XmlText
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from docpersist.core.db import init_models
from docpersist.domains.persistence.decoding import NodeDecoder
from docpersist.domains.persistence.entities import SnapshotJob
from docpersist.domains.persistence.services import SnapshotService
from docpersist.infrastructure.cache.redis_cache import RedisCacheStore
from docpersist.infrastructure.queue.snapshot_queue import QueueOptions, SnapshotQueue
from docpersist.infrastructure.sync.engine import PycrdtSyncEngine


def make_document(*paragraphs: str, tag: str = "paragraph") -> bytes:
    """Состояние Tiptap-документа из набора абзацев"""
    doc = Doc()
    doc["default"] = fragment = XmlFragment()
    for text in paragraphs:
        fragment.children.append(XmlElement(tag, {}, [XmlText(text)]))
    return doc.get_update()


class FakeClock:
    """Управляемые миллисекундные часы"""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeSyncEngine(PycrdtSyncEngine):
    """Движок с заранее заданными состояниями документов"""

    def __init__(self, states: Optional[Dict[str, bytes]] = None):
        super().__init__()
        self.states = states or {}

    async def current_state(self, document_name: str) -> Optional[bytes]:
        return self.states.get(document_name)


class RecordingPersister:
    """Сохраняет задания в список вместо очереди"""
    mode = "queued"

    def __init__(self, error: Optional[Exception] = None):
        self.jobs: List[SnapshotJob] = []
        self.error = error

    async def persist(self, job: SnapshotJob) -> str:
        if self.error is not None:
            raise self.error
        self.jobs.append(job)
        return str(len(self.jobs))


@pytest.fixture
def sample_state() -> bytes:
    return make_document("Hello", "World")


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'docpersist.db'}")
    await init_models(engine)
    yield sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def redis_client():
    client = fake_aioredis.FakeRedis()
    await client.flushall()
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def queue_client():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    await client.flushall()
    yield client
    await client.aclose()


@pytest.fixture
def cache(redis_client) -> RedisCacheStore:
    return RedisCacheStore(redis_client)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(queue_client, clock) -> SnapshotQueue:
    return SnapshotQueue(queue_client, options=QueueOptions(), clock=clock)


@pytest.fixture
def sync_engine() -> PycrdtSyncEngine:
    return PycrdtSyncEngine()


@pytest.fixture
def snapshot_service(session_factory, sync_engine, cache) -> SnapshotService:
    return SnapshotService(session_factory, NodeDecoder(sync_engine), cache=cache)


@pytest.fixture
def keyed_service(session_factory, sync_engine, cache) -> SnapshotService:
    return SnapshotService(session_factory, NodeDecoder(sync_engine, identity="stable_key"), cache=cache)
