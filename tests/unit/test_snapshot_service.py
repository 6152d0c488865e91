"""Тесты транзакции дифф + upsert + снимок."""

import pytest
from sqlalchemy.exc import OperationalError

from docpersist.core.exceptions import ProjectionError
from docpersist.db.repositories.node_repository import NodeRepository
from docpersist.db.repositories.snapshot_repository import SnapshotRepository
from docpersist.domains.persistence.decoding import nodes_to_document
from docpersist.domains.persistence.entities import NodeCandidate, SnapshotJob
from tests.conftest import make_document


def _keyed_state(engine, *ids, page_text=""):
    nodes = [
        NodeCandidate(id=node_id, type="paragraph", content={"text": f"{node_id}{page_text}"}, order=order)
        for order, node_id in enumerate(ids)
    ]
    return engine.encode(nodes_to_document(nodes))


async def _page_state(session_factory, page_id):
    async with session_factory() as session:
        nodes = NodeRepository(session)
        ordered = await nodes.list_ordered(page_id)
        versions = await nodes.count_versions(page_id)
        snapshots = await SnapshotRepository(session).count(page_id)
    return ordered, versions, snapshots


class TestProcess:
    @pytest.mark.asyncio
    async def test_first_snapshot_inserts_nodes_without_versions(self, snapshot_service, session_factory, sample_state):
        result = await snapshot_service.process(SnapshotJob("p1", sample_state, "alice", 1700000000123))

        assert (result.inserted, result.updated, result.deleted) == (2, 0, 0)
        nodes, versions, snapshots = await _page_state(session_factory, "p1")
        assert [node.content["text"] for node in nodes] == ["Hello", "World"]
        assert versions == 0
        assert snapshots == 1

    @pytest.mark.asyncio
    async def test_snapshot_record_fields(self, snapshot_service, session_factory, sample_state):
        await snapshot_service.process(SnapshotJob("p1", sample_state, "alice", 1700000000999))
        async with session_factory() as session:
            assert await SnapshotRepository(session).most_recent("p1") == sample_state

    @pytest.mark.asyncio
    async def test_diff_deletes_updates_inserts(self, keyed_service, sync_engine, session_factory):
        await keyed_service.process(SnapshotJob("p1", _keyed_state(sync_engine, "A", "B", "C"), "alice"))
        await keyed_service.process(SnapshotJob("other", _keyed_state(sync_engine, "B", "X"), "carol"))

        result = await keyed_service.process(SnapshotJob("p1", _keyed_state(sync_engine, "B", "C", "D"), "bob"))

        assert (result.inserted, result.updated, result.deleted) == (1, 2, 1)
        nodes, versions, snapshots = await _page_state(session_factory, "p1")
        assert [node.id for node in nodes] == ["B", "C", "D"]
        assert versions == 2
        assert snapshots == 2

        async with session_factory() as session:
            repo = NodeRepository(session)
            for node_id in ("B", "C"):
                history = await repo.list_versions("p1", node_id)
                assert len(history) == 1
                assert history[0].changed_by == "bob"
            assert await repo.list_versions("p1", "D") == []

        other_nodes, other_versions, other_snapshots = await _page_state(session_factory, "other")
        assert [node.id for node in other_nodes] == ["B", "X"]
        assert other_versions == 0
        assert other_snapshots == 1

    @pytest.mark.asyncio
    async def test_redelivery_does_not_duplicate_nodes(self, snapshot_service, session_factory, sample_state):
        job = SnapshotJob("p1", sample_state, "alice")
        await snapshot_service.process(job)
        await snapshot_service.process(job)

        nodes, versions, snapshots = await _page_state(session_factory, "p1")
        assert len(nodes) == 2
        assert versions == 2
        assert snapshots == 2

    @pytest.mark.asyncio
    async def test_order_matches_document_order(self, snapshot_service, session_factory):
        state = make_document("one", "two", "three", "four")
        await snapshot_service.process(SnapshotJob("p1", state, "alice"))

        nodes, _, _ = await _page_state(session_factory, "p1")
        assert [node.content["text"] for node in nodes] == ["one", "two", "three", "four"]
        assert [node.order for node in nodes] == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_failure_rolls_back_structural_changes(self, snapshot_service, session_factory, sample_state, monkeypatch):
        async def broken_append(self, *args, **kwargs):
            raise OperationalError("INSERT INTO document_snapshots", {}, ConnectionError("db down"))

        monkeypatch.setattr(SnapshotRepository, "append", broken_append)
        with pytest.raises(OperationalError):
            await snapshot_service.process(SnapshotJob("p1", sample_state, "alice"))

        nodes, versions, snapshots = await _page_state(session_factory, "p1")
        assert nodes == []
        assert snapshots == 0

    @pytest.mark.asyncio
    async def test_successful_write_refreshes_cache(self, snapshot_service, cache, sample_state):
        await snapshot_service.process(SnapshotJob("p1", sample_state, "alice"))
        assert await cache.get("page:p1") == sample_state

    @pytest.mark.asyncio
    async def test_invalid_tree_fails_before_transaction(self, keyed_service, sync_engine, session_factory):
        state = sync_engine.encode(nodes_to_document([
            NodeCandidate(id="a", type="p", content={}, order=0, parent_id="ghost"),
        ]))
        with pytest.raises(ProjectionError):
            await keyed_service.process(SnapshotJob("p1", state, "alice"))

        _, _, snapshots = await _page_state(session_factory, "p1")
        assert snapshots == 0


class TestSaveDirect:
    @pytest.mark.asyncio
    async def test_appends_snapshot_without_projection(self, snapshot_service, session_factory, cache, sample_state):
        snapshot_id = await snapshot_service.save_direct(SnapshotJob("p1", sample_state, "alice"))

        assert snapshot_id is not None
        nodes, _, snapshots = await _page_state(session_factory, "p1")
        assert nodes == []
        assert snapshots == 1
        assert await cache.get("page:p1") == sample_state
