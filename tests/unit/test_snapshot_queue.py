"""Тесты очереди снимков на Redis (fakeredis)."""

import json

import pytest

from docpersist.core.exceptions import JobLockLostError
from docpersist.domains.persistence.entities import SnapshotJob
from docpersist.infrastructure.queue.snapshot_queue import JOB_NAME, QueueOptions, SnapshotQueue


def _job(page_id="p1", state=b"\x00\x01state", by="alice"):
    return SnapshotJob(page_id=page_id, document_state=state, triggered_by=by, timestamp=1700000000123)


class TestEnqueueAndClaim:
    @pytest.mark.asyncio
    async def test_enqueue_records_payload(self, queue):
        job_id = await queue.enqueue(_job())
        record = await queue.get_job(job_id)

        payload = json.loads(record["data"])
        assert payload["pageId"] == "p1"
        assert payload["triggeredBy"] == "alice"
        assert payload["timestamp"] == 1700000000123
        assert record["name"] == JOB_NAME
        assert record["priority"] == "1"
        assert (await queue.counts())["wait"] == 1

    @pytest.mark.asyncio
    async def test_claim_returns_job_in_fifo_order(self, queue):
        first = await queue.enqueue(_job("p1"))
        second = await queue.enqueue(_job("p2"))

        claimed = await queue.claim()
        assert claimed.id == first
        assert claimed.job.page_id == "p1"
        assert claimed.job.document_state == b"\x00\x01state"
        assert claimed.attempts_made == 0
        assert (await queue.claim()).id == second
        assert (await queue.counts())["active"] == 2

    @pytest.mark.asyncio
    async def test_claim_empty(self, queue):
        assert await queue.claim() is None

    @pytest.mark.asyncio
    async def test_malformed_payload_is_parked(self, queue, queue_client):
        job_id = await queue.enqueue(_job())
        await queue_client.hset(f"snapshot:job:{job_id}", "data", "{not json")

        assert await queue.claim() is None
        counts = await queue.counts()
        assert counts["failed"] == 1
        assert counts["active"] == 0


class TestComplete:
    @pytest.mark.asyncio
    async def test_complete_moves_to_completed(self, queue):
        await queue.enqueue(_job())
        claimed = await queue.claim()
        await queue.complete(claimed, {"success": True})

        counts = await queue.counts()
        assert counts["active"] == 0
        assert counts["completed"] == 1
        record = await queue.get_job(claimed.id)
        assert json.loads(record["return_value"]) == {"success": True}

    @pytest.mark.asyncio
    async def test_completed_retention_by_count(self, queue_client, clock):
        queue = SnapshotQueue(queue_client, options=QueueOptions(keep_completed=2), clock=clock)
        ids = []
        for index in range(3):
            ids.append(await queue.enqueue(_job(f"p{index}")))
            claimed = await queue.claim()
            await queue.complete(claimed, {})
            clock.advance(10)

        assert (await queue.counts())["completed"] == 2
        assert await queue.get_job(ids[0]) is None
        assert await queue.get_job(ids[2]) is not None

    @pytest.mark.asyncio
    async def test_completed_retention_by_age(self, queue, clock):
        await queue.enqueue(_job("old"))
        old = await queue.claim()
        await queue.complete(old, {})

        clock.advance(3600 * 1000 + 1)
        await queue.enqueue(_job("new"))
        await queue.complete(await queue.claim(), {})

        assert (await queue.counts())["completed"] == 1
        assert await queue.get_job(old.id) is None


class TestRetry:
    @pytest.mark.asyncio
    async def test_exponential_backoff_then_failed(self, queue, clock):
        job_id = await queue.enqueue(_job())

        claimed = await queue.claim()
        assert await queue.fail(claimed, RuntimeError("db down")) is True
        assert await queue.claim() is None

        clock.advance(1999)
        assert await queue.claim() is None
        clock.advance(1)
        claimed = await queue.claim()
        assert claimed.id == job_id
        assert claimed.attempts_made == 1

        assert await queue.fail(claimed, RuntimeError("db down")) is True
        clock.advance(3999)
        assert await queue.claim() is None
        clock.advance(1)
        claimed = await queue.claim()
        assert claimed.attempts_made == 2

        assert await queue.fail(claimed, RuntimeError("still down")) is False
        counts = await queue.counts()
        assert counts["failed"] == 1
        assert counts["delayed"] == 0
        record = await queue.get_job(job_id)
        assert record["attempts_made"] == "3"
        assert "still down" in record["failed_reason"]

    def test_backoff_delay(self, queue):
        assert [queue.backoff_delay(n) for n in (1, 2, 3)] == [2000, 4000, 8000]

    @pytest.mark.asyncio
    async def test_failed_retention(self, queue_client, clock):
        queue = SnapshotQueue(queue_client, options=QueueOptions(attempts=1, keep_failed=1), clock=clock)
        first = await queue.enqueue(_job("p1"))
        await queue.fail(await queue.claim(), RuntimeError("boom"))
        clock.advance(5)
        await queue.enqueue(_job("p2"))
        await queue.fail(await queue.claim(), RuntimeError("boom"))

        assert (await queue.counts())["failed"] == 1
        assert await queue.get_job(first) is None


class TestStalledRecovery:
    @pytest.mark.asyncio
    async def test_job_without_lock_returns_to_wait(self, queue, queue_client):
        job_id = await queue.enqueue(_job())
        claimed = await queue.claim()
        assert await queue.recover_stalled() == 0

        await queue_client.delete(f"snapshot:lock:{claimed.id}")
        assert await queue.recover_stalled() == 1

        redelivered = await queue.claim()
        assert redelivered.id == job_id


class TestLockOwnership:
    async def _take_over(self, queue, queue_client):
        await queue.enqueue(_job())
        stale = await queue.claim()
        await queue_client.delete(f"snapshot:lock:{stale.id}")
        assert await queue.recover_stalled() == 1
        current = await queue.claim()
        assert current.id == stale.id
        assert current.token != stale.token
        return stale, current

    @pytest.mark.asyncio
    async def test_stale_owner_cannot_complete(self, queue, queue_client):
        stale, current = await self._take_over(queue, queue_client)

        with pytest.raises(JobLockLostError):
            await queue.complete(stale, {"success": True})
        assert (await queue.counts())["active"] == 1

        await queue.complete(current, {"success": True})
        counts = await queue.counts()
        assert counts["completed"] == 1
        assert counts["active"] == 0
        assert counts["delayed"] == 0

    @pytest.mark.asyncio
    async def test_stale_owner_cannot_fail(self, queue, queue_client):
        stale, current = await self._take_over(queue, queue_client)

        with pytest.raises(JobLockLostError):
            await queue.fail(stale, RuntimeError("late"))

        record = await queue.get_job(current.id)
        assert record["attempts_made"] == "0"
        counts = await queue.counts()
        assert counts["delayed"] == 0
        assert counts["failed"] == 0
        assert await queue_client.get(f"snapshot:lock:{current.id}") == current.token

    @pytest.mark.asyncio
    async def test_extend_lock(self, queue_client):
        queue = SnapshotQueue(queue_client, options=QueueOptions(lock_ms=1000))
        await queue.enqueue(_job())
        claimed = await queue.claim()
        await queue_client.pexpire(f"snapshot:lock:{claimed.id}", 100)

        assert await queue.extend_lock(claimed) is True
        assert await queue_client.pttl(f"snapshot:lock:{claimed.id}") > 100

        await queue_client.delete(f"snapshot:lock:{claimed.id}")
        assert await queue.extend_lock(claimed) is False
