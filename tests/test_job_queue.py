"""
Tests for the database-backed job queue.

Covers queue definitions, claim ordering, retry backoff, stale-job
redelivery and per-queue statistics.
"""
from datetime import timedelta
from uuid import uuid4

import pytest

from assetvault.lib.database import utcnow
from assetvault.services.job_queue import QUEUES, STATUSES, JobQueue, backoff_delay
from assetvault.services.lifecycle import JobFailure, JobKind

from conftest import JPEG_BYTES


class TestQueueDefinitions:

    @pytest.mark.parametrize("kind,queue_name,attempts,priority,delay", [
        (JobKind.INGEST, "asset-processing", 5, 10, 0),
        (JobKind.EXTRACT_METADATA, "metadata-extraction", 3, 8, 0),
        (JobKind.GENERATE_THUMBNAILS, "image-processing", 3, 5, 0),
        (JobKind.TRANSCODE, "video-processing", 2, 3, 1),
        (JobKind.CLEANUP, "cleanup", 5, 1, 30),
    ])
    def test_definitions(self, kind, queue_name, attempts, priority, delay):
        definition = QUEUES[kind]
        assert definition.queue_name == queue_name
        assert definition.max_attempts == attempts
        assert definition.priority == priority
        assert definition.delay_seconds == delay
        assert definition.backoff_seconds == 2

    def test_backoff_is_exponential_and_capped(self):
        definition = QUEUES[JobKind.INGEST]
        assert [backoff_delay(definition, n, 300) for n in (1, 2, 3, 4)] == [2, 4, 8, 16]
        assert backoff_delay(definition, 20, 300) == 300


@pytest.fixture
def asset_id(upload_asset):
    """A real asset for jobs to reference."""
    async def _make():
        return (await upload_asset(content=JPEG_BYTES + uuid4().bytes, finalize=False)).id
    return _make


class TestEnqueueAndClaim:

    @pytest.mark.asyncio
    async def test_enqueue_is_visible_after_commit(self, queue, tenants, asset_id):
        aid = await asset_id()
        job = await queue.enqueue(JobKind.INGEST, aid, tenants.org_id, {"asset_id": str(aid)})
        await queue.db.commit()

        assert job.status == "queued"
        assert job.attempts == 0
        assert job.max_attempts == 5
        assert job.logs[0]["message"] == "Job queued"

    @pytest.mark.asyncio
    async def test_claim_by_priority_then_age(self, queue, tenants, asset_id):
        aid = await asset_id()
        now = utcnow()
        thumbs = await queue.enqueue(JobKind.GENERATE_THUMBNAILS, aid, tenants.org_id, {}, now=now - timedelta(seconds=5))
        first_ingest = await queue.enqueue(JobKind.INGEST, aid, tenants.org_id, {}, now=now - timedelta(seconds=2))
        second_ingest = await queue.enqueue(JobKind.INGEST, aid, tenants.org_id, {}, now=now - timedelta(seconds=1))
        await queue.db.commit()

        claimed = [await queue.claim_next("w1", now=now) for _ in range(4)]

        assert [j.id for j in claimed[:3]] == [first_ingest.id, second_ingest.id, thumbs.id]
        assert claimed[3] is None
        assert claimed[0].status == "active"
        assert claimed[0].attempts == 1
        assert claimed[0].worker_id == "w1"

    @pytest.mark.asyncio
    async def test_delayed_jobs_not_claimable_early(self, queue, tenants, asset_id):
        aid = await asset_id()
        now = utcnow()
        job = await queue.enqueue(JobKind.CLEANUP, aid, tenants.org_id, {}, now=now)
        await queue.db.commit()

        assert await queue.claim_next("w1", now=now + timedelta(seconds=29)) is None
        claimed = await queue.claim_next("w1", now=now + timedelta(seconds=30))
        assert claimed.id == job.id

    @pytest.mark.asyncio
    async def test_claim_filtered_by_kind(self, queue, tenants, asset_id):
        aid = await asset_id()
        await queue.enqueue(JobKind.INGEST, aid, tenants.org_id, {})
        transcode = await queue.enqueue(JobKind.TRANSCODE, aid, tenants.org_id, {}, now=utcnow() - timedelta(seconds=5))
        await queue.db.commit()

        claimed = await queue.claim_next("w1", kinds=[JobKind.TRANSCODE])
        assert claimed.id == transcode.id

    @pytest.mark.asyncio
    async def test_claimed_job_not_claimed_twice(self, session_factory, tenants, asset_id):
        aid = await asset_id()
        async with session_factory() as session:
            await JobQueue(session).enqueue(JobKind.INGEST, aid, tenants.org_id, {})
            await session.commit()

        async with session_factory() as one, session_factory() as two:
            first = await JobQueue(one).claim_next("w1")
            second = await JobQueue(two).claim_next("w2")

        assert first is not None
        assert second is None


class TestSettling:

    @pytest.mark.asyncio
    async def test_failure_reschedules_with_backoff(self, queue, tenants, asset_id):
        aid = await asset_id()
        await queue.enqueue(JobKind.EXTRACT_METADATA, aid, tenants.org_id, {})
        await queue.db.commit()
        job = await queue.claim_next("w1")

        now = utcnow()
        exhausted = queue.register_failure(job, JobFailure("IOError", "disk full", "trace"), now=now)
        await queue.db.commit()

        assert exhausted is False
        assert job.status == "retrying"
        assert job.worker_id is None
        assert job.available_at == now + timedelta(seconds=2)
        assert job.error_message == "disk full"
        assert job.logs[-1]["level"] == "warn"

        assert await queue.claim_next("w1", now=now) is None
        again = await queue.claim_next("w1", now=now + timedelta(seconds=2))
        assert again.id == job.id
        assert again.attempts == 2

    @pytest.mark.asyncio
    async def test_failure_exhausts_after_max_attempts(self, queue, tenants, asset_id):
        aid = await asset_id()
        await queue.enqueue(JobKind.TRANSCODE, aid, tenants.org_id, {})
        await queue.db.commit()

        now = utcnow() + timedelta(seconds=1)
        results = []
        for attempt in range(2):
            job = await queue.claim_next("w1", now=now)
            results.append(queue.register_failure(job, JobFailure("FFmpegError", "bad stream"), now=now))
            await queue.db.commit()
            now += timedelta(seconds=10)

        assert results == [False, True]
        assert job.status == "failed"
        assert job.is_terminal
        assert job.completed_at is not None
        assert await queue.claim_next("w1", now=now + timedelta(hours=1)) is None

    @pytest.mark.asyncio
    async def test_complete(self, queue, tenants, asset_id):
        aid = await asset_id()
        await queue.enqueue(JobKind.INGEST, aid, tenants.org_id, {})
        await queue.db.commit()
        job = await queue.claim_next("w1")

        queue.complete(job, result={"size": 10})
        await queue.db.commit()

        stored = await queue.get_job(job.id)
        assert stored.status == "completed"
        assert stored.result == {"size": 10}
        assert stored.duration_ms is not None
        assert stored.to_dict()["logs"][-1]["message"] == "Job completed successfully"


class TestStaleJobsAndStats:

    @pytest.mark.asyncio
    async def test_requeue_stale(self, queue, tenants, asset_id):
        aid = await asset_id()
        await queue.enqueue(JobKind.INGEST, aid, tenants.org_id, {})
        await queue.db.commit()
        job = await queue.claim_next("w1")

        assert await queue.requeue_stale(now=utcnow()) == 0
        assert await queue.heartbeat(job.id, "w1") is True
        assert await queue.heartbeat(job.id, "w2") is False

        later = utcnow() + timedelta(seconds=301)
        assert await queue.requeue_stale(now=later) == 1

        stored = await queue.get_job(job.id)
        assert stored.status == "retrying"
        assert stored.worker_id is None
        redelivered = await queue.claim_next("w2", now=later)
        assert redelivered.id == job.id
        assert redelivered.attempts == 2

    @pytest.mark.asyncio
    async def test_stale_job_on_last_attempt_is_not_requeued(self, queue, tenants, asset_id):
        aid = await asset_id()
        await queue.enqueue(JobKind.TRANSCODE, aid, tenants.org_id, {})
        await queue.db.commit()

        now = utcnow() + timedelta(seconds=1)
        first = await queue.claim_next("w1", now=now)
        later = now + timedelta(seconds=301)
        assert await queue.list_lost(now=later) == []
        assert await queue.requeue_stale(now=later) == 1

        last = await queue.claim_next("w2", now=later)
        assert last.id == first.id
        assert (last.attempts, last.max_attempts) == (2, 2)

        much_later = later + timedelta(seconds=301)
        assert await queue.requeue_stale(now=much_later) == 0
        assert [j.id for j in await queue.list_lost(now=much_later)] == [last.id]
        stored = await queue.get_job(last.id)
        assert stored.status == "active"
        assert stored.worker_id == "w2"

    @pytest.mark.asyncio
    async def test_stats(self, queue, tenants, asset_id):
        aid = await asset_id()
        await queue.enqueue(JobKind.INGEST, aid, tenants.org_id, {})
        await queue.enqueue(JobKind.INGEST, aid, tenants.org_id, {})
        await queue.enqueue(JobKind.CLEANUP, aid, tenants.org_id, {})
        await queue.db.commit()
        await queue.claim_next("w1")

        stats = await queue.stats()

        assert set(stats) == {d.queue_name for d in QUEUES.values()}
        assert stats["asset-processing"] == {"queued": 1, "active": 1, "retrying": 0, "completed": 0, "failed": 0}
        assert stats["cleanup"]["queued"] == 1
        assert all(set(counts) == set(STATUSES) for counts in stats.values())

    @pytest.mark.asyncio
    async def test_list_jobs(self, queue, tenants, asset_id):
        aid, other = await asset_id(), await asset_id()
        await queue.enqueue(JobKind.INGEST, aid, tenants.org_id, {})
        await queue.enqueue(JobKind.CLEANUP, other, tenants.org_id, {})
        await queue.db.commit()

        assert len(await queue.list_jobs(asset_id=aid)) == 1
        assert [j.kind for j in await queue.list_jobs(kind="cleanup")] == ["cleanup"]
