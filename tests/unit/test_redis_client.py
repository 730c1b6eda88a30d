"""
Unit tests for Redis client wrapper.

Tests Redis operations using fakeredis for isolated testing.
"""

import json

import pytest
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import fakeredis
from redis.exceptions import ConnectionError, ResponseError

from notifier.models.jobs import QueuedJob
from notifier.services.redis_client import GITHUB_BOT_NOTIFY, RedisClient, RedisConnectionError


@pytest.fixture
async def redis_client() -> AsyncGenerator[RedisClient, None]:
    """Create Redis client with fakeredis for testing."""
    client = RedisClient(redis_url="redis://localhost:6379/0", queue_prefix="test:queue:")
    
    # Replace the real Redis client with fakeredis
    fake_redis = fakeredis.FakeAsyncRedis(decode_responses=True)
    client._client = fake_redis
    
    yield client
    
    # Cleanup
    await fake_redis.flushdb()
    await fake_redis.aclose()


@pytest.fixture
def sample_payload() -> dict:
    """Sample instance.updated payload."""
    return {"instance": {"_id": "inst_1", "name": "api", "owner": {"github": 42}}}


class TestQueueKeys:
    """Test queue key naming."""
    
    def test_queue_key_uses_prefix(self):
        """Test each event gets its own prefixed list."""
        client = RedisClient(redis_url="redis://localhost:6379/0", queue_prefix="test:queue:")
        
        assert client.queue_key("instance.updated") == "test:queue:instance.updated"
        assert client.dead_letter_key == "test:queue:dead_letter"


class TestJobQueueOperations:
    """Test job queue operations."""
    
    @pytest.mark.asyncio
    async def test_enqueue_and_dequeue_job(self, redis_client: RedisClient, sample_payload: dict):
        """Test enqueuing and dequeuing jobs."""
        job = await redis_client.enqueue_job("instance.updated", sample_payload)
        
        dequeued = await redis_client.dequeue_job(["instance.updated"])
        
        assert dequeued is not None
        assert dequeued.job_id == job.job_id
        assert dequeued.event == "instance.updated"
        assert dequeued.payload == sample_payload
        assert dequeued.attempt == 0
    
    @pytest.mark.asyncio
    async def test_dequeue_empty_queue(self, redis_client: RedisClient):
        """Test dequeuing from empty queues returns None."""
        job = await redis_client.dequeue_job(["instance.updated", "instance.deleted"])
        assert job is None
    
    @pytest.mark.asyncio
    async def test_blocking_dequeue(self, redis_client: RedisClient, sample_payload: dict):
        """Test blocking dequeue returns a waiting job."""
        await redis_client.enqueue_job("instance.deleted", sample_payload)
        
        dequeued = await redis_client.dequeue_job(["instance.updated", "instance.deleted"], timeout=1)
        
        assert dequeued is not None
        assert dequeued.event == "instance.deleted"
    
    @pytest.mark.asyncio
    async def test_dequeue_polls_events_in_order(self, redis_client: RedisClient, sample_payload: dict):
        """Test earlier events are drained first."""
        await redis_client.enqueue_job("instance.deleted", sample_payload)
        await redis_client.enqueue_job("instance.updated", sample_payload)
        
        first = await redis_client.dequeue_job(["instance.updated", "instance.deleted"])
        second = await redis_client.dequeue_job(["instance.updated", "instance.deleted"])
        
        assert first.event == "instance.updated"
        assert second.event == "instance.deleted"
    
    @pytest.mark.asyncio
    async def test_queue_fifo_order(self, redis_client: RedisClient):
        """Test queue maintains FIFO order."""
        for n in (1, 2, 3):
            await redis_client.enqueue_job("instance.updated", {"n": n})
        
        order = []
        for _ in range(3):
            job = await redis_client.dequeue_job(["instance.updated"])
            order.append(job.payload["n"])
        
        assert order == [1, 2, 3]
    
    @pytest.mark.asyncio
    async def test_queue_length(self, redis_client: RedisClient, sample_payload: dict):
        """Test getting queue length."""
        assert await redis_client.queue_length("instance.updated") == 0
        
        await redis_client.enqueue_job("instance.updated", sample_payload)
        await redis_client.enqueue_job("instance.updated", sample_payload)
        
        assert await redis_client.queue_length("instance.updated") == 2
        
        await redis_client.dequeue_job(["instance.updated"])
        
        assert await redis_client.queue_length("instance.updated") == 1
    
    @pytest.mark.asyncio
    async def test_publish_github_bot_notify(self, redis_client: RedisClient):
        """Test the bot notify task lands on its own queue."""
        payload = {"pushInfo": {"repo": "acme/api", "branch": "main"}, "instance": {}}
        
        await redis_client.publish_github_bot_notify(payload)
        
        job = await redis_client.dequeue_job([GITHUB_BOT_NOTIFY])
        assert job.event == "github.bot.notify"
        assert job.payload == payload


class TestFailedJobOperations:
    """Test requeue and dead-lettering."""
    
    @pytest.mark.asyncio
    async def test_requeue_bumps_attempt(self, redis_client: RedisClient, sample_payload: dict):
        """Test requeued jobs keep their id with the attempt incremented."""
        job = await redis_client.enqueue_job("instance.updated", sample_payload)
        dequeued = await redis_client.dequeue_job(["instance.updated"])
        
        await redis_client.requeue_job(dequeued)
        retried = await redis_client.dequeue_job(["instance.updated"])
        
        assert retried.job_id == job.job_id
        assert retried.attempt == 1
    
    @pytest.mark.asyncio
    async def test_dead_letter_job(self, redis_client: RedisClient, sample_payload: dict):
        """Test dead-lettered jobs are stored with the failure reason."""
        job = QueuedJob(job_id="job_1", event="instance.updated", payload=sample_payload, attempt=4)
        
        await redis_client.dead_letter_job(job, "boom")
        
        raw = await redis_client._client.lrange(redis_client.dead_letter_key, 0, -1)
        assert len(raw) == 1
        entry = json.loads(raw[0])
        assert entry["job_id"] == "job_1"
        assert entry["attempt"] == 4
        assert entry["reason"] == "boom"


class TestRetryLogic:
    """Test connection retry handling."""
    
    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self):
        """Test connection errors are retried then reported."""
        client = RedisClient(redis_url="redis://localhost:6379/0", max_retries=3, retry_delay=0)
        operation = AsyncMock(side_effect=ConnectionError("down"))
        
        with pytest.raises(RedisConnectionError):
            await client._retry_operation(operation)
        
        assert operation.await_count == 3
    
    @pytest.mark.asyncio
    async def test_recovers_after_transient_error(self):
        """Test an operation succeeding on retry returns its result."""
        client = RedisClient(redis_url="redis://localhost:6379/0", max_retries=3, retry_delay=0)
        operation = AsyncMock(side_effect=[ConnectionError("down"), "ok"])
        
        assert await client._retry_operation(operation) == "ok"
    
    @pytest.mark.asyncio
    async def test_non_transient_errors_are_raised(self):
        """Test non-transient Redis errors are not retried."""
        client = RedisClient(redis_url="redis://localhost:6379/0", max_retries=3, retry_delay=0)
        operation = AsyncMock(side_effect=ResponseError("WRONGTYPE"))
        
        with pytest.raises(ResponseError):
            await client._retry_operation(operation)
        
        assert operation.await_count == 1
    
    @pytest.mark.asyncio
    async def test_uninitialized_client(self):
        """Test operations fail before initialize()."""
        client = RedisClient(redis_url="redis://localhost:6379/0")
        
        with pytest.raises(RuntimeError):
            await client.queue_length("instance.updated")
