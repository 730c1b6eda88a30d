"""
Redis client wrapper for the notification job queues.

Each event name has its own Redis list under the configured prefix.
Jobs are JSON envelopes (job_id, event, payload, attempt) pushed on the
right and popped on the left, so every queue is FIFO. Jobs that keep
failing end up on a dead-letter list.

Includes connection pooling and retry logic for transient connection errors.
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Sequence

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from notifier.models.jobs import QueuedJob


logger = logging.getLogger(__name__)

GITHUB_BOT_NOTIFY = "github.bot.notify"


class RedisConnectionError(Exception):
    """Raised when Redis connection fails after retries."""
    pass


class RedisClient:
    """
    Redis client wrapper with connection pooling and retry logic.

    Provides methods for:
    - Enqueueing jobs per event
    - Blocking dequeue across several event queues
    - Requeue and dead-lettering of failed jobs
    """

    DEAD_LETTER_SUFFIX = "dead_letter"

    def __init__(
        self,
        redis_url: str,
        queue_prefix: str = "notifier:queue:",
        max_retries: int = 3,
        retry_delay: float = 1.0,
        connection_timeout: int = 5
    ):
        """
        Initialize Redis client.

        Args:
            redis_url: Redis connection URL
            queue_prefix: Prefix of every queue key
            max_retries: Maximum number of retry attempts for transient errors
            retry_delay: Base delay between retries (exponential backoff)
            connection_timeout: Connection timeout in seconds
        """
        self._redis_url = redis_url
        self._queue_prefix = queue_prefix
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._connection_timeout = connection_timeout

    async def initialize(self) -> None:
        """
        Initialize Redis connection pool.

        Should be called during worker startup.

        Raises:
            RedisConnectionError: If connection fails
        """
        try:
            # No socket timeout: blocking pops wait longer than any fixed value
            self._pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=10,
                decode_responses=True,
                socket_connect_timeout=self._connection_timeout
            )

            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()

            logger.info("Redis connection pool initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Redis connection pool: {e}")
            raise RedisConnectionError(f"Failed to connect to Redis: {e}")

    async def close(self) -> None:
        """
        Close Redis connection pool.

        Should be called during worker shutdown.
        """
        if self._client:
            await self._client.aclose()
            self._client = None

        if self._pool:
            await self._pool.disconnect()
            self._pool = None

        logger.info("Redis connection pool closed")

    @asynccontextmanager
    async def _get_client(self):
        """
        Get Redis client with connection check.

        Yields:
            redis.Redis: Redis client instance

        Raises:
            RuntimeError: If client not initialized
        """
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call initialize() first.")

        yield self._client

    async def _retry_operation(self, operation, *args, **kwargs):
        """
        Execute Redis operation with retry logic.

        Raises:
            RedisConnectionError: If operation fails after all retries
        """
        last_error = None

        for attempt in range(self._max_retries):
            try:
                return await operation(*args, **kwargs)

            except (ConnectionError, TimeoutError) as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Redis operation failed (attempt {attempt + 1}/{self._max_retries}), "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Redis operation failed after {self._max_retries} attempts: {e}")

            except RedisError as e:
                # Non-transient errors, don't retry
                logger.error(f"Redis operation failed with non-transient error: {e}")
                raise

        raise RedisConnectionError(f"Redis operation failed after {self._max_retries} retries: {last_error}")

    # ========== Queue keys ==========

    def queue_key(self, event: str) -> str:
        """Get Redis key of the queue for an event."""
        return f"{self._queue_prefix}{event}"

    @property
    def dead_letter_key(self) -> str:
        return f"{self._queue_prefix}{self.DEAD_LETTER_SUFFIX}"

    # ========== Job Queue Operations (List) ==========

    async def _push(self, key: str, job: QueuedJob) -> None:
        async def _rpush():
            async with self._get_client() as client:
                await client.rpush(key, job.model_dump_json())

        await self._retry_operation(_rpush)

    async def enqueue_job(self, event: str, payload: Dict[str, Any], attempt: int = 0) -> QueuedJob:
        """
        Enqueue a job for an event.

        Args:
            event: Event or task name, e.g. 'github.bot.notify'
            payload: JSON-serializable job payload
            attempt: Delivery attempt, zero based

        Returns:
            The queued job envelope

        Raises:
            RedisConnectionError: If operation fails after retries
        """
        job = QueuedJob(job_id=str(uuid.uuid4()), event=event, payload=payload, attempt=attempt)
        await self._push(self.queue_key(event), job)
        logger.info(f"Enqueued {event} job {job.job_id}")
        return job

    async def dequeue_job(self, events: Sequence[str], timeout: int = 0) -> Optional[QueuedJob]:
        """
        Dequeue the next job from any of the event queues.

        Queues are polled in the order given.

        Args:
            events: Event names to consume
            timeout: Blocking timeout in seconds (0 for non-blocking)

        Returns:
            QueuedJob if available, None if all queues are empty

        Raises:
            RedisConnectionError: If operation fails after retries
        """
        keys = [self.queue_key(event) for event in events]

        async def _dequeue():
            async with self._get_client() as client:
                if timeout > 0:
                    result = await client.blpop(keys, timeout=timeout)
                    if not result:
                        return None
                    _, job_json = result
                else:
                    job_json = None
                    for key in keys:
                        job_json = await client.lpop(key)
                        if job_json:
                            break

                if not job_json:
                    return None

                job = QueuedJob(**json.loads(job_json))
                logger.info(f"Dequeued {job.event} job {job.job_id} (attempt {job.attempt})")
                return job

        return await self._retry_operation(_dequeue)

    async def requeue_job(self, job: QueuedJob) -> QueuedJob:
        """
        Put a failed job back on its queue with the attempt counter bumped.

        Raises:
            RedisConnectionError: If operation fails after retries
        """
        retried = job.model_copy(update={"attempt": job.attempt + 1})
        await self._push(self.queue_key(job.event), retried)
        logger.info(f"Requeued {job.event} job {job.job_id} (attempt {retried.attempt})")
        return retried

    async def dead_letter_job(self, job: QueuedJob, reason: str) -> None:
        """
        Move a job that exhausted its attempts to the dead-letter list.

        Raises:
            RedisConnectionError: If operation fails after retries
        """
        async def _rpush():
            async with self._get_client() as client:
                entry = job.model_dump(mode="json")
                entry["reason"] = reason
                await client.rpush(self.dead_letter_key, json.dumps(entry))

        await self._retry_operation(_rpush)
        logger.warning(f"Dead-lettered {job.event} job {job.job_id}: {reason}")

    async def queue_length(self, event: str) -> int:
        """
        Get number of jobs waiting for an event.

        Raises:
            RedisConnectionError: If operation fails after retries
        """
        async def _get_length():
            async with self._get_client() as client:
                return await client.llen(self.queue_key(event))

        return await self._retry_operation(_get_length)

    async def publish_github_bot_notify(self, payload: Dict[str, Any]) -> QueuedJob:
        """Enqueue a `github.bot.notify` task with {pushInfo, instance}."""
        return await self.enqueue_job(GITHUB_BOT_NOTIFY, payload)

