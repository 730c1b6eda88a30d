"""
Worker process for the notification queues.

Consumes every event queue the dispatcher has a handler for, one job at a
time. Stopped jobs are dropped, failed jobs are requeued until they run
out of attempts and then dead-lettered. Implements graceful shutdown on
SIGTERM/SIGINT.
"""

import asyncio
import signal
import sys
from typing import Optional

from notifier.config import Settings, get_settings
from notifier.models.error import WorkerStopError
from notifier.models.jobs import QueuedJob
from notifier.services.dispatcher import NotificationDispatcher
from notifier.services.document_store import MySQLDocumentStore
from notifier.services.email import SendGridClient
from notifier.services.message_tracker import MessageTracker
from notifier.services.organization_notifier import OrganizationNotifier
from notifier.services.redis_client import RedisClient
from notifier.services.slack import SlackNotifier
from notifier.utils.logging import get_logger, log_error_with_context, log_job_event, setup_logging
from notifier.utils.metrics import JobMetrics

logger = get_logger(__name__)


class Worker:
    """Worker process that polls the Redis queues and dispatches jobs."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        redis_client: Optional[RedisClient] = None,
        store: Optional[MySQLDocumentStore] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        """
        Initialize the worker.

        Collaborators not passed in are built from settings on start().
        """
        self.settings = settings or get_settings()
        self.redis_client = redis_client or RedisClient(self.settings.redis_url, self.settings.queue_prefix)
        self.store = store or MySQLDocumentStore(self.settings.database_url)
        self.dispatcher = dispatcher
        self.sendgrid: Optional[SendGridClient] = None
        self.tracker = MessageTracker.from_settings(self.settings)
        self.running = False
        self.current_job: Optional[QueuedJob] = None

    def _build_dispatcher(self) -> NotificationDispatcher:
        organizations = None
        if self.settings.sendgrid_key:
            self.sendgrid = SendGridClient.from_settings(self.settings)
            organizations = OrganizationNotifier(self.store, self.sendgrid)
        else:
            logger.warning("SendGrid key is not defined, organization emails are disabled")
        return NotificationDispatcher(
            self.settings,
            self.store,
            self.redis_client,
            SlackNotifier(self.settings, self.tracker),
            organizations,
        )

    async def start(self) -> None:
        """
        Start the worker process.

        Initializes connections and begins polling the job queues.
        """
        logger.info("Starting worker process...")

        try:
            await self.redis_client.initialize()
            logger.info("Redis connection initialized")

            await self.store.initialize()
            logger.info("Document store initialized")

            if self.dispatcher is None:
                self.dispatcher = self._build_dispatcher()

            self.running = True

            self._register_signal_handlers()

            logger.info(f"Worker process started, consuming {len(self.dispatcher.events)} events")
            await self._log_backlog()

            await self._process_jobs()

        except Exception as e:
            logger.error(f"Failed to start worker: {e}", exc_info=True)
            raise

    async def _log_backlog(self) -> int:
        """Log the jobs already waiting per event and return their total."""
        backlog = {}
        for event in self.dispatcher.events:
            waiting = await self.redis_client.queue_length(event)
            if waiting:
                backlog[event] = waiting
        total = sum(backlog.values())
        logger.info(f"{total} jobs waiting", extra={"backlog": backlog})
        return total

    async def stop(self) -> None:
        """
        Stop the worker process.

        Closes every connection; safe to call more than once.
        """
        logger.info("Stopping worker process...")

        self.running = False

        if self.current_job:
            logger.info(f"Interrupted while handling job {self.current_job.job_id}")

        await self.redis_client.close()
        await self.store.close()
        if self.sendgrid:
            await self.sendgrid.aclose()
            self.sendgrid = None

        logger.info("Worker process stopped")

    async def _process_jobs(self) -> None:
        """
        Main job processing loop.

        The blocking pop times out periodically so the running flag is
        checked between jobs.
        """
        logger.info("Starting job processing loop...")

        while self.running:
            try:
                job = await self.redis_client.dequeue_job(
                    self.dispatcher.events,
                    timeout=self.settings.dequeue_timeout_seconds,
                )
                if job:
                    self.current_job = job
                    await self.process_job(job)
                    self.current_job = None

            except asyncio.CancelledError:
                logger.info("Job processing cancelled")
                break

            except Exception as e:
                logger.error(f"Error processing job: {e}", exc_info=True)
                await asyncio.sleep(1)

        logger.info("Job processing loop stopped")

    async def process_job(self, job: QueuedJob) -> str:
        """
        Handle a job and settle it.

        Returns:
            Outcome: 'completed', 'stopped', 'retried' or 'dead_lettered'
        """
        log = logger.with_context(job_id=job.job_id, event=job.event)
        metrics = JobMetrics(job.job_id, job.event)
        metrics.start()
        log_job_event(log, job.job_id, job.event, job.attempt, "received")

        try:
            await self.dispatcher.dispatch(job, metrics)
            outcome = "completed"

        except WorkerStopError as e:
            log_at = getattr(log, e.level, log.warning)
            log_at(
                f"Job stopped: {e.message}",
                extra={"stop_context": e.context, "report": e.report}
            )
            outcome = "stopped"

        except Exception as e:
            if job.attempt + 1 < self.settings.max_job_attempts:
                log_error_with_context(log, "Job failed, requeueing", e, attempt=job.attempt)
                await self.redis_client.requeue_job(job)
                outcome = "retried"
            else:
                log_error_with_context(log, "Job failed, attempts exhausted", e, attempt=job.attempt)
                await self.redis_client.dead_letter_job(job, str(e))
                outcome = "dead_lettered"

        metrics.complete(outcome)
        log_job_event(log, job.job_id, job.event, job.attempt, outcome)
        return outcome

    def _register_signal_handlers(self) -> None:
        """Register signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received signal {signal_name}, initiating graceful shutdown...")
            self.running = False

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

        logger.info("Signal handlers registered (SIGTERM, SIGINT)")


async def main():
    """Main entry point for worker process."""
    settings = get_settings()
    setup_logging(settings.log_level.upper())
    logger.info("Worker process starting...")

    worker = Worker(settings)

    try:
        await worker.start()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Worker process failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await worker.stop()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
