"""Job ingestion: polling fetcher, catch-up fetch, and push message dispatch."""

import asyncio
import logging

from printbridge.api import RemoteApiClient
from printbridge.config import SharedConfig
from printbridge.exceptions import NotFoundError
from printbridge.jobs import JobTracker, belongs_to_instance
from printbridge.models import PrintJob
from printbridge.push import CatchUpRequested, JobCreated, PushMessage
from printbridge.scheduler import race_shutdown

logger = logging.getLogger(__name__)


class JobIngestion:
    """Finds jobs addressed to this agent and hands them to the job tracker."""

    def __init__(self, api: RemoteApiClient, tracker: JobTracker, config: SharedConfig):
        self.api = api
        self.tracker = tracker
        self.config = config
        self._handlers: set[asyncio.Task] = set()

    def _accepts(self, job: PrintJob, instance: str, synced: dict) -> bool:
        if job.is_completed:
            return False
        if not belongs_to_instance(job, instance, synced):
            logger.debug(f"Job {job.job_id} is addressed to another instance")
            return False
        return True

    async def fetch_pending(self) -> list[PrintJob]:
        """Fetch open jobs for this instance that are not yet in flight.

        Returns:
            list[PrintJob]: Jobs to submit.
        """
        instance = self.config.snapshot().instance_name
        synced = self.tracker.store.load()

        jobs = []
        for remote_job in await self.api.list_pending_jobs():
            job = remote_job.to_print_job()
            if not self._accepts(job, instance, synced):
                continue
            if job.is_in_flight or await self.tracker.registry.contains(job.job_id):
                logger.debug(f"Job {job.job_id} already in flight, skipping")
                continue
            jobs.append(job)
        return jobs

    async def poll_once(self) -> int:
        """Run a single polling cycle.

        Returns:
            int: Number of jobs submitted.
        """
        jobs = await self.fetch_pending()
        if not jobs:
            logger.debug("No print jobs found for this instance")
            return 0

        logger.info(f"Processing {len(jobs)} print job(s)")
        processed = 0
        for job in jobs:
            if await self.tracker.process(job):
                processed += 1
        return processed

    async def catch_up(self) -> int:
        """Submit jobs created while the push channel was disconnected.

        Returns:
            int: Number of jobs submitted.
        """
        logger.info("Fetching pending print jobs created while disconnected")
        processed = await self.poll_once()
        if processed:
            logger.info(f"Catch-up submitted {processed} job(s)")
        return processed

    async def dispatch_job(self, job_id: int) -> bool:
        """Fetch a single job announced over the push channel and submit it.

        Args:
            job_id: Remote job id.

        Returns:
            bool: True if the job was submitted.
        """
        try:
            remote_job = await self.api.get_job(job_id)
        except NotFoundError:
            logger.warning(f"Job {job_id} announced by push no longer exists")
            return False

        job = remote_job.to_print_job()
        if not self._accepts(job, self.config.snapshot().instance_name, self.tracker.store.load()):
            return False
        if job.is_in_flight:
            logger.debug(f"Job {job_id} already submitted, skipping")
            return False
        return await self.tracker.process(job)

    async def handle_message(self, message: PushMessage) -> None:
        """Act on one push message. Errors are logged, never raised."""
        try:
            if isinstance(message, CatchUpRequested):
                await self.catch_up()
            elif isinstance(message, JobCreated):
                if await self.dispatch_job(message.job_id):
                    logger.info(f"Successfully handled print job {message.job_id} from push")
        except Exception as e:
            logger.exception(f"Error handling push message {message}: {e}")

    async def consume(self, queue: asyncio.Queue, shutdown: asyncio.Event) -> None:
        """Spawn a handler task for every push message until shutdown.

        Args:
            queue: Messages from the push listener.
            shutdown: Event set when the agent is stopping.
        """
        logger.info("Starting push message dispatcher")
        while not shutdown.is_set():
            next_message = asyncio.ensure_future(queue.get())
            if await race_shutdown(next_message, shutdown):
                break
            task = asyncio.create_task(self.handle_message(next_message.result()))
            self._handlers.add(task)
            task.add_done_callback(self._handlers.discard)

        for task in list(self._handlers):
            task.cancel()
        await asyncio.gather(*self._handlers, return_exceptions=True)
        logger.info("Push message dispatcher stopped")
