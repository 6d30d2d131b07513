"""Print job lifecycle: submission to the local spooler and in-flight status tracking."""

import asyncio
import dataclasses
import logging

from printbridge.api import RemoteApiClient
from printbridge.config import SharedConfig
from printbridge.exceptions import (
    ApiError,
    DecodeError,
    NoPrinterAvailableError,
    PrinterNotFoundError,
    SpoolerError,
)
from printbridge.models import InFlightJob, JobStatus, PrintJob, Printer, map_spooler_state
from printbridge.printing import SpoolerAdapter
from printbridge.storage import PrinterStore
from printbridge.sync import PrinterNames

logger = logging.getLogger(__name__)


def belongs_to_instance(job: PrintJob, instance: str, synced: dict[str, Printer]) -> bool:
    """Check whether a remote job is addressed to this agent.

    Args:
        job: Job description.
        instance: This agent's instance identity.
        synced: Synced printer map.

    Returns:
        bool: True if the job targets one of our printers.
    """
    if job.printer is not None and job.printer.spooler_name:
        return job.printer.spooler_name == instance
    remote_ids = {p.remote_id for p in synced.values() if p.remote_id is not None}
    printer_id = job.remote_printer_id
    if printer_id is None and job.printer is not None:
        printer_id = job.printer.remote_id
    return printer_id is not None and printer_id in remote_ids


class InFlightRegistry:
    """Jobs submitted locally that have not reached a terminal state.

    A single lock guards the whole registry. Job ids being submitted are
    reserved first so that concurrent sources never submit the same job twice.
    """

    def __init__(self):
        self._jobs: dict[int, InFlightJob] = {}
        self._reserved: set[int] = set()
        self._lock = asyncio.Lock()

    async def reserve(self, job_id: int) -> bool:
        """Claim a job id for submission.

        Args:
            job_id: Remote job id.

        Returns:
            bool: False if the job is already in flight or being submitted.
        """
        async with self._lock:
            if job_id in self._jobs or job_id in self._reserved:
                return False
            self._reserved.add(job_id)
            return True

    async def release(self, job_id: int) -> None:
        """Drop a reservation after a failed submission."""
        async with self._lock:
            self._reserved.discard(job_id)

    async def add(self, entry: InFlightJob) -> None:
        async with self._lock:
            self._reserved.discard(entry.job_id)
            self._jobs[entry.job_id] = entry

    async def contains(self, job_id: int) -> bool:
        async with self._lock:
            return job_id in self._jobs or job_id in self._reserved

    async def get(self, job_id: int) -> InFlightJob | None:
        async with self._lock:
            entry = self._jobs.get(job_id)
            return dataclasses.replace(entry) if entry is not None else None

    async def snapshot(self) -> list[InFlightJob]:
        """Copy the entries so callers can do slow work without holding the lock."""
        async with self._lock:
            return [dataclasses.replace(entry) for entry in self._jobs.values()]

    async def set_status(self, job_id: int, status: JobStatus) -> None:
        async with self._lock:
            entry = self._jobs.get(job_id)
            if entry is not None:
                entry.last_reported_status = status

    async def remove(self, job_ids: list[int]) -> None:
        async with self._lock:
            for job_id in job_ids:
                self._jobs.pop(job_id, None)

    async def count(self) -> int:
        async with self._lock:
            return len(self._jobs)


class JobTracker:
    """Submits jobs to the local spooler and tracks them to a terminal state.

    The tracker:
    1. Resolves the target printer (falling back to any local printer)
    2. Downloads the payload and submits it to the spooler
    3. Reports ``queued`` and registers the job as in flight
    4. Polls the spooler for in-flight jobs and reports each transition
    """

    def __init__(
        self,
        api: RemoteApiClient,
        spooler: SpoolerAdapter,
        registry: InFlightRegistry,
        printer_names: PrinterNames,
        store: PrinterStore,
        config: SharedConfig,
    ):
        self.api = api
        self.spooler = spooler
        self.registry = registry
        self.printer_names = printer_names
        self.store = store
        self.config = config

    async def resolve_printer(self, job: PrintJob) -> str:
        """Pick the local queue a job should print on.

        Prefers the printer embedded in the job, then the synced map entry for
        the job's remote printer id. A printer that no longer exists locally is
        replaced by the first available one.

        Args:
            job: Job description.

        Returns:
            str: Stable id of a locally available printer.

        Raises:
            NoPrinterAvailableError: If no local printer exists at all.
        """
        available = await self.printer_names.snapshot()
        if not available:
            raise NoPrinterAvailableError(f"No local printer available for job {job.job_id}")

        synced = self.store.load()
        candidate = None

        ref = job.printer
        if ref is not None:
            if ref.stable_id:
                candidate = ref.stable_id
            elif ref.remote_id is not None:
                candidate = self._stable_id_for(synced, ref.remote_id)
            if candidate is None and ref.name:
                candidate = next(
                    (p.stable_id for p in synced.values() if p.display_name == ref.name),
                    ref.name,
                )

        if candidate is None and job.remote_printer_id is not None:
            candidate = self._stable_id_for(synced, job.remote_printer_id)

        fallback = available[0]
        if candidate is None:
            logger.warning(f"Job {job.job_id} has no resolvable printer, using {fallback}")
            return fallback
        if candidate not in available:
            logger.warning(
                f"Printer '{candidate}' for job {job.job_id} not found locally, "
                f"printing on {fallback} instead"
            )
            return fallback
        return candidate

    @staticmethod
    def _stable_id_for(synced: dict[str, Printer], remote_id: int) -> str | None:
        for stable_id, printer in synced.items():
            if printer.remote_id == remote_id:
                return stable_id
        return None

    async def _report(
        self,
        job_id: int,
        status: JobStatus,
        local_handle: int | None = None,
        error_message: str | None = None,
    ) -> bool:
        try:
            await self.api.update_job_status(job_id, status, local_handle, error_message)
            return True
        except (ApiError, DecodeError) as e:
            logger.warning(f"Failed to report job {job_id} as {status.value}: {e}")
            return False

    async def _submit(self, job: PrintJob, stable_id: str, data: bytes) -> tuple[str, int]:
        title = f"Print Job {job.job_id}"
        try:
            return stable_id, await self.spooler.submit(stable_id, data, title)
        except PrinterNotFoundError:
            others = [name for name in await self.printer_names.snapshot() if name != stable_id]
            if not others:
                raise
            logger.warning(
                f"Printer {stable_id} vanished before job {job.job_id} was submitted, "
                f"printing on {others[0]} instead"
            )
            return others[0], await self.spooler.submit(others[0], data, title)

    async def process(self, job: PrintJob) -> bool:
        """Submit a job to the local spooler.

        Args:
            job: Job description.

        Returns:
            bool: True if the job was submitted. Failed submissions are left
                  for the next poll or catch-up to retry.
        """
        if not await self.registry.reserve(job.job_id):
            logger.debug(f"Job {job.job_id} already in flight, skipping")
            return False

        submitted = False
        try:
            stable_id = await self.resolve_printer(job)
            data = await self.api.download_media(job.payload_ref)
            stable_id, handle = await self._submit(job, stable_id, data)
            submitted = True
        except (ApiError, DecodeError, SpoolerError) as e:
            logger.error(f"Failed to submit job {job.job_id}: {e}")
            return False
        finally:
            if not submitted:
                await self.registry.release(job.job_id)

        logger.info(f"Job {job.job_id} submitted to {stable_id} as local job {handle}")
        # The status loop must not see the job before ``queued`` has been applied remotely
        entry = InFlightJob(job_id=job.job_id, local_handle=handle, printer_stable_id=stable_id)
        try:
            if await self._report(job.job_id, JobStatus.QUEUED, handle):
                entry.last_reported_status = JobStatus.QUEUED
        finally:
            await self.registry.add(entry)
        return True

    async def check_in_flight(self) -> None:
        """Query the spooler for every in-flight job and report transitions."""
        entries = await self.registry.snapshot()
        if not entries:
            return

        timeout = self.config.snapshot().job_timeout
        finished = []

        for entry in entries:
            try:
                spooler_job = await self.spooler.find_job(
                    entry.printer_stable_id, entry.local_handle
                )
            except SpoolerError as e:
                logger.warning(f"Could not query spooler for job {entry.job_id}: {e}")
                continue

            if spooler_job is None:
                if entry.age_seconds() <= timeout:
                    logger.debug(f"Job {entry.job_id} not yet visible in spooler")
                    continue
                message = (
                    f"Local job {entry.local_handle} not found in spooler "
                    f"after {int(timeout)} seconds"
                )
                logger.warning(f"Job {entry.job_id} timed out: {message}")
                if await self._report(
                    entry.job_id, JobStatus.FAILED, entry.local_handle, message
                ):
                    finished.append(entry.job_id)
                continue

            status = map_spooler_state(spooler_job.state)
            last = entry.last_reported_status
            if last is not None and last.is_terminal:
                finished.append(entry.job_id)
                continue
            if status == last:
                continue

            error_message = None
            if status in (JobStatus.FAILED, JobStatus.CANCELLED):
                error_message = spooler_job.reason
            if not await self._report(entry.job_id, status, entry.local_handle, error_message):
                continue
            if status.is_terminal:
                finished.append(entry.job_id)
            else:
                await self.registry.set_status(entry.job_id, status)

        if finished:
            await self.registry.remove(finished)
            logger.info(f"{len(finished)} job(s) reached a terminal state")

    async def restore_in_flight(self) -> int:
        """Re-populate the registry from jobs the remote service still sees as open.

        Returns:
            int: Number of jobs restored.
        """
        config = self.config.snapshot()
        synced = self.store.load()
        restored = 0

        for remote_job in await self.api.list_pending_jobs():
            job = remote_job.to_print_job()
            if not job.is_in_flight:
                continue
            if not belongs_to_instance(job, config.instance_name, synced):
                continue
            try:
                stable_id = await self.resolve_printer(job)
            except NoPrinterAvailableError as e:
                logger.warning(f"Cannot restore job {job.job_id}: {e}")
                continue
            if not await self.registry.reserve(job.job_id):
                continue
            await self.registry.add(
                InFlightJob(
                    job_id=job.job_id,
                    local_handle=job.local_handle,
                    printer_stable_id=stable_id,
                    last_reported_status=job.status,
                )
            )
            restored += 1

        if restored:
            logger.info(f"Restored {restored} in-flight job(s) from remote service")
        return restored
