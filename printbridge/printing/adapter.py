"""Async access to the local spooler through a dedicated blocking worker."""

import asyncio
import logging
import tempfile
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path

from printbridge.models import Printer, SpoolerJob
from printbridge.printing.base import SpoolerBackend

logger = logging.getLogger(__name__)


def is_shadow_queue(printer: Printer) -> bool:
    """Check for mDNS implicit-class duplicates such as ``Printer@host.local``.

    These are CUPS-discovered shadows of real queues and cannot be printed to directly.
    """
    return "@" in printer.stable_id


class SpoolerAdapter:
    """Runs blocking spooler calls on a single dedicated thread.

    Attributes:
        backend: Platform spooler backend.
    """

    def __init__(self, backend: SpoolerBackend, executor: ThreadPoolExecutor | None = None):
        self.backend = backend
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="spooler"
        )

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args, **kwargs))

    async def discover_printers(self) -> list[Printer]:
        """Enumerate printable local queues.

        Returns:
            list[Printer]: Printers, shadow queues excluded.
        """
        printers = []
        for printer in await self._run(self.backend.get_printers):
            if is_shadow_queue(printer):
                logger.debug(f"Skipping mDNS implicit-class duplicate {printer.stable_id}")
                continue
            if not printer.media_sizes:
                logger.warning(
                    f"No media sizes returned for {printer.stable_id}, "
                    "printer may not be fully configured"
                )
            printers.append(printer)
        logger.debug(f"Discovered {len(printers)} local printers")
        return printers

    async def submit(self, stable_id: str, data: bytes, title: str) -> int:
        """Print a payload on a local queue.

        Args:
            stable_id: Queue name.
            data: File contents.
            title: Job title.

        Returns:
            int: Local job handle.

        Raises:
            SpoolerError: If submission fails.
        """
        return await self._run(self._print_bytes, stable_id, data, title)

    def _print_bytes(self, stable_id: str, data: bytes, title: str) -> int:
        with tempfile.NamedTemporaryFile(prefix="printbridge-", delete=False) as f:
            f.write(data)
            temp_path = Path(f.name)

        try:
            return self.backend.print_file(stable_id, temp_path, title)
        finally:
            # Clean up temp file
            temp_path.unlink(missing_ok=True)

    async def find_job(self, stable_id: str, handle: int) -> SpoolerJob | None:
        """Look up a job, checking active jobs first and then the job history.

        Args:
            stable_id: Queue the job was submitted to.
            handle: Local job handle.

        Returns:
            SpoolerJob | None: The job, or None if the spooler does not know it.
        """
        for completed in (False, True):
            jobs = await self._run(self.backend.get_jobs, stable_id, completed=completed)
            for job in jobs:
                if job.handle == handle:
                    return job
        return None

    def close(self) -> None:
        """Release the worker thread without waiting for a stuck spooler call."""
        self._executor.shutdown(wait=False, cancel_futures=True)
