"""Abstract local spooler backend interface."""

from pathlib import Path
from typing import Protocol, runtime_checkable

from printbridge.models import Printer, SpoolerJob


@runtime_checkable
class SpoolerBackend(Protocol):
    """Protocol defining the local spooler backend interface.

    All methods are blocking; callers run them off the event loop.
    """

    @property
    def is_available(self) -> bool:
        """Check if the print subsystem is available.

        Returns:
            bool: True if printing is available.
        """
        ...

    def get_printers(self) -> list[Printer]:
        """Enumerate the local print queues.

        Returns:
            list[Printer]: Printers with descriptive metadata and media sizes.
                           ``remote_id`` is always None.
        """
        ...

    def print_file(self, stable_id: str, path: Path, title: str) -> int:
        """Submit a file to a print queue.

        Args:
            stable_id: Queue name.
            path: File to print.
            title: Job title.

        Returns:
            int: Local job handle assigned by the spooler.

        Raises:
            PrinterNotFoundError: If the queue does not exist.
            SpoolerError: If submission fails.
        """
        ...

    def get_jobs(self, stable_id: str, completed: bool = False) -> list[SpoolerJob]:
        """List jobs of a queue.

        Args:
            stable_id: Queue name.
            completed: List finished jobs (history) instead of active ones.

        Returns:
            list[SpoolerJob]: Jobs with their current state.

        Raises:
            SpoolerError: If the spooler cannot be queried.
        """
        ...
