"""Local print subsystem access.

Provides the spooler backend interface, the CUPS backend, and the async adapter
that keeps blocking spooler calls off the event loop. Use get_spooler() to get an
adapter for the current machine.
"""

from printbridge.printing.adapter import SpoolerAdapter
from printbridge.printing.base import SpoolerBackend


def get_spooler(backend: SpoolerBackend | None = None) -> SpoolerAdapter:
    """Factory function that returns a spooler adapter.

    Args:
        backend: Optional backend (defaults to CUPS).

    Returns:
        SpoolerAdapter: Adapter around the backend.
    """
    if backend is None:
        # Linux and macOS both use CUPS
        from printbridge.printing.cups_printer import CupsSpooler

        backend = CupsSpooler()

    return SpoolerAdapter(backend)


__all__ = [
    "SpoolerAdapter",
    "SpoolerBackend",
    "get_spooler",
]
