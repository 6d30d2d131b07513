"""Pytest configuration and fixtures."""

from collections.abc import Generator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from printbridge.api import RemoteApiClient
from printbridge.config import BridgeConfig, SharedConfig
from printbridge.exceptions import PrinterNotFoundError, SpoolerError
from printbridge.models import Printer, SpoolerJob, SpoolerJobState
from printbridge.printing import SpoolerAdapter
from printbridge.storage import PrinterStore


class FakeSpoolerBackend:
    """In-memory spooler: a list of queues plus active and completed job lists."""

    is_available = True

    def __init__(self, printers: list[Printer] | None = None):
        self.printers = list(printers or [])
        self.submitted: list[tuple[str, bytes, str]] = []
        self.submitted_paths: list[Path] = []
        self.active: dict[str, list[SpoolerJob]] = {}
        self.completed: dict[str, list[SpoolerJob]] = {}
        self.next_handle = 100
        self.submit_error: SpoolerError | None = None
        self.printers_error: SpoolerError | None = None

    def get_printers(self) -> list[Printer]:
        if self.printers_error is not None:
            raise self.printers_error
        return [p.model_copy() for p in self.printers]

    def print_file(self, stable_id: str, path: Path, title: str) -> int:
        if self.submit_error is not None:
            raise self.submit_error
        if stable_id not in {p.stable_id for p in self.printers}:
            raise PrinterNotFoundError(f"Printer '{stable_id}' not found")
        self.submitted.append((stable_id, path.read_bytes(), title))
        self.submitted_paths.append(path)
        handle = self.next_handle
        self.next_handle += 1
        self.active.setdefault(stable_id, []).append(
            SpoolerJob(handle=handle, state=SpoolerJobState.PENDING)
        )
        return handle

    def get_jobs(self, stable_id: str, completed: bool = False) -> list[SpoolerJob]:
        source = self.completed if completed else self.active
        return list(source.get(stable_id, []))

    def set_state(
        self, stable_id: str, handle: int, state: SpoolerJobState, reason: str | None = None
    ) -> None:
        """Move a job to ``state``; terminal states move it to the job history."""
        self.forget(stable_id, handle)
        job = SpoolerJob(handle=handle, state=state, reason=reason)
        terminal = state in (
            SpoolerJobState.COMPLETED,
            SpoolerJobState.CANCELLED,
            SpoolerJobState.ABORTED,
        )
        (self.completed if terminal else self.active).setdefault(stable_id, []).append(job)

    def forget(self, stable_id: str, handle: int) -> None:
        for source in (self.active, self.completed):
            source[stable_id] = [j for j in source.get(stable_id, []) if j.handle != handle]


def make_printer(stable_id: str, display_name: str | None = None, **kwargs) -> Printer:
    """Build a printer with sensible defaults."""
    kwargs.setdefault("uri", f"ipp://printers.local/{stable_id}")
    kwargs.setdefault("driver_info", "Generic PostScript")
    kwargs.setdefault("media_sizes", ["A4", "Letter"])
    return Printer(display_name=display_name or stable_id, stable_id=stable_id, **kwargs)


@pytest.fixture
def printer_factory():
    return make_printer


@pytest.fixture
def backend() -> FakeSpoolerBackend:
    return FakeSpoolerBackend([make_printer("HP-Office", "HP Office")])


@pytest.fixture
def spooler(backend: FakeSpoolerBackend) -> Generator[SpoolerAdapter, None, None]:
    adapter = SpoolerAdapter(backend)
    yield adapter
    adapter.close()


@pytest.fixture
def store(tmp_path: Path) -> PrinterStore:
    return PrinterStore(tmp_path / "printers.json")


@pytest.fixture
def bridge_config(tmp_path: Path) -> BridgeConfig:
    return BridgeConfig(
        instance_name="office",
        server_url="http://print.test",
        api_token="token-1",
        push_app_key="app-key",
        push_app_secret="app-secret",
        push_host="push.test",
        printers_file=tmp_path / "printers.json",
    )


@pytest.fixture
def shared_config(bridge_config: BridgeConfig) -> SharedConfig:
    return SharedConfig(bridge_config)


@pytest.fixture
def api() -> AsyncMock:
    """Remote API client double; every coroutine method is an AsyncMock."""
    client = AsyncMock(spec=RemoteApiClient)
    client.list_printers.return_value = []
    client.create_printer.return_value = 1
    client.list_pending_jobs.return_value = []
    client.download_media.return_value = b"%PDF-1.4 test"
    return client
