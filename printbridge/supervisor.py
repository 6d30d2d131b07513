"""Agent supervisor: wires the components together and owns the background loops."""

import asyncio
import logging
import signal

from printbridge.api import RemoteApiClient
from printbridge.config import BridgeConfig, SharedConfig, get_config
from printbridge.exceptions import ApiError, DecodeError, SpoolerError
from printbridge.ingestion import JobIngestion
from printbridge.jobs import InFlightRegistry, JobTracker
from printbridge.printing import SpoolerAdapter, get_spooler
from printbridge.push import PushListener
from printbridge.scheduler import run_periodic
from printbridge.storage import PrinterStore
from printbridge.sync import PrinterNames, PrinterSynchronizer

logger = logging.getLogger(__name__)


class PrintBridge:
    """Print spooler bridge agent.

    Startup runs one printer sync before any job is accepted, restores
    in-flight jobs the remote service still reports as open, then spawns:

    - the printer sync loop
    - the in-flight status loop
    - either the job polling loop or the push listener and its dispatcher
    """

    def __init__(
        self,
        config: BridgeConfig,
        spooler: SpoolerAdapter | None = None,
        api: RemoteApiClient | None = None,
        store: PrinterStore | None = None,
    ):
        self.config = SharedConfig(config)
        self.spooler = spooler or get_spooler()
        self.api = api or RemoteApiClient(self.config)
        self.store = store or PrinterStore(config.printers_file)

        self.printer_names = PrinterNames()
        self.registry = InFlightRegistry()
        self.synchronizer = PrinterSynchronizer(
            self.api, self.spooler, self.store, self.printer_names
        )
        self.tracker = JobTracker(
            self.api, self.spooler, self.registry, self.printer_names, self.store, self.config
        )
        self.ingestion = JobIngestion(self.api, self.tracker, self.config)

        self.shutdown_event = asyncio.Event()
        self.tasks: list[asyncio.Task] = []

    async def initial_sync(self) -> None:
        """Sync printers once so job routing has a printer list to work with."""
        try:
            await self.synchronizer.run_pass()
        except SpoolerError as e:
            logger.error(f"Initial printer sync failed: {e}")

        try:
            await self.tracker.restore_in_flight()
        except (ApiError, DecodeError) as e:
            logger.error(f"Could not restore in-flight jobs: {e}")

    async def start(self) -> None:
        """Run the initial sync and spawn the background loops."""
        config = self.config.snapshot()
        logger.info("Starting PrintBridge agent")
        logger.info(f"Instance: {config.instance_name}")
        logger.info(f"Server: {config.server_url}")

        await self.initial_sync()

        self._spawn(
            "printer sync",
            run_periodic(
                "printer sync",
                self.synchronizer.run_pass,
                lambda: self.config.snapshot().printer_check_interval,
                self.shutdown_event,
                run_immediately=False,
            ),
        )
        self._spawn(
            "job status",
            run_periodic(
                "job status",
                self.tracker.check_in_flight,
                lambda: self.config.snapshot().status_check_interval,
                self.shutdown_event,
            ),
        )

        if config.push_enabled:
            logger.info(f"Receiving jobs over push channel {config.push_channel}")
            queue: asyncio.Queue = asyncio.Queue()
            listener = PushListener(self.config, queue, self.api)
            self._spawn("push listener", listener.run(self.shutdown_event))
            self._spawn("push dispatcher", self.ingestion.consume(queue, self.shutdown_event))
        else:
            logger.info(f"Polling for jobs every {config.job_check_interval:g}s")
            self._spawn(
                "job polling",
                run_periodic(
                    "job polling",
                    self.ingestion.poll_once,
                    lambda: self.config.snapshot().job_check_interval,
                    self.shutdown_event,
                ),
            )

    def _spawn(self, name: str, coro) -> None:
        self.tasks.append(asyncio.create_task(coro, name=name))

    def request_shutdown(self) -> None:
        if not self.shutdown_event.is_set():
            logger.info("Shutdown signal received")
            self.shutdown_event.set()

    async def shutdown(self) -> None:
        """Signal every loop to stop and wait a bounded time for each."""
        self.request_shutdown()
        timeout = self.config.snapshot().shutdown_timeout

        for task in self.tasks:
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                logger.warning(f"Task '{task.get_name()}' did not stop within {timeout:g}s")
                task.cancel()
            elif not task.cancelled() and task.exception() is not None:
                logger.error(f"Task '{task.get_name()}' failed: {task.exception()}")
        self.tasks.clear()

    async def close(self) -> None:
        await self.api.aclose()
        self.spooler.close()

    async def run(self) -> None:
        """Run until SIGINT or SIGTERM."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

        try:
            await self.start()
            await self.shutdown_event.wait()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.shutdown()
            await self.close()
            logger.info("Agent stopped")


def get_bridge(config: BridgeConfig | None = None) -> PrintBridge:
    """Get a PrintBridge agent.

    Args:
        config: Optional config (loads default if not provided).

    Returns:
        PrintBridge: Agent instance.
    """
    return PrintBridge(config or get_config())
