"""CUPS spooler backend."""

import logging
import re
import shlex
import subprocess
from pathlib import Path

from printbridge.exceptions import PrinterNotFoundError, SpoolerError
from printbridge.models import Printer, SpoolerJob, SpoolerJobState

logger = logging.getLogger(__name__)

# Try to import cups, but make it optional
try:
    import cups

    CUPS_AVAILABLE = True
except ImportError:
    CUPS_AVAILABLE = False
    logger.warning("pycups not available - using lp command fallback")

# "request id is HP-Office-123 (1 file(s))"
_REQUEST_ID_RE = re.compile(r"request id is (?P<queue>\S+)-(?P<handle>\d+)")

_JOB_ATTRIBUTES = ["job-state", "job-printer-uri", "job-state-reasons"]


def parse_page_sizes(lpoptions_output: str) -> list[str]:
    """Extract supported page sizes from ``lpoptions -l`` output.

    The line looks like ``PageSize/Media Size: *A4 Env10 EnvC5 Letter``;
    the default size is prefixed with ``*``.

    Args:
        lpoptions_output: stdout of ``lpoptions -p <queue> -l``.

    Returns:
        list[str]: Page sizes in spooler order.
    """
    for line in lpoptions_output.splitlines():
        if line.startswith("PageSize/") or line.startswith("PageSize:"):
            _, _, sizes_part = line.partition(":")
            return [s.lstrip("*") for s in sizes_part.split() if s.lstrip("*")]
    return []


def parse_lpoptions(lpoptions_output: str) -> dict[str, str]:
    """Parse ``lpoptions -p <queue>`` output into a dict.

    Args:
        lpoptions_output: Space separated ``key=value`` pairs, values may be quoted.

    Returns:
        dict[str, str]: Option values.
    """
    options = {}
    try:
        tokens = shlex.split(lpoptions_output)
    except ValueError:
        return options
    for token in tokens:
        key, sep, value = token.partition("=")
        if sep:
            options[key] = value
    return options


def parse_job_handle(lp_output: str) -> int | None:
    """Extract the job handle from ``lp`` output.

    Args:
        lp_output: stdout of ``lp``.

    Returns:
        int | None: Job handle or None if not found.
    """
    match = _REQUEST_ID_RE.search(lp_output)
    return int(match.group("handle")) if match else None


def _queue_from_uri(uri: str | None) -> str | None:
    if not uri:
        return None
    return uri.rstrip("/").rsplit("/", 1)[-1]


def _history_state(alerts: str) -> SpoolerJobState:
    if "canceled" in alerts or "cancelled" in alerts:
        return SpoolerJobState.CANCELLED
    if "aborted" in alerts or "stopped" in alerts:
        return SpoolerJobState.ABORTED
    return SpoolerJobState.COMPLETED


def parse_lpstat_jobs(lpstat_output: str, stable_id: str, completed: bool) -> list[SpoolerJob]:
    """Parse ``lpstat -l -W <which> -o <queue>`` output.

    Each job starts with a ``Queue-123 user size date`` line, followed by
    indented detail lines. For finished jobs the ``Alerts:`` line tells how
    the job ended, e.g. ``job-completed-successfully`` or ``job-canceled-by-user``.

    Args:
        lpstat_output: stdout of lpstat.
        stable_id: Queue the jobs were requested for.
        completed: Whether the output lists the job history.

    Returns:
        list[SpoolerJob]: Jobs of the queue.
    """
    jobs = []
    current = None
    for line in lpstat_output.splitlines():
        if not line.strip():
            continue
        if not line[0].isspace():
            current = None
            queue, _, handle = line.split()[0].rpartition("-")
            if queue == stable_id and handle.isdigit():
                state = SpoolerJobState.COMPLETED if completed else SpoolerJobState.PENDING
                current = SpoolerJob(handle=int(handle), state=state)
                jobs.append(current)
            continue
        key, _, value = line.strip().partition(":")
        if current is not None and key == "Alerts" and value.strip():
            current.reason = value.strip()
            if completed:
                current.state = _history_state(current.reason)
    return jobs


class CupsSpooler:
    """Wrapper for CUPS queue, submission and job-state operations."""

    def __init__(self):
        """Initialize CUPS connection."""
        self._connection = None

        if CUPS_AVAILABLE:
            try:
                self._connection = cups.Connection()
            except RuntimeError as e:
                logger.error(f"Could not connect to CUPS: {e}")

    @property
    def is_available(self) -> bool:
        """Check if CUPS is available and connected.

        Returns:
            bool: True if CUPS is available.
        """
        return self._connection is not None or self._check_lp_available()

    def _check_lp_available(self) -> bool:
        """Check if lp command is available (fallback).

        Returns:
            bool: True if lp command exists.
        """
        try:
            result = subprocess.run(["which", "lp"], capture_output=True, text=True, timeout=5)
            return result.returncode == 0
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return False

    def _run(self, cmd: list[str], timeout: int = 10) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as err:
            raise SpoolerError(f"{cmd[0]} command timed out") from err
        except FileNotFoundError as err:
            raise SpoolerError(f"{cmd[0]} command not found - is CUPS installed?") from err

    # ------------------------------------------------------------------
    # Printers
    # ------------------------------------------------------------------

    def get_printers(self) -> list[Printer]:
        """Enumerate the local print queues.

        Returns:
            list[Printer]: Printers known to CUPS.
        """
        if self._connection:
            try:
                printers = self._connection.getPrinters()
            except cups.IPPError as e:
                raise SpoolerError(f"Error getting printers: {e}") from e
            return [
                Printer(
                    display_name=info.get("printer-info") or queue,
                    stable_id=queue,
                    uri=info.get("device-uri") or None,
                    description=info.get("printer-info", ""),
                    location=info.get("printer-location", ""),
                    driver_info=info.get("printer-make-and-model", ""),
                    media_sizes=self._get_media_sizes(queue),
                )
                for queue, info in printers.items()
            ]

        # Fallback: use lpstat / lpoptions
        result = self._run(["lpstat", "-p"])
        printers = []
        for line in result.stdout.strip().split("\n"):
            if line.startswith("printer "):
                parts = line.split()
                if len(parts) >= 2:
                    printers.append(self._describe_queue(parts[1]))
        return printers

    def _describe_queue(self, queue: str) -> Printer:
        result = self._run(["lpoptions", "-p", queue])
        options = parse_lpoptions(result.stdout) if result.returncode == 0 else {}
        return Printer(
            display_name=options.get("printer-info") or queue,
            stable_id=queue,
            uri=options.get("device-uri") or None,
            description=options.get("printer-info", ""),
            location=options.get("printer-location", ""),
            driver_info=options.get("printer-make-and-model", ""),
            media_sizes=self._query_page_sizes(queue),
        )

    def _get_media_sizes(self, queue: str) -> list[str]:
        try:
            attrs = self._connection.getPrinterAttributes(
                queue, requested_attributes=["media-supported"]
            )
        except cups.IPPError as e:
            logger.debug(f"media-supported not available for {queue}: {e}")
            return self._query_page_sizes(queue)
        media = attrs.get("media-supported") or []
        if isinstance(media, str):
            media = [media]
        return list(media) or self._query_page_sizes(queue)

    def _query_page_sizes(self, queue: str) -> list[str]:
        try:
            result = self._run(["lpoptions", "-p", queue, "-l"])
        except SpoolerError as e:
            logger.debug(f"lpoptions failed for {queue}: {e}")
            return []
        if result.returncode != 0:
            logger.debug(f"lpoptions returned {result.returncode} for {queue}: {result.stderr}")
            return []
        return parse_page_sizes(result.stdout)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def print_file(self, stable_id: str, path: Path, title: str) -> int:
        """Submit a file to a CUPS queue.

        Args:
            stable_id: Queue name.
            path: File to print.
            title: Print job title.

        Returns:
            int: CUPS job id.

        Raises:
            PrinterNotFoundError: If the queue does not exist.
            SpoolerError: If printing fails.
        """
        if self._connection:
            try:
                if stable_id not in self._connection.getPrinters():
                    raise PrinterNotFoundError(f"Printer '{stable_id}' not found")
                handle = self._connection.printFile(stable_id, str(path), title, {})
            except cups.IPPError as e:
                raise SpoolerError(f"Print to {stable_id} failed: {e}") from e
            logger.info(f"Print job {handle} submitted to {stable_id}")
            return handle

        # Fallback to lp command
        result = self._run(["lp", "-d", stable_id, "-t", title, str(path)], timeout=30)
        if result.returncode != 0:
            if "does not exist" in result.stderr or "Unknown destination" in result.stderr:
                raise PrinterNotFoundError(f"Printer '{stable_id}' not found")
            raise SpoolerError(f"lp command failed: {result.stderr.strip()}")

        handle = parse_job_handle(result.stdout)
        if handle is None:
            raise SpoolerError(f"Could not parse job id from lp output: {result.stdout.strip()}")
        logger.info(f"Print job {handle} submitted via lp to {stable_id}")
        return handle

    # ------------------------------------------------------------------
    # Job state
    # ------------------------------------------------------------------

    def get_jobs(self, stable_id: str, completed: bool = False) -> list[SpoolerJob]:
        """List active or completed jobs of a queue.

        Args:
            stable_id: Queue name.
            completed: List job history instead of active jobs.

        Returns:
            list[SpoolerJob]: Jobs of the queue.
        """
        which = "completed" if completed else "not-completed"

        if self._connection:
            try:
                jobs = self._connection.getJobs(
                    which_jobs=which, requested_attributes=_JOB_ATTRIBUTES
                )
            except cups.IPPError as e:
                raise SpoolerError(f"Error getting {which} jobs: {e}") from e
            result = []
            for handle, attrs in jobs.items():
                if _queue_from_uri(attrs.get("job-printer-uri")) != stable_id:
                    continue
                reasons = attrs.get("job-state-reasons")
                if isinstance(reasons, list):
                    reasons = ", ".join(reasons)
                result.append(
                    SpoolerJob(
                        handle=handle,
                        state=SpoolerJobState.from_ipp(attrs.get("job-state", 3)),
                        reason=reasons,
                    )
                )
            return result

        # Fallback: the long listing carries the alerts that tell how a job ended
        result = self._run(["lpstat", "-l", "-W", which, "-o", stable_id])
        return parse_lpstat_jobs(result.stdout, stable_id, completed)
