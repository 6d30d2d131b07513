"""Domain models shared by the synchronizer, the job tracker and the ingestion loops."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class Printer(BaseModel):
    """A local print queue as known to this agent.

    Attributes:
        display_name: Human-facing name, not guaranteed stable.
        stable_id: Spooler queue name, the reconciliation key.
        uri: Device URI reported by the spooler.
        description: Free-text description.
        location: Free-text location.
        driver_info: Make and model / driver name.
        media_sizes: Supported page sizes, in spooler order.
        remote_id: Id assigned by the remote directory, None until created there.
    """

    display_name: str
    stable_id: str
    uri: str | None = None
    description: str = ""
    location: str = ""
    driver_info: str = ""
    media_sizes: list[str] = Field(default_factory=list)
    remote_id: int | None = None

    def differs_from(self, other: "Printer") -> bool:
        """Check whether any field mirrored in the remote directory differs.

        Args:
            other: Previously synced version of this printer.

        Returns:
            bool: True if the remote record needs an update.
        """
        return (
            self.display_name != other.display_name
            or self.uri != other.uri
            or self.description != other.description
            or self.location != other.location
            or self.driver_info != other.driver_info
            or self.media_sizes != other.media_sizes
            or self.remote_id != other.remote_id
        )


class JobStatus(str, Enum):
    """Print job lifecycle status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class SpoolerJobState(str, Enum):
    """Job state vocabulary of the local spooler (IPP job-state)."""

    PENDING = "pending"
    HELD = "held"
    PROCESSING = "processing"
    STOPPED = "stopped"
    CANCELLED = "cancelled"
    ABORTED = "aborted"
    COMPLETED = "completed"

    @classmethod
    def from_ipp(cls, code: int) -> "SpoolerJobState":
        """Convert an IPP job-state enum value (3-9).

        Args:
            code: IPP job-state value.

        Returns:
            SpoolerJobState: Matching state; unknown codes count as pending.
        """
        return _IPP_JOB_STATES.get(code, cls.PENDING)


_IPP_JOB_STATES = {
    3: SpoolerJobState.PENDING,
    4: SpoolerJobState.HELD,
    5: SpoolerJobState.PROCESSING,
    6: SpoolerJobState.STOPPED,
    7: SpoolerJobState.CANCELLED,
    8: SpoolerJobState.ABORTED,
    9: SpoolerJobState.COMPLETED,
}

# A stopped job can be resumed by an operator, so it is still in progress.
_STATUS_BY_SPOOLER_STATE = {
    SpoolerJobState.PENDING: JobStatus.PROCESSING,
    SpoolerJobState.HELD: JobStatus.PROCESSING,
    SpoolerJobState.PROCESSING: JobStatus.PROCESSING,
    SpoolerJobState.STOPPED: JobStatus.PROCESSING,
    SpoolerJobState.CANCELLED: JobStatus.CANCELLED,
    SpoolerJobState.ABORTED: JobStatus.FAILED,
    SpoolerJobState.COMPLETED: JobStatus.COMPLETED,
}


def map_spooler_state(state: SpoolerJobState) -> JobStatus:
    """Map a spooler job state onto the lifecycle status model.

    Args:
        state: State reported by the local spooler.

    Returns:
        JobStatus: Lifecycle status to report upstream.
    """
    return _STATUS_BY_SPOOLER_STATE[state]


@dataclass
class SpoolerJob:
    """A job entry as listed by the local spooler."""

    handle: int
    state: SpoolerJobState
    reason: str | None = None


@dataclass
class PrinterRef:
    """Printer relationship embedded in a remote job."""

    remote_id: int | None = None
    name: str | None = None
    stable_id: str | None = None
    spooler_name: str | None = None


@dataclass
class PrintJob:
    """A unit of work originating from the remote service."""

    job_id: int
    payload_ref: str
    remote_printer_id: int | None = None
    printer: PrinterRef | None = None
    status: JobStatus | None = None
    local_handle: int | None = None
    is_completed: bool = False

    @property
    def is_in_flight(self) -> bool:
        """Whether the remote record says this job was already submitted and is still open."""
        return (
            self.local_handle is not None
            and self.status is not None
            and not self.status.is_terminal
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InFlightJob:
    """Bookkeeping for a job between local submission and a terminal state."""

    job_id: int
    local_handle: int
    printer_stable_id: str
    submitted_at: datetime = field(default_factory=utcnow)
    last_reported_status: JobStatus | None = None

    def age_seconds(self, now: datetime | None = None) -> float:
        return ((now or utcnow()) - self.submitted_at).total_seconds()
