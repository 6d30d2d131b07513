"""Wire schemas for the remote print-job API and the push channel."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from printbridge.models import JobStatus, PrinterRef, Printer, PrintJob

# ============================================================================
# Printer directory
# ============================================================================


class RemotePrinter(BaseModel):
    """Printer record held by the remote directory."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    system_name: str | None = None
    uri: str | None = None
    description: str | None = None
    location: str | None = None
    make_and_model: str | None = None
    media_sizes: list[str] = Field(default_factory=list)
    spooler_name: str | None = None
    is_active: bool = True

    @field_validator("media_sizes", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []


class PrinterPayload(BaseModel):
    """Body sent when creating or updating a remote printer."""

    id: int | None = None
    name: str
    system_name: str
    uri: str | None = None
    description: str
    location: str
    make_and_model: str
    media_sizes: list[str]
    spooler_name: str
    is_active: bool = True

    @classmethod
    def from_printer(cls, printer: Printer, spooler_name: str) -> "PrinterPayload":
        """Build the remote representation of a local printer.

        Args:
            printer: Local printer.
            spooler_name: This agent's instance identity.

        Returns:
            PrinterPayload: Request body.
        """
        return cls(
            id=printer.remote_id,
            name=printer.display_name,
            system_name=printer.stable_id,
            uri=printer.uri,
            description=printer.description,
            location=printer.location,
            make_and_model=printer.driver_info,
            media_sizes=list(printer.media_sizes),
            spooler_name=spooler_name,
        )


# ============================================================================
# Print jobs
# ============================================================================


class RemoteJobPrinter(BaseModel):
    """Printer relationship included with a job (``include=printer``)."""

    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    name: str | None = None
    system_name: str | None = None
    spooler_name: str | None = None


class RemoteJob(BaseModel):
    """Print job record held by the remote service."""

    model_config = ConfigDict(extra="ignore")

    id: int
    media_id: str
    printer_id: int | None = None
    is_completed: bool = False
    status: str | None = None
    cups_job_id: int | None = None
    printer: RemoteJobPrinter | None = None

    @field_validator("media_id", mode="before")
    @classmethod
    def _media_id_as_str(cls, value):
        return str(value) if value is not None else value

    def to_print_job(self) -> PrintJob:
        """Convert to the domain model.

        Returns:
            PrintJob: Job description for the lifecycle tracker.
        """
        try:
            status = JobStatus(self.status) if self.status else None
        except ValueError:
            status = None

        printer_ref = None
        if self.printer is not None:
            printer_ref = PrinterRef(
                remote_id=self.printer.id,
                name=self.printer.name,
                stable_id=self.printer.system_name,
                spooler_name=self.printer.spooler_name,
            )

        return PrintJob(
            job_id=self.id,
            payload_ref=self.media_id,
            remote_printer_id=self.printer_id,
            printer=printer_ref,
            status=status,
            local_handle=self.cups_job_id,
            is_completed=self.is_completed,
        )


class JobPage(BaseModel):
    """Inner ``data`` object of a paginated job listing.

    Job records stay raw here so that one malformed record can be skipped
    without losing the rest of the page.
    """

    model_config = ConfigDict(extra="ignore")

    data: list[Any] = Field(default_factory=list)
    current_page: int | None = None
    last_page: int | None = None


class JobListResponse(BaseModel):
    """Envelope of ``GET /print-jobs``."""

    model_config = ConfigDict(extra="ignore")

    data: JobPage


class JobStatusUpdate(BaseModel):
    """Body of ``PUT /print-jobs``."""

    id: int
    is_completed: bool
    status: JobStatus
    cups_job_id: int | None = None
    error_message: str | None = None
    printed_at: str | None = None


# ============================================================================
# Push channel
# ============================================================================


class PushJobModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int


class PushJobCreated(BaseModel):
    """Payload of a ``PrintJobCreated`` event: ``{"model": {"id": 20}}``."""

    model_config = ConfigDict(extra="ignore")

    model: PushJobModel
