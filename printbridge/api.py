"""Async client for the remote print-job directory service."""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from printbridge.config import SharedConfig
from printbridge.exceptions import ApiError, AuthenticationError, DecodeError, NotFoundError
from printbridge.models import JobStatus, Printer, utcnow
from printbridge.schemas import (
    JobListResponse,
    JobStatusUpdate,
    PrinterPayload,
    RemoteJob,
    RemotePrinter,
)

logger = logging.getLogger(__name__)


def _unwrap(body: Any) -> Any:
    """Strip the ``{"data": ...}`` envelopes the API wraps resources in."""
    while isinstance(body, dict) and "data" in body:
        body = body["data"]
    return body


def _extract_token(body: Any) -> str | None:
    if isinstance(body, dict):
        for key in ("token", "access_token"):
            if isinstance(body.get(key), str):
                return body[key]
        if "data" in body:
            return _extract_token(body["data"])
    return None


class RemoteApiClient:
    """Client for the remote printer directory and print-job API.

    Every request carries the bearer token from the shared config. A 401
    triggers one token refresh (when credentials are configured) and a retry.

    Attributes:
        config: Shared configuration holding connection details and the token.
    """

    def __init__(self, config: SharedConfig, client: httpx.AsyncClient | None = None):
        """Initialize the client.

        Args:
            config: Shared configuration.
            client: Optional pre-built httpx client (tests inject a mock transport).
        """
        self.config = config
        self._client = client or httpx.AsyncClient(timeout=config.snapshot().request_timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _headers(token: str | None, accept: str = "application/json") -> dict:
        """Get API request headers with authentication."""
        return {
            "Authorization": f"Bearer {token or ''}",
            "Accept": accept,
        }

    async def _request(
        self,
        method: str,
        path: str,
        accept: str = "application/json",
        retry_auth: bool = True,
        **kwargs,
    ) -> httpx.Response:
        """Send an authenticated request.

        Args:
            method: HTTP method.
            path: API path, appended to the configured base URL.
            accept: Accept header value.
            retry_auth: Refresh the token and retry once on 401.
            **kwargs: Passed to httpx (params, json, ...).

        Returns:
            httpx.Response: Successful response.

        Raises:
            NotFoundError: On 404.
            ApiError: On network errors and other non-2xx responses.
        """
        config = self.config.snapshot()
        token = config.api_token

        try:
            response = await self._client.request(
                method, config.api_url(path), headers=self._headers(token, accept), **kwargs
            )
        except httpx.HTTPError as e:
            raise ApiError(f"{method} {path} failed: {e}") from e

        if response.status_code == 401 and retry_auth and config.api_username:
            logger.info(f"{method} {path} unauthorized, refreshing API token")
            await self.refresh_token(previous=token)
            return await self._request(method, path, accept=accept, retry_auth=False, **kwargs)

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path}: not found", status_code=404)
        if response.is_error:
            raise ApiError(
                f"{method} {path} failed: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"Invalid JSON from {response.request.url}: {e}") from e

    async def refresh_token(self, previous: str | None) -> None:
        """Log in again and store the new token.

        Args:
            previous: Token the failing request was sent with.

        Raises:
            AuthenticationError: If login fails or returns no token.
        """
        config = self.config.snapshot()
        try:
            response = await self._client.post(
                config.api_url("/login"),
                headers={"Accept": "application/json"},
                json={"email": config.api_username, "password": config.api_password},
            )
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Login failed: {e}") from e

        if response.is_error:
            raise AuthenticationError(
                f"Login failed: {response.status_code}", status_code=response.status_code
            )

        token = _extract_token(self._json(response))
        if not token:
            raise AuthenticationError("Login response did not contain a token")

        if self.config.update_token(token, previous):
            logger.info("API token refreshed")

    # ------------------------------------------------------------------
    # Printer directory
    # ------------------------------------------------------------------

    async def list_printers(self) -> list[RemotePrinter]:
        """Fetch the active printers registered by this instance.

        Returns:
            list[RemotePrinter]: Remote printer records.
        """
        instance = self.config.snapshot().instance_name
        response = await self._request(
            "GET",
            "/printers",
            params={"filter[is_active]": "true", "filter[spooler_name]": instance},
        )
        records = _unwrap(self._json(response))
        if not isinstance(records, list):
            raise DecodeError(f"Unexpected printer list payload: {type(records).__name__}")
        try:
            printers = [RemotePrinter.model_validate(r) for r in records]
        except ValidationError as e:
            raise DecodeError(f"Invalid printer record: {e}") from e
        # The server filters too; this guards against servers that ignore filters
        return [p for p in printers if p.spooler_name in (None, instance)]

    async def create_printer(self, printer: Printer) -> int:
        """Register a printer remotely.

        Args:
            printer: Local printer.

        Returns:
            int: Id assigned by the remote directory.
        """
        instance = self.config.snapshot().instance_name
        payload = PrinterPayload.from_printer(printer, instance).model_dump(exclude={"id"})
        response = await self._request("POST", "/printers", json=payload)
        body = _unwrap(self._json(response))
        if not isinstance(body, dict) or not isinstance(body.get("id"), int):
            raise DecodeError(f"Create response for {printer.stable_id} has no printer id")
        return body["id"]

    async def update_printer(self, printer: Printer) -> None:
        """Update a remote printer record (id in body).

        Args:
            printer: Local printer with ``remote_id`` set.
        """
        if printer.remote_id is None:
            raise ValueError(f"Cannot update printer {printer.stable_id} without a remote id")
        instance = self.config.snapshot().instance_name
        payload = PrinterPayload.from_printer(printer, instance).model_dump()
        await self._request("PUT", "/printers", json=payload)

    async def delete_printer(self, remote_id: int) -> None:
        """Delete a remote printer record.

        Args:
            remote_id: Remote printer id.

        Raises:
            NotFoundError: If the record is already gone.
        """
        instance = self.config.snapshot().instance_name
        await self._request("DELETE", f"/printers/{remote_id}", json={"spooler_name": instance})

    # ------------------------------------------------------------------
    # Print jobs
    # ------------------------------------------------------------------

    async def list_pending_jobs(self) -> list[RemoteJob]:
        """Fetch all jobs not yet completed, following pagination.

        Returns:
            list[RemoteJob]: Pending jobs with their printer relationship.
        """
        instance = self.config.snapshot().instance_name
        jobs: list[RemoteJob] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                "/print-jobs",
                params={
                    "filter[is_completed]": "false",
                    "filter[printer.spooler_name]": instance,
                    "include": "printer",
                    "page": page,
                },
            )
            try:
                listing = JobListResponse.model_validate(self._json(response))
            except ValidationError as e:
                raise DecodeError(f"Invalid print job list: {e}") from e

            jobs.extend(self._decode_jobs(listing.data.data))
            if (
                listing.data.current_page is None
                or listing.data.last_page is None
                or listing.data.current_page >= listing.data.last_page
            ):
                return jobs
            page = listing.data.current_page + 1

    @staticmethod
    def _decode_jobs(records: list[Any]) -> list[RemoteJob]:
        jobs = []
        for record in records:
            try:
                jobs.append(RemoteJob.model_validate(record))
            except ValidationError as e:
                job_id = record.get("id") if isinstance(record, dict) else None
                logger.warning(f"Skipping malformed print job {job_id}: {e}")
        return jobs

    async def get_job(self, job_id: int) -> RemoteJob:
        """Fetch a single job.

        Args:
            job_id: Remote job id.

        Returns:
            RemoteJob: The job with its printer relationship.
        """
        response = await self._request(
            "GET", f"/print-jobs/{job_id}", params={"include": "printer"}
        )
        try:
            return RemoteJob.model_validate(_unwrap(self._json(response)))
        except ValidationError as e:
            raise DecodeError(f"Invalid print job {job_id}: {e}") from e

    async def update_job_status(
        self,
        job_id: int,
        status: JobStatus,
        local_handle: int | None = None,
        error_message: str | None = None,
    ) -> None:
        """Report a job status transition.

        Args:
            job_id: Remote job id.
            status: New lifecycle status.
            local_handle: Local spooler job handle, for traceability.
            error_message: Failure explanation.
        """
        update = JobStatusUpdate(
            id=job_id,
            is_completed=status.is_terminal,
            status=status,
            cups_job_id=local_handle,
            error_message=error_message,
            printed_at=utcnow().isoformat() if status == JobStatus.COMPLETED else None,
        )
        await self._request("PUT", "/print-jobs", json=update.model_dump(mode="json"))
        logger.info(f"Reported job {job_id} as {status.value}")

    async def download_media(self, media_id: str) -> bytes:
        """Download the file to print.

        Args:
            media_id: Media identifier of the job payload.

        Returns:
            bytes: Raw file contents.
        """
        response = await self._request(
            "GET", f"/media/private/{media_id}", accept="application/octet-stream"
        )
        return response.content

    async def authorize_channel(self, socket_id: str, channel: str) -> str:
        """Ask the remote auth endpoint to sign a private channel subscription.

        Args:
            socket_id: Socket id from the push connection handshake.
            channel: Channel name.

        Returns:
            str: ``auth`` value for the subscribe message.
        """
        config = self.config.snapshot()
        try:
            response = await self._client.post(
                config.push_auth_endpoint,
                headers=self._headers(config.api_token),
                json={"socket_id": socket_id, "channel_name": channel},
            )
        except httpx.HTTPError as e:
            raise ApiError(f"Channel authorization failed: {e}") from e
        if response.is_error:
            raise ApiError(
                f"Channel authorization failed: {response.status_code}",
                status_code=response.status_code,
            )
        body = self._json(response)
        if not isinstance(body, dict) or not isinstance(body.get("auth"), str):
            raise DecodeError("Channel authorization response has no auth value")
        return body["auth"]
