"""Tests for job polling, catch-up and push message dispatch."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from printbridge.exceptions import NotFoundError
from printbridge.ingestion import JobIngestion
from printbridge.jobs import InFlightRegistry, JobTracker
from printbridge.models import InFlightJob
from printbridge.push import CatchUpRequested, JobCreated, PushListener
from printbridge.schemas import RemoteJob, RemoteJobPrinter
from printbridge.sync import PrinterNames


def office_job(job_id, **kwargs):
    return RemoteJob(
        id=job_id,
        media_id=f"media-{job_id}",
        printer=RemoteJobPrinter(id=1, system_name="HP-Office", spooler_name="office"),
        **kwargs,
    )


@pytest.fixture
def registry():
    return InFlightRegistry()


@pytest.fixture
def ingestion(api, spooler, registry, store, shared_config, printer_factory):
    store.save({"HP-Office": printer_factory("HP-Office", remote_id=1)})
    tracker = JobTracker(
        api, spooler, registry, PrinterNames(["HP-Office"]), store, shared_config
    )
    return JobIngestion(api, tracker, shared_config)


class TestFetchPending:
    """Tests for pending job filtering."""

    @pytest.mark.asyncio
    async def test_filters_foreign_completed_and_in_flight_jobs(self, ingestion, api, registry):
        await registry.add(InFlightJob(job_id=5, local_handle=1, printer_stable_id="HP-Office"))
        api.list_pending_jobs.return_value = [
            office_job(1),
            office_job(2, is_completed=True),
            RemoteJob(
                id=3,
                media_id="m",
                printer=RemoteJobPrinter(id=9, spooler_name="warehouse"),
            ),
            office_job(4, cups_job_id=77, status="queued"),
            office_job(5),
            RemoteJob(id=6, media_id="m", printer_id=1),
        ]

        jobs = await ingestion.fetch_pending()

        assert [job.job_id for job in jobs] == [1, 6]


class TestPolling:
    """Tests for the polling and catch-up fetchers."""

    @pytest.mark.asyncio
    async def test_poll_once_submits_each_job(self, ingestion, api, backend):
        api.list_pending_jobs.return_value = [office_job(1), office_job(2)]

        assert await ingestion.poll_once() == 2
        assert [title for _, _, title in backend.submitted] == ["Print Job 1", "Print Job 2"]

    @pytest.mark.asyncio
    async def test_poll_once_without_jobs(self, ingestion, backend):
        assert await ingestion.poll_once() == 0
        assert backend.submitted == []

    @pytest.mark.asyncio
    async def test_concurrent_catch_up_and_poll_submit_each_job_once(
        self, ingestion, api, backend
    ):
        api.list_pending_jobs.return_value = [office_job(1), office_job(2)]
        api.get_job.return_value = office_job(1)

        results = await asyncio.gather(
            ingestion.poll_once(),
            ingestion.catch_up(),
            ingestion.dispatch_job(1),
        )

        assert sum(int(r) for r in results) == 2
        titles = sorted(title for _, _, title in backend.submitted)
        assert titles == ["Print Job 1", "Print Job 2"]

    @pytest.mark.asyncio
    async def test_next_poll_skips_submitted_jobs(self, ingestion, api, backend):
        api.list_pending_jobs.return_value = [office_job(1)]

        await ingestion.poll_once()
        await ingestion.poll_once()

        assert len(backend.submitted) == 1


class TestDispatchJob:
    """Tests for single job dispatch from push events."""

    @pytest.mark.asyncio
    async def test_dispatches_announced_job(self, ingestion, api, backend):
        api.get_job.return_value = office_job(20)

        assert await ingestion.dispatch_job(20) is True
        api.get_job.assert_awaited_once_with(20)
        assert backend.submitted[0][2] == "Print Job 20"

    @pytest.mark.asyncio
    async def test_deleted_job_is_skipped(self, ingestion, api, backend):
        api.get_job.side_effect = NotFoundError("gone", status_code=404)

        assert await ingestion.dispatch_job(20) is False
        assert backend.submitted == []

    @pytest.mark.asyncio
    async def test_completed_or_submitted_job_is_skipped(self, ingestion, api, backend):
        api.get_job.return_value = office_job(21, is_completed=True)
        assert await ingestion.dispatch_job(21) is False

        api.get_job.return_value = office_job(22, cups_job_id=5, status="processing")
        assert await ingestion.dispatch_job(22) is False
        assert backend.submitted == []


class TestConsume:
    """Tests for the push message dispatcher."""

    @pytest.mark.asyncio
    async def test_messages_are_dispatched_until_shutdown(self, ingestion):
        queue = asyncio.Queue()
        shutdown = asyncio.Event()

        with (
            patch.object(ingestion, "dispatch_job", AsyncMock(return_value=True)) as dispatch,
            patch.object(ingestion, "catch_up", AsyncMock(return_value=0)) as catch_up,
        ):
            consumer = asyncio.create_task(ingestion.consume(queue, shutdown))
            await queue.put(CatchUpRequested())
            await queue.put(JobCreated(20))
            await asyncio.sleep(0.05)

            shutdown.set()
            await asyncio.wait_for(consumer, timeout=1)

        catch_up.assert_awaited_once()
        dispatch.assert_awaited_once_with(20)

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_escape(self, ingestion):
        with patch.object(ingestion, "dispatch_job", AsyncMock(side_effect=RuntimeError("boom"))):
            await ingestion.handle_message(JobCreated(1))

    @pytest.mark.asyncio
    async def test_subscription_catch_up_submits_pending_jobs_once(
        self, ingestion, api, backend, shared_config
    ):
        api.list_pending_jobs.return_value = [office_job(1), office_job(2)]
        queue = asyncio.Queue()
        shutdown = asyncio.Event()
        listener = PushListener(shared_config, queue)

        consumer = asyncio.create_task(ingestion.consume(queue, shutdown))
        await listener.handle_message(
            MagicMock(), json.dumps({"event": "pusher_internal:subscription_succeeded"})
        )
        # A poll cycle racing the catch-up must not submit anything twice
        await ingestion.poll_once()
        await asyncio.sleep(0.05)
        shutdown.set()
        await asyncio.wait_for(consumer, timeout=1)

        titles = sorted(title for _, _, title in backend.submitted)
        assert titles == ["Print Job 1", "Print Job 2"]
