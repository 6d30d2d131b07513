"""Printer directory synchronization between the local spooler and the remote directory."""

import asyncio
import logging

from printbridge.api import RemoteApiClient
from printbridge.exceptions import ApiError, DecodeError, NotFoundError
from printbridge.models import Printer
from printbridge.printing import SpoolerAdapter
from printbridge.schemas import RemotePrinter
from printbridge.storage import PrinterStore

logger = logging.getLogger(__name__)


class PrinterNames:
    """Stable ids of the printers currently available locally.

    Rebuilt wholesale by the synchronizer after every discovery pass and read
    by the job tracker for membership checks and fallback selection.
    """

    def __init__(self, names: list[str] | None = None):
        self._names: list[str] = sorted(set(names or []))
        self._lock = asyncio.Lock()

    async def replace(self, names) -> None:
        async with self._lock:
            self._names = sorted(set(names))

    async def snapshot(self) -> list[str]:
        """Return the printer ids, sorted."""
        async with self._lock:
            return list(self._names)

    async def contains(self, stable_id: str) -> bool:
        async with self._lock:
            return stable_id in self._names


class PrinterSynchronizer:
    """Keeps the remote printer directory consistent with the local spooler.

    A pass discovers local printers, reconciles them against the persisted
    synced map and the remote directory, issues the needed create, update and
    delete calls, and persists the resulting map when it changed.
    """

    def __init__(
        self,
        api: RemoteApiClient,
        spooler: SpoolerAdapter,
        store: PrinterStore,
        printer_names: PrinterNames,
    ):
        self.api = api
        self.spooler = spooler
        self.store = store
        self.printer_names = printer_names

    async def run_pass(self) -> dict[str, Printer]:
        """Discover local printers, synchronize them and persist the result.

        Returns:
            dict[str, Printer]: Synced printer map after this pass.

        Raises:
            SpoolerError: If the local spooler cannot be enumerated.
        """
        local = {p.stable_id: p for p in await self.spooler.discover_printers()}
        synced = self.store.load()

        try:
            updated = await self.synchronize(local, synced)
        except (ApiError, DecodeError) as e:
            # Keep the stored map untouched so removals are retried next pass
            logger.error(f"Error syncing printers with remote directory: {e}")
            updated = synced
        else:
            if self.store.save_if_changed(updated, synced):
                logger.info(f"Printer configuration updated ({len(updated)} printers)")
            else:
                logger.debug("Printer configuration unchanged")

        await self.printer_names.replace(local.keys())

        for stable_id in sorted(local.keys() - synced.keys()):
            logger.info(f"New printer discovered: {local[stable_id].display_name} ({stable_id})")

        return updated

    async def synchronize(
        self, local: dict[str, Printer], synced: dict[str, Printer]
    ) -> dict[str, Printer]:
        """Reconcile local printers with the synced map and the remote directory.

        Args:
            local: Printers currently reported by the spooler, keyed by stable id.
            synced: Last synced printer map, keyed by stable id.

        Returns:
            dict[str, Printer]: Updated synced map.

        Raises:
            ApiError: If the remote directory cannot be listed.
            DecodeError: If the remote listing is malformed.
        """
        remote = await self.api.list_printers()
        updated, legacy = self._resolve_remote_ids(local, synced, remote)

        created = await self._create_missing(updated)
        deleted = await self._delete_removed(local, synced, updated)
        changed = await self._update_changed(local, synced, updated, legacy, created)

        if created or deleted or changed:
            logger.info(
                f"Printer sync: {len(created)} created, {deleted} deleted, {changed} updated"
            )
        return updated

    def _resolve_remote_ids(
        self,
        local: dict[str, Printer],
        synced: dict[str, Printer],
        remote: list[RemotePrinter],
    ) -> tuple[dict[str, Printer], set[str]]:
        by_stable_id: dict[str, RemotePrinter] = {}
        by_name: dict[str, RemotePrinter] = {}
        for record in remote:
            if record.system_name:
                by_stable_id.setdefault(record.system_name, record)
            else:
                by_name.setdefault(record.name, record)

        updated: dict[str, Printer] = {}
        claimed: set[int] = set()
        legacy: set[str] = set()

        # Stable id matches claim their records before any name fallback runs
        for stable_id, printer in local.items():
            record = by_stable_id.get(stable_id)
            if record is not None:
                updated[stable_id] = printer.model_copy(update={"remote_id": record.id})
                claimed.add(record.id)

        for stable_id, printer in local.items():
            if stable_id in updated:
                continue
            record = by_name.get(printer.display_name)
            if record is not None and record.id not in claimed:
                logger.info(
                    f"Matched legacy remote printer {record.id} by name "
                    f"'{printer.display_name}', scheduling backfill"
                )
                updated[stable_id] = printer.model_copy(update={"remote_id": record.id})
                claimed.add(record.id)
                legacy.add(stable_id)
                continue
            previous = synced.get(stable_id)
            remote_id = previous.remote_id if previous is not None else None
            updated[stable_id] = printer.model_copy(update={"remote_id": remote_id})

        return updated, legacy

    async def _create_missing(self, updated: dict[str, Printer]) -> set[str]:
        created = set()
        for stable_id, printer in sorted(updated.items()):
            if printer.remote_id is not None:
                continue
            try:
                remote_id = await self.api.create_printer(printer)
            except (ApiError, DecodeError) as e:
                logger.error(f"Failed to create printer {stable_id} remotely: {e}")
                continue
            updated[stable_id] = printer.model_copy(update={"remote_id": remote_id})
            created.add(stable_id)
            logger.info(f"Created printer {stable_id} remotely with id {remote_id}")
        return created

    async def _delete_removed(
        self,
        local: dict[str, Printer],
        synced: dict[str, Printer],
        updated: dict[str, Printer],
    ) -> int:
        deleted = 0
        for stable_id in sorted(synced.keys() - local.keys()):
            previous = synced[stable_id]
            if previous.remote_id is None:
                logger.debug(f"Removed printer {stable_id} was never created remotely")
                continue
            try:
                await self.api.delete_printer(previous.remote_id)
            except NotFoundError:
                logger.info(f"Printer {stable_id} (id {previous.remote_id}) already deleted")
            except ApiError as e:
                logger.error(
                    f"Failed to delete printer {stable_id} (id {previous.remote_id}): {e}"
                )
                # Stays in the map so the next pass retries the removal
                updated[stable_id] = previous
                continue
            else:
                logger.info(f"Deleted printer {stable_id} (id {previous.remote_id}) remotely")
            deleted += 1
        return deleted

    async def _update_changed(
        self,
        local: dict[str, Printer],
        synced: dict[str, Printer],
        updated: dict[str, Printer],
        legacy: set[str],
        created: set[str],
    ) -> int:
        changed = 0
        for stable_id in sorted(local):
            printer = updated[stable_id]
            if printer.remote_id is None or stable_id in created:
                continue
            previous = synced.get(stable_id)
            if stable_id not in legacy and (previous is None or not printer.differs_from(previous)):
                continue
            try:
                await self.api.update_printer(printer)
            except ApiError as e:
                logger.error(f"Failed to update printer {stable_id} remotely: {e}")
                if previous is not None:
                    # Keep the old fields so the next pass sees the difference again
                    updated[stable_id] = previous
                continue
            changed += 1
            logger.info(f"Updated printer {stable_id} remotely")
        return changed
