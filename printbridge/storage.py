"""Persistence of the synced printer map (stable id -> last synced printer)."""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from printbridge.models import Printer

logger = logging.getLogger(__name__)


def printers_have_changed(current: dict[str, Printer], saved: dict[str, Printer]) -> bool:
    """Check whether two printer maps differ in any entry or field.

    Args:
        current: Map produced by the latest sync pass.
        saved: Map loaded from storage before the pass.

    Returns:
        bool: True if the maps differ.
    """
    if current.keys() != saved.keys():
        return True
    return any(current[stable_id] != saved[stable_id] for stable_id in current)


class PrinterStore:
    """JSON file holding the synced printer map, keyed by stable id.

    The agent is the only writer, so the map is read from disk once and then
    served from memory; ``save`` keeps the in-memory copy current.
    """

    def __init__(self, path: Path):
        self.path = path
        self._printers: dict[str, Printer] | None = None

    def load(self) -> dict[str, Printer]:
        """Load the synced printer map.

        Returns:
            dict[str, Printer]: Stored printers, empty if the file is missing or corrupt.
        """
        if self._printers is None:
            self._printers = self._read()
        return dict(self._printers)

    def _read(self) -> dict[str, Printer]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path) as f:
                data = json.load(f)
            return {
                stable_id: Printer.model_validate(entry) for stable_id, entry in data.items()
            }
        except (json.JSONDecodeError, AttributeError, ValidationError) as e:
            logger.warning(f"Error parsing printers file {self.path}: {e}. Using empty map.")
            return {}

    def save(self, printers: dict[str, Printer]) -> None:
        """Write the synced printer map.

        Args:
            printers: Map to persist.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {stable_id: printer.model_dump() for stable_id, printer in printers.items()}
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self.path)
        self._printers = dict(printers)
        logger.debug(f"Saved {len(printers)} printers to {self.path}")

    def save_if_changed(
        self, printers: dict[str, Printer], saved: dict[str, Printer]
    ) -> bool:
        """Write the map only if it differs from what was loaded.

        Args:
            printers: Map produced by the latest sync pass.
            saved: Map loaded before the pass.

        Returns:
            bool: True if the file was written.
        """
        if not printers_have_changed(printers, saved):
            return False
        self.save(printers)
        return True
