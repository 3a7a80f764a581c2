"""Whole-file JSON persistence used by the file feedback backend."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Optional

logger = logging.getLogger("feedbackhub.filestore")


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


class JsonFileAccessor:
    """Read and rewrite a single JSON array on disk.

    There is no locking: every write replaces the whole file, so concurrent
    writers race and the last one wins.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def read_all(self) -> Optional[List[Any]]:
        """Return the stored array, or ``None`` when it is missing or unreadable."""

        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Could not read %s: %s", self._path, exc)
            return None

        try:
            data = json.loads(raw)
        except ValueError as exc:
            logger.warning("Ignoring unparseable JSON in %s: %s", self._path, exc)
            return None

        if not isinstance(data, list):
            logger.warning("Ignoring %s: expected a JSON array", self._path)
            return None
        return data

    def write_all(self, records: List[Any]) -> None:
        _ensure_directory(self._path)
        self._path.write_text(json.dumps(records, indent=2), encoding="utf-8")


__all__ = ["JsonFileAccessor"]
