"""Persistence of the lookup index: full reads, atomic rewrites and a writer lock."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from typing import Iterator

from common.errors import ConfigurationError, IndexLockedError
from common.logging_utils import extra_context, Timer
from lookup.models import LookupIndex

logger = logging.getLogger(__name__)


class IndexStore:
    """Reads and writes ``index.lookup.json``.

    The previous file is only replaced once the new content is fully written
    to a temporary file in the same directory, so an interrupted run never
    leaves a truncated index behind.
    """

    def __init__(self, path: str):
        self.path = path
        self.lock_path = f"{path}.lock"

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def load(self, required: bool = True) -> LookupIndex:
        """Load the index; an absent file is fatal unless ``required`` is False.

        Raises:
            ConfigurationError: missing (when required) or unreadable index.
        """
        if not self.exists():
            if required:
                raise ConfigurationError(
                    f"Lookup index not found: {self.path}. Run the 'analyze' stage first."
                )
            return LookupIndex()
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot read lookup index {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Lookup index {self.path} is not a JSON object")
        index = LookupIndex.from_dict(data)
        logger.info("Loaded %d packages from %s", len(index.packages), self.path)
        return index

    def save(self, index: LookupIndex) -> None:
        """Atomically replace the index file."""
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        with Timer() as timer:
            fd, tmp_path = tempfile.mkstemp(prefix=".index-", suffix=".tmp", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(index.to_dict(), handle, indent=2)
                    handle.write("\n")
                os.replace(tmp_path, self.path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.remove(tmp_path)
                raise
        logger.info(
            "Lookup index saved: %s (%d packages, %d URL mappings)",
            self.path,
            len(index.packages),
            len(index.url_to_file),
            extra=extra_context(
                event="index_write",
                component="index_store",
                action="save",
                outcome="success",
                duration_ms=timer.duration_ms(),
            ),
        )

    @contextlib.contextmanager
    def lock(self) -> Iterator[None]:
        """Hold the single-writer lock for the duration of a stage.

        Raises:
            IndexLockedError: another process holds the lock.
        """
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as exc:
            raise IndexLockedError(
                f"Lookup index is locked by another run ({self.lock_path}); "
                "remove the lock file if no other run is active"
            ) from exc
        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
            os.close(fd)
            yield
        finally:
            with contextlib.suppress(OSError):
                os.remove(self.lock_path)

