"""Persistent stores for fingerprints and results.

The store handle is opened once per operation and passed explicitly to the
invalidation engine and the scheduler. There is no process-wide store.

Layout::

    <root>/
      meta/<name>.json      fingerprint records
      objects/<name>.json   object entry metadata
      objects/<name>.pkl    pickled values
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from pipewright._errors import StorageIOError

from ._fingerprints import FingerprintStore
from ._locks import KeyedLocks
from ._objects import ObjectStore

if TYPE_CHECKING:
    from collections.abc import Iterable
    from types import TracebackType
    from typing import Self

logger = logging.getLogger(__name__)

DEFAULT_STORE_DIR = ".pipewright"

__all__ = [
    "DEFAULT_STORE_DIR",
    "FingerprintStore",
    "KeyedLocks",
    "ObjectStore",
    "PipelineStore",
    "open_store",
]


class PipelineStore:
    """Handle bundling the fingerprint store and the object store of one pipeline."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.fingerprints = FingerprintStore(root / "meta", KeyedLocks())
        self.objects = ObjectStore(root / "objects", KeyedLocks())
        self._closed = True

    @property
    def closed(self) -> bool:
        """True unless the store is open."""
        return self._closed

    def open(self) -> Self:
        """Create the store layout if needed and mark the handle open."""
        try:
            self.fingerprints.root.mkdir(parents=True, exist_ok=True)
            self.objects.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(str(self.root), str(e)) from e
        self._closed = False
        logger.debug("Opened store at %s", self.root)
        return self

    def close(self) -> None:
        """Close the handle. Every write is already on disk when its call returns."""
        self._closed = True
        logger.debug("Closed store at %s", self.root)

    def __enter__(self) -> Self:
        """Open the store for the duration of a with-block."""
        if self._closed:
            self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Close the store."""
        self.close()

    def clear(self, names: Iterable[str] | None = None) -> list[str]:
        """Remove fingerprint records and stored results.

        Args:
            names: Targets to clear. None clears every stored target.

        Returns:
            Names for which something was removed.

        """
        if names is None:
            names = sorted(set(self.fingerprints.names()) | set(self.objects.names()))
        cleared: list[str] = []
        for name in names:
            removed_record = self.fingerprints.clear(name)
            removed_object = self.objects.remove(name)
            if removed_record or removed_object:
                cleared.append(name)
        logger.info("Cleared %d target(s)", len(cleared))
        return cleared

    def invalidate(self, names: Iterable[str]) -> list[str]:
        """Remove fingerprint records only, keeping stored results readable."""
        return [name for name in names if self.fingerprints.clear(name)]

    def destroy(self) -> None:
        """Delete the whole store directory."""
        self.close()
        if self.root.exists():
            try:
                shutil.rmtree(self.root)
            except OSError as e:
                raise StorageIOError(str(self.root), str(e)) from e
            logger.info("Destroyed store at %s", self.root)


def open_store(root: Path | str = DEFAULT_STORE_DIR) -> PipelineStore:
    """Open a pipeline store, creating it if needed.

    Example:
        >>> with open_store(".pipewright") as store:
        ...     store.objects.read("model")

    """
    return PipelineStore(Path(root)).open()
