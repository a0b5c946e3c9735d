"""Fingerprint store: one JSON record per target."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from pipewright._errors import StorageIOError
from pipewright._records import FingerprintRecord

from ._atomic import atomic_write_bytes
from ._locks import KeyedLocks

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class FingerprintStore:
    """Key-value persistence of fingerprint records, surviving across runs.

    Each record is its own file, replaced atomically, so a crash while
    writing one target's record never touches another target's record.
    """

    def __init__(self, root: Path, locks: KeyedLocks | None = None) -> None:
        self.root = root
        self._locks = locks or KeyedLocks()

    def _path(self, name: str) -> Path:
        return self.root / f"{name}{_SUFFIX}"

    def get(self, name: str) -> FingerprintRecord | None:
        """Get the record for a target, or None if there is none.

        Raises:
            StorageIOError: If the record exists but cannot be read or parsed.

        """
        path = self._path(name)
        with self._locks.hold(name):
            try:
                data = path.read_bytes()
            except FileNotFoundError:
                return None
            except OSError as e:
                raise StorageIOError(name, str(e)) from e
        try:
            return FingerprintRecord.model_validate_json(data)
        except ValidationError as e:
            msg = f"corrupt fingerprint record at {path}"
            raise StorageIOError(name, msg) from e

    def put(self, name: str, record: FingerprintRecord) -> None:
        """Atomically replace the record for a target.

        Raises:
            StorageIOError: If the record cannot be written.

        """
        data = record.model_dump_json(indent=2).encode("utf-8")
        with self._locks.hold(name):
            try:
                atomic_write_bytes(self._path(name), data)
            except OSError as e:
                raise StorageIOError(name, str(e)) from e
        logger.debug("Stored fingerprint for %s", name)

    def clear(self, name: str) -> bool:
        """Remove the record for a target.

        Returns:
            True if a record was removed.

        """
        with self._locks.hold(name):
            try:
                self._path(name).unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageIOError(name, str(e)) from e
        logger.debug("Cleared fingerprint for %s", name)
        return True

    def names(self) -> list[str]:
        """Names of all targets with a record."""
        if not self.root.is_dir():
            return []
        return sorted(p.stem for p in self.root.glob(f"*{_SUFFIX}"))
