"""Object store: computed results keyed by target name."""

from __future__ import annotations

import logging
import os
import pickle
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from pipewright._errors import FileTrackingError, NotFoundError, StorageIOError
from pipewright._hashing import combine_hashes, sha256_bytes, sha256_path
from pipewright._records import EntryKind, ObjectEntry
from pipewright._target import StorageFormat

from ._atomic import atomic_write_bytes
from ._locks import KeyedLocks

logger = logging.getLogger(__name__)


def _coerce_paths(name: str, value: Any) -> tuple[tuple[str, ...], bool]:
    """Interpret a file-format command result as one or more paths.

    Returns:
        The paths as strings, and whether the result was a sequence.

    """
    if isinstance(value, (str, os.PathLike)):
        return (os.fspath(value),), False
    if isinstance(value, (list, tuple)) and value and all(isinstance(v, (str, os.PathLike)) for v in value):
        return tuple(os.fspath(v) for v in value), True
    msg = f"file-format command must return a path or a list of paths, got {type(value).__name__}"
    raise FileTrackingError(name, msg)


def _hash_paths(paths: tuple[str, ...]) -> str:
    """Hash the contents of one or more paths.

    Raises:
        FileNotFoundError: If a path does not exist.

    """
    digests = [sha256_path(Path(p)) for p in paths]
    if len(digests) == 1:
        return digests[0]
    return combine_hashes(digests)


class ObjectStore:
    """Persistence of computed results.

    Layout under ``root``:
    - ``<name>.json``: entry metadata (kind, content hash, tracked paths)
    - ``<name>.pkl``: pickled value, for value entries only

    Safe to use from several threads. Operations on the same name are
    serialized; different names proceed independently.
    """

    def __init__(self, root: Path, locks: KeyedLocks | None = None) -> None:
        self.root = root
        self._locks = locks or KeyedLocks()

    def _meta_path(self, name: str) -> Path:
        return self.root / f"{name}.json"

    def _payload_path(self, name: str) -> Path:
        return self.root / f"{name}.pkl"

    def _put_entry(self, name: str, entry: ObjectEntry, payload: bytes | None) -> None:
        try:
            if payload is not None:
                atomic_write_bytes(self._payload_path(name), payload)
            else:
                self._payload_path(name).unlink(missing_ok=True)
            atomic_write_bytes(self._meta_path(name), entry.model_dump_json(indent=2).encode("utf-8"))
        except OSError as e:
            raise StorageIOError(name, str(e)) from e

    def write(self, name: str, value: Any, format: StorageFormat) -> ObjectEntry:  # noqa: A002
        """Store a target's result.

        For the memory format the value is pickled. For the file format the
        value must be a path (or list of paths); the content hash is recorded
        and the files are left in place.

        Returns:
            The stored entry.

        Raises:
            FileTrackingError: If a file-format value is not a path or the path does not exist.
            StorageIOError: If the value cannot be serialized or written.

        """
        if format == StorageFormat.FILE:
            paths, multiple = _coerce_paths(name, value)
            try:
                content_hash = _hash_paths(paths)
            except FileNotFoundError as e:
                msg = f"tracked path does not exist: {e.filename}"
                raise FileTrackingError(name, msg) from e
            entry = ObjectEntry(
                kind=EntryKind.FILE,
                content_hash=content_hash,
                paths=paths,
                multiple=multiple,
                written_at=datetime.now(UTC),
            )
            payload = None
        else:
            try:
                payload = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
            except (pickle.PicklingError, TypeError, AttributeError) as e:
                msg = f"cannot serialize value: {e}"
                raise StorageIOError(name, msg) from e
            entry = ObjectEntry(
                kind=EntryKind.VALUE,
                content_hash=sha256_bytes(payload),
                written_at=datetime.now(UTC),
            )

        with self._locks.hold(name):
            self._put_entry(name, entry, payload)
        logger.debug("Stored %s entry for %s (%s)", entry.kind, name, entry.content_hash)
        return entry

    def write_sentinel(self, name: str, value: Any) -> ObjectEntry:
        """Store an error sentinel as a plain value entry, whatever the target's format."""
        return self.write(name, value, StorageFormat.MEMORY)

    def entry(self, name: str) -> ObjectEntry | None:
        """Get the entry metadata for a target, or None if nothing is stored.

        Raises:
            StorageIOError: If the metadata exists but cannot be read or parsed.

        """
        with self._locks.hold(name):
            try:
                data = self._meta_path(name).read_bytes()
            except FileNotFoundError:
                return None
            except OSError as e:
                raise StorageIOError(name, str(e)) from e
        try:
            return ObjectEntry.model_validate_json(data)
        except ValidationError as e:
            msg = "corrupt object entry"
            raise StorageIOError(name, msg) from e

    def exists(self, name: str) -> bool:
        """Check whether a result is stored for a target."""
        return self._meta_path(name).is_file()

    def read(self, name: str) -> Any:
        """Read a target's stored result.

        Returns:
            The unpickled value for value entries; the path (or list of paths)
            for file entries.

        Raises:
            NotFoundError: If no result has ever been stored.
            StorageIOError: If the stored data cannot be read.

        """
        with self._locks.hold(name):
            entry = self.entry(name)
            if entry is None:
                raise NotFoundError(name)
            if entry.kind == EntryKind.FILE:
                return list(entry.paths) if entry.multiple else entry.paths[0]
            try:
                payload = self._payload_path(name).read_bytes()
            except OSError as e:
                raise StorageIOError(name, str(e)) from e
        try:
            return pickle.loads(payload)  # noqa: S301 - payloads are written by this store
        except (pickle.UnpicklingError, EOFError, AttributeError, ImportError) as e:
            msg = f"cannot deserialize value: {e}"
            raise StorageIOError(name, msg) from e

    def current_file_hash(self, name: str) -> str | None:
        """Re-hash the files tracked by a file entry as they are on disk now.

        Returns:
            The current content hash, or None if a tracked path no longer exists.

        Raises:
            NotFoundError: If there is no entry for the target.

        """
        entry = self.entry(name)
        if entry is None:
            raise NotFoundError(name)
        try:
            return _hash_paths(entry.paths)
        except FileNotFoundError:
            return None

    def remove(self, name: str) -> bool:
        """Delete a target's stored result. Tracked files are left alone.

        Returns:
            True if an entry was removed.

        """
        with self._locks.hold(name):
            existed = self._meta_path(name).is_file()
            try:
                self._meta_path(name).unlink(missing_ok=True)
                self._payload_path(name).unlink(missing_ok=True)
            except OSError as e:
                raise StorageIOError(name, str(e)) from e
        if existed:
            logger.debug("Removed object entry for %s", name)
        return existed

    def names(self) -> list[str]:
        """Names of all targets with a stored result."""
        if not self.root.is_dir():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))
