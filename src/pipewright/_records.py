"""Persisted record models.

Records are pydantic models so they serialize to JSON and validate on load.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic requires datetime at runtime
from enum import StrEnum, auto

from pydantic import BaseModel, ConfigDict

from ._target import StorageFormat  # noqa: TC001 - Pydantic requires StorageFormat at runtime


class DependencyHash(BaseModel):
    """A dependency name with the output hash it had when the dependent was built."""

    model_config = ConfigDict(frozen=True)

    name: str
    output_hash: str


class FingerprintRecord(BaseModel):
    """Last-known inputs and output of a target.

    The input fields (command hash, dependency hashes, format, seed) decide
    staleness. The output hash is what dependents record in their own
    fingerprints.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    command_hash: str
    dependencies: tuple[DependencyHash, ...] = ()
    format: StorageFormat
    seed: int
    output_hash: str | None = None
    error: str | None = None
    substituted: bool = False
    built_at: datetime
    duration: float = 0.0

    @property
    def failed(self) -> bool:
        """True if the last run errored and no substitute value was stored."""
        return self.error is not None and not self.substituted

    def same_inputs(self, other: FingerprintRecord) -> bool:
        """Exact comparison of everything that determines staleness."""
        return (
            self.command_hash == other.command_hash
            and self.dependencies == other.dependencies
            and self.format == other.format
            and self.seed == other.seed
        )


class EntryKind(StrEnum):
    """What an object store entry holds."""

    VALUE = auto()  # Pickled Python value
    FILE = auto()  # Tracked external file paths


class ObjectEntry(BaseModel):
    """Metadata of a stored result.

    For value entries the pickled payload lives next to this metadata.
    For file entries only the paths and their content hash are recorded;
    the files themselves stay where the command left them.
    """

    model_config = ConfigDict(frozen=True)

    kind: EntryKind
    content_hash: str
    paths: tuple[str, ...] = ()
    multiple: bool = False
    written_at: datetime
