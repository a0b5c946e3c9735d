"""Engine settings."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from ._hashing import sha256_text
from ._target import ErrorPolicy, StorageFormat

if TYPE_CHECKING:
    from ._target import Target


class Settings(BaseModel):
    """Pipeline-wide options.

    Per-target options (format, error policy, seed, timeout) override the
    defaults here when set on the target.

    Attributes:
        default_error_policy: Error policy for targets that do not set one.
        default_format: Storage format for targets that do not set one.
        worker_concurrency: Number of targets evaluated in parallel (1 = sequential).
        default_value_on_error: Sentinel stored for failed substitute-default targets.
        store: Directory holding the fingerprint and object stores.
        seed: Global seed from which per-target seeds are derived.
        target_timeout: Evaluation timeout in seconds for targets that do not set one.

    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_error_policy: ErrorPolicy = ErrorPolicy.FAIL_PIPELINE
    default_format: StorageFormat = StorageFormat.MEMORY
    worker_concurrency: int = Field(default=1, ge=1)
    default_value_on_error: Any = None
    store: Path = Path(".pipewright")
    seed: int = 0
    target_timeout: float | None = Field(default=None, gt=0)

    def format_for(self, target: Target) -> StorageFormat:
        """Effective storage format of a target."""
        return target.format or self.default_format

    def error_policy_for(self, target: Target) -> ErrorPolicy:
        """Effective error policy of a target."""
        return target.error or self.default_error_policy

    def timeout_for(self, target: Target) -> float | None:
        """Effective evaluation timeout of a target."""
        return target.timeout if target.timeout is not None else self.target_timeout

    def seed_for(self, target: Target) -> int:
        """Effective seed of a target.

        Targets without an explicit seed get one derived from the global seed
        and the target name, so it is stable across runs and distinct per target.
        """
        if target.seed is not None:
            return target.seed
        digest = sha256_text(f"{self.seed}:{target.name}").split(":", 1)[1]
        return int(digest[:8], 16) & 0x7FFFFFFF
