"""Run reports."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum, auto


class TargetStatus(StrEnum):
    """Outcome of a target in one run."""

    CURRENT = auto()  # Up to date, not executed
    BUILT = auto()  # Executed (possibly with a substituted value on error)
    ERRORED = auto()  # Executed and failed under the fail-pipeline policy
    ERRORED_UPSTREAM = "errored-upstream"  # Skipped because an ancestor errored
    CANCELLED = auto()  # Never started because the run was cancelled


@dataclass(frozen=True, slots=True)
class TargetOutcome:
    """What happened to one target during a run.

    Attributes:
        name: Target name.
        status: Outcome status.
        started_at: When evaluation started (None if not executed).
        finished_at: When evaluation finished (None if not executed).
        duration: Evaluation wall time in seconds.
        error: Error message, also set for built targets whose value was substituted.
        warnings: Warnings raised by the command.
        upstream: For errored-upstream targets, the errored ancestor.

    """

    name: str
    status: TargetStatus
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration: float = 0.0
    error: str | None = None
    warnings: tuple[str, ...] = ()
    upstream: str | None = None

    @property
    def substituted(self) -> bool:
        """True if the target was built with the error sentinel."""
        return self.status == TargetStatus.BUILT and self.error is not None


@dataclass(frozen=True, slots=True)
class RunReport:
    """Ordered log of per-target outcomes for one run.

    The report is returned even when targets errored; inspect it rather than
    relying on a single pass/fail signal.
    """

    outcomes: tuple[TargetOutcome, ...] = ()
    started_at: datetime | None = None
    finished_at: datetime | None = None
    cancelled: bool = False
    _by_name: dict[str, TargetOutcome] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Use object.__setattr__ since the dataclass is frozen
        object.__setattr__(self, "_by_name", {o.name: o for o in self.outcomes})

    @property
    def success(self) -> bool:
        """True if no target errored and the run was not cancelled."""
        return not self.cancelled and all(
            o.status in (TargetStatus.CURRENT, TargetStatus.BUILT) for o in self.outcomes
        )

    def outcome(self, name: str) -> TargetOutcome:
        """Get the outcome of a target.

        Raises:
            KeyError: If the target was not part of the run.

        """
        return self._by_name[name]

    def status_of(self, name: str) -> TargetStatus:
        """Get the status of a target."""
        return self.outcome(name).status

    def names_with(self, status: TargetStatus) -> list[str]:
        """Names of targets with the given status, in run order."""
        return [o.name for o in self.outcomes if o.status == status]

    @property
    def built(self) -> list[str]:
        """Names of built targets."""
        return self.names_with(TargetStatus.BUILT)

    @property
    def errored(self) -> list[str]:
        """Names of errored targets (not counting errored-upstream)."""
        return self.names_with(TargetStatus.ERRORED)

    def counts(self) -> dict[TargetStatus, int]:
        """Number of targets per status."""
        counter = Counter(o.status for o in self.outcomes)
        return {status: counter.get(status, 0) for status in TargetStatus}

    def __len__(self) -> int:
        """Return the number of targets in the report."""
        return len(self.outcomes)
