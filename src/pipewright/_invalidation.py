"""Invalidation engine: decide which targets are stale."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum, auto
from typing import TYPE_CHECKING

from ._errors import NotFoundError, StorageIOError
from ._records import EntryKind
from ._target import CueMode, StorageFormat

if TYPE_CHECKING:
    from collections.abc import Iterator

    from ._graph import PipelineGraph
    from ._records import FingerprintRecord
    from ._settings import Settings
    from ._store import PipelineStore

logger = logging.getLogger(__name__)


class TargetState(StrEnum):
    """Classification of a target before a run."""

    CURRENT = auto()
    OUTDATED = auto()
    ERRORED_PREVIOUSLY = "errored-previously"


@dataclass(frozen=True, slots=True)
class Classification:
    """Per-target states computed for one run. Read-only once computed.

    Attributes:
        states: State per target, in topological order.
        reasons: Why each non-current target needs to run.
        records: Fingerprint record per target as read from the store.

    """

    states: dict[str, TargetState] = field(default_factory=dict)
    reasons: dict[str, str] = field(default_factory=dict)
    records: dict[str, FingerprintRecord | None] = field(default_factory=dict)

    def __getitem__(self, name: str) -> TargetState:
        """Get the state of a target."""
        return self.states[name]

    def __iter__(self) -> Iterator[str]:
        """Iterate over target names in topological order."""
        return iter(self.states)

    def __len__(self) -> int:
        """Return the number of classified targets."""
        return len(self.states)

    @property
    def pending(self) -> list[str]:
        """Targets that need to run, in topological order."""
        return [name for name, state in self.states.items() if state != TargetState.CURRENT]


def _file_reason(store: PipelineStore, name: str, record: FingerprintRecord) -> str | None:
    """Check a file-tracked result against the files on disk."""
    entry = store.objects.entry(name)
    if entry is None:
        return "stored result missing"
    if entry.kind != EntryKind.FILE:
        # Substituted sentinel values are not tracked on disk
        return None
    try:
        current = store.objects.current_file_hash(name)
    except NotFoundError:
        return "stored result missing"
    if current is None:
        return "tracked file missing"
    if current != record.output_hash:
        return "tracked file changed"
    return None


def _stale_reason(  # noqa: PLR0911, PLR0913
    name: str,
    graph: PipelineGraph,
    settings: Settings,
    store: PipelineStore,
    record: FingerprintRecord,
    states: dict[str, TargetState],
    records: dict[str, FingerprintRecord | None],
) -> str | None:
    """Return why a target with a clean record is stale, or None if it is current."""
    tgt = graph.targets[name]
    fmt = settings.format_for(tgt)

    if fmt == StorageFormat.FILE:
        reason = _file_reason(store, name, record)
        if reason is not None:
            return reason
    elif not store.objects.exists(name):
        return "stored result missing"

    if record.command_hash != graph.command_hashes[name]:
        return "command changed"
    if record.format != fmt:
        return "format changed"
    if record.seed != settings.seed_for(tgt):
        return "seed changed"

    deps = graph.dependencies[name]
    for dep in deps:
        if states[dep] != TargetState.CURRENT:
            return f"dependency '{dep}' is {states[dep]}"

    if tuple(d.name for d in record.dependencies) != deps:
        return "dependencies changed"

    for recorded in record.dependencies:
        dep_record = records[recorded.name]
        if dep_record is None or dep_record.output_hash != recorded.output_hash:
            return f"dependency '{recorded.name}' changed"

    return None


def classify(graph: PipelineGraph, store: PipelineStore, settings: Settings) -> Classification:
    """Classify every target as current, outdated or errored-previously.

    Targets are visited in topological order because a target's staleness
    depends on its dependencies' states and recorded output hashes. Any
    non-current dependency makes a target outdated.

    This only reads from the store.

    Args:
        graph: The pipeline graph.
        store: The pipeline store.
        settings: Settings used to resolve per-target defaults.

    Returns:
        The classification of every target in the graph.

    """
    states: dict[str, TargetState] = {}
    reasons: dict[str, str] = {}
    records: dict[str, FingerprintRecord | None] = {}

    for name in graph.order:
        tgt = graph.targets[name]
        try:
            record = store.fingerprints.get(name)
        except StorageIOError as e:
            logger.warning("Ignoring unreadable fingerprint for %s: %s", name, e)
            record = None
        records[name] = record

        reason: str | None
        if tgt.cue == CueMode.ALWAYS:
            reason = "cue is 'always'"
        elif record is None:
            reason = "no previous record"
        elif record.failed:
            states[name] = TargetState.ERRORED_PREVIOUSLY
            reasons[name] = f"previous run errored: {record.error}"
            logger.debug("%s: errored previously", name)
            continue
        elif tgt.cue == CueMode.NEVER:
            reason = None if store.objects.exists(name) else "stored result missing"
        else:
            try:
                reason = _stale_reason(name, graph, settings, store, record, states, records)
            except StorageIOError as e:
                reason = f"unreadable store entry: {e}"

        if reason is None:
            states[name] = TargetState.CURRENT
            logger.debug("%s: current", name)
        else:
            states[name] = TargetState.OUTDATED
            reasons[name] = reason
            logger.debug("%s: outdated (%s)", name, reason)

    return Classification(states=states, reasons=reasons, records=records)
