"""Scheduler: execute stale targets in dependency order."""

from __future__ import annotations

import heapq
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from ._context import capture_warnings, evaluation_context
from ._errors import EvaluatorError, NotFoundError, StorageIOError, TargetTimeoutError
from ._evaluator import PythonEvaluator
from ._records import DependencyHash, FingerprintRecord
from ._report import RunReport, TargetOutcome, TargetStatus
from ._target import ErrorPolicy

if TYPE_CHECKING:
    from collections.abc import Callable

    from ._evaluator import Evaluator
    from ._graph import PipelineGraph
    from ._invalidation import Classification
    from ._settings import Settings
    from ._store import PipelineStore
    from ._target import Target

logger = logging.getLogger(__name__)

# How often the scheduling loop wakes up to check for cancellation
_POLL_INTERVAL = 0.1


def _call_with_timeout(func: Callable[[], Any], timeout: float | None, name: str) -> Any:
    """Run ``func``, giving up after ``timeout`` seconds.

    The call runs in a helper thread. On timeout the thread is abandoned and
    whatever it eventually returns is dropped.

    Raises:
        TargetTimeoutError: If the call did not finish in time.

    """
    if timeout is None:
        return func()

    result: dict[str, Any] = {}

    def runner() -> None:
        try:
            result["value"] = func()
        except BaseException as e:  # noqa: BLE001 - re-raised in the calling thread
            result["error"] = e

    thread = threading.Thread(target=runner, name=f"pipewright-timeout-{name}", daemon=True)
    thread.start()
    thread.join(timeout)
    if thread.is_alive():
        msg = f"evaluation exceeded the timeout of {timeout:g}s"
        raise TargetTimeoutError(name, msg)
    if "error" in result:
        raise result["error"]
    return result["value"]


def _describe(e: BaseException) -> str:
    if isinstance(e, EvaluatorError):
        return e.message
    return f"{type(e).__name__}: {e}"


class Scheduler:
    """Execute outdated targets on a bounded worker pool.

    A target is submitted once all of its dependencies have finished. Among
    ready targets, the one earliest in topological order starts first.

    Example:
        >>> with open_store(".pipewright") as store:
        ...     graph = build_graph(targets)
        ...     report = Scheduler(store, settings).run(graph, classify(graph, store, settings))

    """

    def __init__(
        self,
        store: PipelineStore,
        settings: Settings,
        evaluator: Evaluator | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.evaluator = evaluator or PythonEvaluator()
        self.cancel_event = cancel_event or threading.Event()
        self._output_hashes: dict[str, str | None] = {}
        self._hash_lock = threading.Lock()

    def run(self, graph: PipelineGraph, classification: Classification) -> RunReport:
        """Execute every non-current target of ``classification``.

        Returns:
            The run report. It is returned even when targets errored.

        """
        started_at = datetime.now(UTC)
        concurrency = self.settings.worker_concurrency
        index = {name: i for i, name in enumerate(graph.order)}

        self._output_hashes = {
            name: (record.output_hash if record is not None else None)
            for name, record in classification.records.items()
        }

        outcomes: dict[str, TargetOutcome] = {}
        pending = set(classification.pending)
        for name in graph.order:
            if name not in pending:
                outcomes[name] = TargetOutcome(name=name, status=TargetStatus.CURRENT)

        waiting_on = {name: sum(1 for dep in graph.dependencies[name] if dep in pending) for name in pending}
        ready = [(index[name], name) for name, count in waiting_on.items() if count == 0]
        heapq.heapify(ready)
        running: dict[Future[TargetOutcome], str] = {}

        logger.info("Running %d of %d target(s)", len(pending), len(graph))

        with capture_warnings(), ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="pipewright") as pool:
            while ready or running:
                while ready and len(running) < concurrency and not self.cancel_event.is_set():
                    _, name = heapq.heappop(ready)
                    logger.debug("Submitting %s", name)
                    running[pool.submit(self._execute, graph.targets[name], graph)] = name
                if not running:
                    break

                try:
                    done, _ = wait(running, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    logger.warning("Interrupted: waiting for running targets to finish")
                    self.cancel_event.set()
                    continue

                for future in done:
                    name = running.pop(future)
                    outcome = future.result()
                    outcomes[name] = outcome
                    if outcome.status == TargetStatus.ERRORED:
                        for dependent in graph.downstream(name):
                            if dependent in pending and dependent not in outcomes:
                                logger.debug("Skipping %s: upstream %s errored", dependent, name)
                                outcomes[dependent] = TargetOutcome(
                                    name=dependent,
                                    status=TargetStatus.ERRORED_UPSTREAM,
                                    upstream=name,
                                )
                        continue
                    for dependent in graph.dependents(name):
                        if dependent not in waiting_on:
                            continue
                        waiting_on[dependent] -= 1
                        if waiting_on[dependent] == 0 and dependent not in outcomes:
                            heapq.heappush(ready, (index[dependent], dependent))

        cancelled = self.cancel_event.is_set()
        for name in graph.order:
            if name not in outcomes:
                outcomes[name] = TargetOutcome(name=name, status=TargetStatus.CANCELLED)

        report = RunReport(
            outcomes=tuple(outcomes[name] for name in graph.order),
            started_at=started_at,
            finished_at=datetime.now(UTC),
            cancelled=cancelled,
        )
        counts = report.counts()
        logger.info(
            "Run finished: %d built, %d current, %d errored, %d errored upstream, %d cancelled",
            counts[TargetStatus.BUILT],
            counts[TargetStatus.CURRENT],
            counts[TargetStatus.ERRORED],
            counts[TargetStatus.ERRORED_UPSTREAM],
            counts[TargetStatus.CANCELLED],
        )
        return report

    def _dependency_hashes(self, deps: tuple[str, ...]) -> tuple[DependencyHash, ...]:
        with self._hash_lock:
            return tuple(DependencyHash(name=dep, output_hash=self._output_hashes.get(dep) or "") for dep in deps)

    def _execute(self, tgt: Target, graph: PipelineGraph) -> TargetOutcome:
        """Evaluate one target and persist its result. Never raises."""
        name = tgt.name
        deps = graph.dependencies[name]
        fmt = self.settings.format_for(tgt)
        seed = self.settings.seed_for(tgt)
        sink: list[str] = []
        started_at = datetime.now(UTC)
        start = time.perf_counter()

        def record(output_hash: str | None, error: str | None, *, substituted: bool = False) -> FingerprintRecord:
            return FingerprintRecord(
                name=name,
                command_hash=graph.command_hashes[name],
                dependencies=self._dependency_hashes(deps),
                format=fmt,
                seed=seed,
                output_hash=output_hash,
                error=error,
                substituted=substituted,
                built_at=started_at,
                duration=time.perf_counter() - start,
            )

        def outcome(status: TargetStatus, error: str | None = None) -> TargetOutcome:
            return TargetOutcome(
                name=name,
                status=status,
                started_at=started_at,
                finished_at=datetime.now(UTC),
                duration=time.perf_counter() - start,
                error=error,
                warnings=tuple(sink),
            )

        logger.info("Building %s", name)
        try:
            inputs = {dep: self.store.objects.read(dep) for dep in deps}
        except (NotFoundError, StorageIOError) as e:
            logger.error("%s: cannot load inputs: %s", name, e)  # noqa: TRY400
            return outcome(TargetStatus.ERRORED, str(e))

        def invoke() -> Any:
            with evaluation_context(name, seed, sink, self.store.root):
                return self.evaluator.evaluate(tgt, inputs)

        try:
            value = _call_with_timeout(invoke, self.settings.timeout_for(tgt), name)
            entry = self.store.objects.write(name, value, fmt)
        except StorageIOError as e:
            return self._fail(name, str(e), record, outcome)
        except Exception as e:  # noqa: BLE001 - user command failures are contained per target
            message = _describe(e)
            if self.settings.error_policy_for(tgt) == ErrorPolicy.SUBSTITUTE_DEFAULT:
                return self._substitute(name, message, record, outcome)
            return self._fail(name, message, record, outcome)

        try:
            self.store.fingerprints.put(name, record(entry.content_hash, None))
        except StorageIOError as e:
            logger.error("%s: %s", name, e)  # noqa: TRY400
            return outcome(TargetStatus.ERRORED, str(e))

        with self._hash_lock:
            self._output_hashes[name] = entry.content_hash
        logger.info("Built %s in %.2fs", name, time.perf_counter() - start)
        return outcome(TargetStatus.BUILT)

    def _fail(
        self,
        name: str,
        message: str,
        record: Callable[..., FingerprintRecord],
        outcome: Callable[..., TargetOutcome],
    ) -> TargetOutcome:
        logger.error("%s errored: %s", name, message)
        try:
            self.store.fingerprints.put(name, record(None, message))
        except StorageIOError as e:
            logger.error("%s: cannot record failure: %s", name, e)  # noqa: TRY400
        return outcome(TargetStatus.ERRORED, message)

    def _substitute(
        self,
        name: str,
        message: str,
        record: Callable[..., FingerprintRecord],
        outcome: Callable[..., TargetOutcome],
    ) -> TargetOutcome:
        logger.warning("%s errored, storing default value: %s", name, message)
        try:
            entry = self.store.objects.write_sentinel(name, self.settings.default_value_on_error)
            self.store.fingerprints.put(name, record(entry.content_hash, message, substituted=True))
        except StorageIOError as e:
            return self._fail(name, str(e), record, outcome)
        with self._hash_lock:
            self._output_hashes[name] = entry.content_hash
        return outcome(TargetStatus.BUILT, message)
