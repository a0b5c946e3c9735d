"""Reproducible computation pipelines."""

__all__ = [
    "DEFAULT_STORE_DIR",
    "Classification",
    "ConfigError",
    "CueMode",
    "CycleError",
    "DependencyGraph",
    "DuplicateNameError",
    "ErrorPolicy",
    "Evaluator",
    "EvaluatorError",
    "FileTrackingError",
    "FingerprintRecord",
    "GraphError",
    "InvalidTargetError",
    "ManifestEntry",
    "NotFoundError",
    "ObjectEntry",
    "Pipeline",
    "PipelineError",
    "PipelineGraph",
    "PipelineStore",
    "PythonEvaluator",
    "RenderCommand",
    "Renderer",
    "RunReport",
    "Scheduler",
    "Settings",
    "StorageFormat",
    "StorageIOError",
    "Target",
    "TargetOutcome",
    "TargetState",
    "TargetStatus",
    "TargetTimeoutError",
    "UnknownTargetError",
    "build_graph",
    "classify",
    "current_target",
    "load_target",
    "open_store",
    "read_target",
    "render_target",
    "scan_document",
    "target",
    "target_rng",
    "target_seed",
]

from ._context import current_target, target_rng, target_seed
from ._errors import (
    ConfigError,
    CycleError,
    DuplicateNameError,
    EvaluatorError,
    FileTrackingError,
    GraphError,
    InvalidTargetError,
    NotFoundError,
    PipelineError,
    StorageIOError,
    TargetTimeoutError,
    UnknownTargetError,
)
from ._evaluator import Evaluator, PythonEvaluator
from ._graph import DependencyGraph, PipelineGraph, build_graph
from ._invalidation import Classification, TargetState, classify
from ._pipeline import ManifestEntry, Pipeline, load_target, read_target
from ._records import FingerprintRecord, ObjectEntry
from ._render import RenderCommand, Renderer, render_target, scan_document
from ._report import RunReport, TargetOutcome, TargetStatus
from ._scheduler import Scheduler
from ._settings import Settings
from ._store import DEFAULT_STORE_DIR, PipelineStore, open_store
from ._target import CueMode, ErrorPolicy, StorageFormat, Target, target
