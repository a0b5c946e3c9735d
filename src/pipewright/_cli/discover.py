"""Find the Pipeline object a CLI invocation refers to."""

from __future__ import annotations

import importlib
import logging
import sys
from typing import TYPE_CHECKING

from pipewright._errors import ConfigError
from pipewright._pipeline import Pipeline

from .config import ModuleSource, ScriptSource

if TYPE_CHECKING:
    from pathlib import Path
    from types import ModuleType

    from .config import PipelineSource

logger = logging.getLogger(__name__)


def _import_script(script: Path) -> ModuleType:
    """Import a pipeline script as a top-level module named after the file.

    The script's directory goes on ``sys.path`` so that it can import its
    neighbours, and so values pickled from classes it defines can be loaded
    again in a later run.
    """
    script = script.resolve()
    if not script.is_file():
        msg = f"Pipeline script not found: {script}"
        raise ConfigError(msg)
    directory = str(script.parent)
    if directory not in sys.path:
        sys.path.insert(0, directory)
    logger.debug("Importing %s as module %s", script, script.stem)
    importlib.invalidate_caches()
    return importlib.import_module(script.stem)


def _pick_pipeline(module: ModuleType, variable: str | None, origin: str) -> Pipeline:
    if variable is not None:
        obj = getattr(module, variable, None)
        if obj is None:
            msg = f"No variable '{variable}' in {origin}"
            raise ConfigError(msg)
        if not isinstance(obj, Pipeline):
            msg = f"'{variable}' in {origin} is a {type(obj).__name__}, not a Pipeline"
            raise ConfigError(msg)
        return obj

    found: dict[int, tuple[str, Pipeline]] = {}
    for name, obj in vars(module).items():
        if isinstance(obj, Pipeline):
            found.setdefault(id(obj), (name, obj))
    if not found:
        msg = f"No Pipeline found in {origin}, name one with --pipeline"
        raise ConfigError(msg)
    if len(found) > 1:
        names = ", ".join(name for name, _ in found.values())
        msg = f"Several pipelines in {origin} ({names}), choose one with --pipeline"
        raise ConfigError(msg)
    return next(iter(found.values()))[1]


def load_pipeline_from_source(source: PipelineSource) -> Pipeline:
    """Import the script or module of ``source`` and return its Pipeline.

    Errors raised by the user's own code while importing propagate unchanged.

    Raises:
        ConfigError: If the script or module does not exist, or does not hold
            exactly one matching Pipeline.

    """
    match source:
        case ScriptSource(script=script, name=variable):
            return _pick_pipeline(_import_script(script), variable, str(script))
        case ModuleSource(module_path=module_path):
            module_name, _, variable = module_path.partition(":")
            try:
                module = importlib.import_module(module_name)
            except ModuleNotFoundError as e:
                if e.name is None or not (module_name == e.name or module_name.startswith(f"{e.name}.")):
                    raise
                msg = f"Cannot import pipeline module '{module_name}'"
                raise ConfigError(msg) from e
            return _pick_pipeline(module, variable or None, f"module '{module_name}'")
