"""Context variables for the target being evaluated.

This module contains context variables used while a command runs, so user
code can ask for its target name or seed. It is kept separate to avoid
circular imports.
"""

from __future__ import annotations

import random
import warnings
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

_current_target_var: ContextVar[str | None] = ContextVar("current_target", default=None)
_current_seed_var: ContextVar[int | None] = ContextVar("current_seed", default=None)
_warning_sink_var: ContextVar[list[str] | None] = ContextVar("warning_sink", default=None)
_store_root_var: ContextVar[Path | None] = ContextVar("store_root", default=None)


def current_store_root() -> Path | None:
    """Get the root of the store used by the running pipeline, or None outside a run."""
    return _store_root_var.get()


def current_target() -> str | None:
    """Get the name of the target being evaluated, or None outside an evaluation."""
    return _current_target_var.get()


def target_seed() -> int | None:
    """Get the seed of the target being evaluated, or None outside an evaluation."""
    return _current_seed_var.get()


def target_rng() -> random.Random:
    """Get a random generator seeded with the current target's seed.

    Raises:
        RuntimeError: If called outside a target evaluation.

    """
    seed = _current_seed_var.get()
    if seed is None:
        msg = "target_rng() can only be called while a target is being evaluated"
        raise RuntimeError(msg)
    return random.Random(seed)  # noqa: S311 - reproducibility, not security


@contextmanager
def evaluation_context(name: str, seed: int, sink: list[str], store_root: Path | None = None) -> Iterator[None]:
    """Set the current target, its seed, its warning sink and the store root for a block."""
    tokens = (
        _current_target_var.set(name),
        _current_seed_var.set(seed),
        _warning_sink_var.set(sink),
        _store_root_var.set(store_root),
    )
    try:
        yield
    finally:
        _store_root_var.reset(tokens[3])
        _warning_sink_var.reset(tokens[2])
        _current_seed_var.reset(tokens[1])
        _current_target_var.reset(tokens[0])


@contextmanager
def capture_warnings() -> Iterator[None]:
    """Route warnings raised during evaluations to the evaluating target's sink.

    Installed once per run from the scheduling thread. Warnings raised
    outside an evaluation context are shown as usual.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("always")
        original = warnings.showwarning

        def _route(message, category, filename, lineno, file=None, line=None):  # noqa: ANN001, ANN202, PLR0913
            sink = _warning_sink_var.get()
            if sink is None:
                original(message, category, filename, lineno, file, line)
            else:
                sink.append(f"{category.__name__}: {message}")

        warnings.showwarning = _route
        yield
