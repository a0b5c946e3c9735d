"""Evaluator: runs a target's command with its resolved inputs.

The engine treats the evaluator as an external collaborator. Anything with
an ``evaluate(target, inputs)`` method can be plugged in; ``PythonEvaluator``
is the default and runs expression strings and Python callables in-process.
"""

from __future__ import annotations

import inspect
import types
from typing import TYPE_CHECKING, Any, Protocol

from ._analysis import callable_parameters, callable_references, parse_expression

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from ._target import Target


class Evaluator(Protocol):
    """Runs one target's command."""

    def evaluate(self, target: Target, inputs: Mapping[str, Any]) -> Any:
        """Evaluate ``target`` with dependency values keyed by dependency name.

        Exceptions propagate to the scheduler, which applies the target's
        error policy.
        """
        ...


def _accepts_var_keyword(func: Callable[..., Any]) -> bool:
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return False
    return any(p.kind is inspect.Parameter.VAR_KEYWORD for p in sig.parameters.values())


def _rebind_globals(func: Callable[..., Any], overlay: Mapping[str, Any]) -> Callable[..., Any]:
    """Return a copy of a plain function whose globals include ``overlay``."""
    if not overlay or not isinstance(func, types.FunctionType):
        return func
    clone = types.FunctionType(
        func.__code__,
        {**func.__globals__, **overlay},
        func.__name__,
        func.__defaults__,
        func.__closure__,
    )
    clone.__kwdefaults__ = func.__kwdefaults__
    return clone


class PythonEvaluator:
    """Evaluate commands in-process.

    - Expression strings are evaluated with the namespace plus the dependency
      values as globals.
    - Callables receive dependency values as keyword arguments for matching
      parameters (all of them if the callable takes ``**kwargs``). Dependencies
      referenced as global names inside a plain function are bound too.
    """

    def __init__(self, namespace: Mapping[str, Any] | None = None) -> None:
        self.namespace: dict[str, Any] = dict(namespace or {})

    def evaluate(self, target: Target, inputs: Mapping[str, Any]) -> Any:
        """Evaluate a target's command."""
        command = target.command
        if isinstance(command, str):
            code = compile(parse_expression(command), f"<target {target.name}>", "eval")
            scope = {**self.namespace, **inputs}
            return eval(code, scope)  # noqa: S307 - evaluating user-declared commands is the point
        return self._call(command, inputs)

    @staticmethod
    def _call(func: Callable[..., Any], inputs: Mapping[str, Any]) -> Any:
        params = callable_parameters(func)
        if _accepts_var_keyword(func):
            kwargs = dict(inputs)
        else:
            kwargs = {name: inputs[name] for name in params if name in inputs}
        global_refs = callable_references(func) - set(params)
        overlay = {name: value for name, value in inputs.items() if name in global_refs}
        return _rebind_globals(func, overlay)(**kwargs)
