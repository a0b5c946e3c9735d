"""Static reference analysis of target commands.

The analyzer never runs user code. It inspects the command to find the
identifiers it refers to (so the graph builder can keep those that name
declared targets) and computes a digest that changes whenever the command
itself changes.

Supported command shapes:
- Expression strings, e.g. ``"fit(clean, degree=2)"``: the ``ast`` is walked
  and every loaded ``Name`` is collected.
- Callables: parameter names plus global names loaded by the bytecode
  (including nested lambdas and comprehensions).
- Objects implementing :class:`CommandSpec` (e.g. render commands), which
  report their own references and digest.
"""

from __future__ import annotations

import ast
import dis
import functools
import inspect
from dataclasses import dataclass
from types import CodeType
from typing import Any, Protocol, runtime_checkable

from ._hashing import sha256_text

_GLOBAL_LOAD_OPS = frozenset({"LOAD_GLOBAL", "LOAD_NAME", "LOAD_FROM_DICT_OR_GLOBALS"})


@runtime_checkable
class CommandSpec(Protocol):
    """A command that describes its own references and digest."""

    def references(self) -> frozenset[str]:
        """Names this command refers to."""
        ...

    def digest(self) -> str:
        """Hash identifying this command's definition."""
        ...


@dataclass(frozen=True, slots=True)
class CommandInfo:
    """Result of analysing a command.

    Attributes:
        references: Identifiers the command refers to. Only those naming
            declared targets become dependencies.
        digest: Hash of the command definition.

    """

    references: frozenset[str]
    digest: str


class _NameCollector(ast.NodeVisitor):
    def __init__(self) -> None:
        self.names: set[str] = set()

    def visit_Name(self, node: ast.Name) -> None:  # noqa: N802
        if isinstance(node.ctx, ast.Load):
            self.names.add(node.id)


def parse_expression(source: str) -> ast.Expression:
    """Parse a command expression.

    Raises:
        SyntaxError: If the string is not a single Python expression.

    """
    return ast.parse(source.strip(), mode="eval")


def expression_references(source: str) -> frozenset[str]:
    """Collect the identifiers loaded by an expression string."""
    collector = _NameCollector()
    collector.visit(parse_expression(source))
    return frozenset(collector.names)


def expression_digest(source: str) -> str:
    """Hash an expression by its syntax tree, so formatting changes do not matter."""
    tree = parse_expression(source)
    return sha256_text(ast.dump(tree, annotate_fields=False, include_attributes=False))


def _stable_repr(value: Any) -> str:
    # Set ordering depends on hash randomization, so sort the member reprs
    if isinstance(value, (frozenset, set)):
        return "{" + ",".join(sorted(_stable_repr(v) for v in value)) + "}"
    if isinstance(value, tuple):
        return "(" + ",".join(_stable_repr(v) for v in value) + ")"
    if isinstance(value, CodeType):
        return _code_fingerprint(value)
    return repr(value)


def _code_fingerprint(code: CodeType) -> str:
    parts = [
        code.co_code.hex(),
        repr(code.co_names),
        repr(code.co_varnames),
        repr(code.co_freevars),
        _stable_repr(code.co_consts),
    ]
    return sha256_text("\n".join(parts))


def _code_global_names(code: CodeType) -> set[str]:
    names = {instr.argval for instr in dis.get_instructions(code) if instr.opname in _GLOBAL_LOAD_OPS}
    for const in code.co_consts:
        if isinstance(const, CodeType):
            names |= _code_global_names(const)
    return names


def _unwrap_callable(func: Any) -> Any:
    while isinstance(func, functools.partial):
        func = func.func
    return inspect.unwrap(func)


def callable_parameters(func: Any) -> tuple[str, ...]:
    """Return the parameter names of a callable (empty if it has no signature)."""
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return ()
    return tuple(
        name
        for name, param in sig.parameters.items()
        if param.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
    )


def callable_references(func: Any) -> frozenset[str]:
    """Collect parameter names and global names referenced by a callable."""
    names = set(callable_parameters(func))
    code = getattr(_unwrap_callable(func), "__code__", None)
    if isinstance(code, CodeType):
        names |= _code_global_names(code)
    return frozenset(names)


def callable_digest(func: Any) -> str:
    """Hash a callable from its bytecode, constants and default values.

    Values captured in closures are not part of the digest.
    """
    target = _unwrap_callable(func)
    code = getattr(target, "__code__", None)
    if not isinstance(code, CodeType):
        cls = type(target)
        return sha256_text(f"{cls.__module__}.{cls.__qualname__}")
    parts = [
        _code_fingerprint(code),
        _stable_repr(getattr(target, "__defaults__", None)),
        _stable_repr(tuple(sorted((getattr(target, "__kwdefaults__", None) or {}).items()))),
    ]
    if isinstance(func, functools.partial):
        parts.append(_stable_repr(func.args))
        parts.append(_stable_repr(tuple(sorted(func.keywords.items()))))
    return sha256_text("\n".join(parts))


def analyze_command(command: Any) -> CommandInfo:
    """Analyse a target command.

    Args:
        command: An expression string, a callable, or a CommandSpec.

    Returns:
        The referenced identifiers and the command digest.

    Raises:
        SyntaxError: If an expression string cannot be parsed.
        TypeError: If the command has an unsupported type.

    """
    if isinstance(command, CommandSpec):
        return CommandInfo(references=command.references(), digest=command.digest())
    if isinstance(command, str):
        return CommandInfo(
            references=expression_references(command),
            digest=expression_digest(command),
        )
    if callable(command):
        return CommandInfo(
            references=callable_references(command),
            digest=callable_digest(command),
        )
    msg = f"Unsupported command type: {type(command).__name__}"
    raise TypeError(msg)
