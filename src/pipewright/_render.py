"""Render targets: documents that read other targets' results.

A render target wraps an external renderer (a report generator, a notebook
runner, ...). The engine never looks inside the output; it only needs to know
which targets the document reads, so they become dependencies, and the path
the renderer produced, which is file-tracked.
"""

from __future__ import annotations

import ast
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from ._errors import InvalidTargetError
from ._hashing import sha256_bytes, sha256_text
from ._target import StorageFormat, Target

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)

READ_FUNCTIONS = frozenset({"read_target", "load_target"})

_FENCED_BLOCK = re.compile(
    r"^(?P<fence>`{3,}|~{3,})[ \t]*\{?[ \t]*(?:python|py)\b[^\n]*\n(?P<body>.*?)^(?P=fence)[ \t]*$",
    re.MULTILINE | re.DOTALL,
)


class Renderer(Protocol):
    """Produces an output file from a document."""

    def render(self, document: Path, output: Path | None, inputs: Mapping[str, Any]) -> str | os.PathLike[str]:
        """Render ``document`` and return the path of the produced file.

        Args:
            document: The source document.
            output: Requested output path, or None to let the renderer decide.
            inputs: Values of the targets the document depends on.

        """
        ...


def _read_call_names(tree: ast.AST) -> set[str]:
    names: set[str] = set()
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue
        func = node.func
        func_name = func.id if isinstance(func, ast.Name) else func.attr if isinstance(func, ast.Attribute) else None
        if func_name not in READ_FUNCTIONS:
            continue
        arg: ast.expr | None = node.args[0] if node.args else None
        if arg is None:
            arg = next((kw.value for kw in node.keywords if kw.arg == "name"), None)
        if isinstance(arg, ast.Constant) and isinstance(arg.value, str):
            names.add(arg.value)
    return names


def scan_document(text: str, *, source: str = "<document>") -> frozenset[str]:
    """Find the target names a document reads.

    Looks at fenced Python code blocks for calls to ``read_target("name")``
    or ``load_target("name")`` with a literal name. A plain ``.py`` source
    (no fences) is scanned as a whole. Blocks that do not parse are skipped.

    Example:
        >>> scan_document('```python\\nfit = read_target("model")\\n```')
        frozenset({'model'})

    """
    blocks = [m.group("body") for m in _FENCED_BLOCK.finditer(text)]
    if not blocks and source.endswith(".py"):
        blocks = [text]

    names: set[str] = set()
    for i, block in enumerate(blocks):
        try:
            tree = ast.parse(block)
        except SyntaxError as e:
            logger.warning("Skipping unparsable code block %d in %s: %s", i + 1, source, e.msg)
            continue
        names |= _read_call_names(tree)
    return frozenset(names)


def _renderer_identity(renderer: Any) -> str:
    cls = type(renderer)
    identity = f"{cls.__module__}.{cls.__qualname__}"
    name = getattr(renderer, "name", None)
    if isinstance(name, str):
        identity = f"{identity}:{name}"
    return identity


@dataclass(frozen=True, slots=True)
class RenderCommand:
    """Command of a render target.

    Attributes:
        document: Path of the source document.
        renderer: The renderer invoked at build time.
        output: Requested output path, if any.
        explicit: Dependency names given at declaration.
        scanned: Dependency names found in the document.

    """

    document: Path
    renderer: Renderer
    output: Path | None = None
    explicit: frozenset[str] = field(default_factory=frozenset)
    scanned: frozenset[str] = field(default_factory=frozenset)

    def references(self) -> frozenset[str]:
        """Names this render target reads."""
        return self.explicit | self.scanned

    def digest(self) -> str:
        """Hash of the document contents, the renderer and the output path."""
        try:
            content = sha256_bytes(self.document.read_bytes())
        except OSError:
            content = "missing"
        return sha256_text("\n".join([content, _renderer_identity(self.renderer), str(self.output)]))

    def __call__(self, **inputs: Any) -> str | os.PathLike[str]:
        """Run the renderer and return the produced path."""
        produced = self.renderer.render(self.document, self.output, inputs)
        if produced is None and self.output is not None:
            return self.output
        return produced


def render_target(  # noqa: PLR0913
    name: str,
    document: str | os.PathLike[str],
    renderer: Renderer,
    *,
    output: str | os.PathLike[str] | None = None,
    deps: Iterable[str] = (),
    scan: bool = True,
    **options: Any,
) -> Target:
    """Declare a target that renders a document.

    The result is always file-tracked: editing the rendered output, or
    deleting it, makes the target outdated.

    Args:
        name: Target name.
        document: Path of the source document.
        renderer: Object with a ``render(document, output, inputs)`` method.
        output: Requested output path, passed to the renderer.
        deps: Extra dependency names.
        scan: Whether to scan the document for ``read_target`` calls.
        **options: Other target options (error, seed, cue, timeout, description).

    Raises:
        InvalidTargetError: If the document does not exist or a storage format is given.

    Example:
        >>> render_target("report", "report.md", MarkdownRenderer(), output="report.html")

    """
    if "format" in options:
        msg = f"Render target '{name}' is always file-tracked; 'format' cannot be set"
        raise InvalidTargetError(msg)
    path = Path(document)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        msg = f"Document of render target '{name}' cannot be read: {path}"
        raise InvalidTargetError(msg) from e

    explicit = tuple(deps)
    scanned = scan_document(text, source=str(path)) if scan else frozenset()
    logger.debug("Render target %s reads %s", name, sorted(scanned))

    command = RenderCommand(
        document=path,
        renderer=renderer,
        output=Path(output) if output is not None else None,
        explicit=frozenset(explicit),
        scanned=scanned,
    )
    return Target(name=name, command=command, format=StorageFormat.FILE, deps=explicit, **options)
