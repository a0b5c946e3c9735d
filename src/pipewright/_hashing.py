"""Content hashing helpers.

All digests are returned as ``"sha256:<hexdigest>"`` strings.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

_CHUNK_SIZE = 1024 * 1024


def sha256_bytes(data: bytes) -> str:
    """Hash a byte string."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def sha256_text(text: str) -> str:
    """Hash a UTF-8 encoded string."""
    return sha256_bytes(text.encode("utf-8"))


def sha256_file(path: Path) -> str:
    """Compute SHA256 checksum by streaming the file."""
    h = hashlib.sha256()
    with path.open("rb") as f:
        while chunk := f.read(_CHUNK_SIZE):
            h.update(chunk)
    return f"sha256:{h.hexdigest()}"


def sha256_tree(root: Path) -> str:
    """Hash a directory from the relative paths and contents of its files.

    Files are visited in sorted order so the digest does not depend on
    filesystem iteration order.
    """
    pairs = [
        f"{p.relative_to(root).as_posix()}={sha256_file(p)}"
        for p in sorted(root.rglob("*"))
        if p.is_file()
    ]
    return sha256_text("\n".join(pairs))


def sha256_path(path: Path) -> str:
    """Hash a file or a directory tree.

    Raises:
        FileNotFoundError: If the path does not exist.

    """
    if path.is_dir():
        return sha256_tree(path)
    return sha256_file(path)


def combine_hashes(digests: Iterable[str]) -> str:
    """Combine several digests into one, order-sensitively."""
    return sha256_text("|".join(digests))
