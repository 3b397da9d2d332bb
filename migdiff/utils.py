"""
utils
=====

Small, shared utilities used across the codebase.

This module intentionally contains only low-level helpers that are safe to
import from anywhere (no remote calls, no heavy imports).

Functions
---------
- :func:`safe_name`:
  Convert an arbitrary identifier (host, database, probe name) into a
  filesystem-safe path component.
- :func:`artifact_name`:
  Like :func:`safe_name`, but distinct inputs never share a result.
- :func:`read_text` / :func:`write_text`:
  UTF-8 file helpers with normalized newlines.
- :func:`rel_link` / :func:`md_anchor`:
  Helpers for the Markdown summary.
- :func:`default_parallelism`:
  Worker pool size derived from the local CPU count.
"""

from __future__ import annotations

import hashlib
import os
import re
from pathlib import Path


def safe_name(value: str) -> str:
    """Return a filesystem-safe version of *value*.

    This helper is used for naming output artifacts consistently across
    modules.

    Parameters
    ----------
    value:
        The input string to sanitize (e.g., ``"db-old.example.com"`` or a
        database name).

    Returns
    -------
    str
        A sanitized string containing only ``[A-Za-z0-9._-]`` plus underscores,
        with surrounding underscores removed. Returns ``"unnamed"`` if the
        result would otherwise be empty.

    Examples
    --------
    >>> safe_name("orders db$2025")
    'orders_db_2025'
    >>> safe_name("")
    'unnamed'
    """
    out = re.sub(r"[^A-Za-z0-9._-]+", "_", value).strip("_")
    return out or "unnamed"


def artifact_name(value: str) -> str:
    """Return a path component for *value* that no other value maps to.

    Names that are already filesystem-safe are used as-is. Otherwise a short
    hash of the original name is appended, so ``"my db"`` and ``"my_db"``
    land in different directories.

    >>> artifact_name("my_db")
    'my_db'
    >>> artifact_name("my db") != artifact_name("my_db")
    True
    """
    safe = safe_name(value)
    if safe == value and safe not in (".", ".."):
        return safe
    digest = hashlib.sha1(value.encode("utf-8", "surrogateescape")).hexdigest()[:8]
    return f"{safe}-{digest}"


def normalize_newlines(text: str) -> str:
    """Convert ``\\r\\n`` and lone ``\\r`` to ``\\n``."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def read_text(path: Path) -> str:
    """Read UTF-8 text from *path*.

    Returns an empty string if the file does not exist.
    """
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8", errors="replace")


def write_text(path: Path, content: str) -> None:
    """Write UTF-8 text to *path* with normalized newlines, creating parents.

    Undecodable bytes carried as surrogates are written back unchanged.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(normalize_newlines(content), encoding="utf-8", errors="surrogateescape")


def lines_to_text(lines: "list[str] | tuple[str, ...]") -> str:
    """Join *lines* one per line, with a trailing newline when non-empty."""
    return "\n".join(lines) + ("\n" if lines else "")


def rel_link(from_file: Path, to_file: Path) -> str:
    """Create a portable relative link for Markdown.

    Parameters
    ----------
    from_file:
        The file that will contain the link (e.g., SUMMARY.md).
    to_file:
        The target file (e.g., a gap file).
    """
    return os.path.relpath(to_file, start=from_file.parent).replace("\\", "/")


def md_anchor(title: str) -> str:
    """Create an approximate GitHub-style markdown anchor from a section title."""
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def default_parallelism() -> int:
    """Return the default worker count: the local CPU count, or 4 if unknown."""
    return os.cpu_count() or 4
