"""
canonical
=========

Canonicalization of raw probe output.

Raw ``psql`` output differs between hosts in ways that do not matter for a
schema comparison: row order, duplicate rows, trailing blanks, comment lines.
:func:`canonicalize` removes those differences and returns a
:class:`CanonicalResult`, a deduplicated tuple of records ordered by their
UTF-8 byte sequence (the ``LC_ALL=C`` order), independent of locale.

The transformation is pure and idempotent::

    canonicalize(canonicalize(x).text()) == canonicalize(x)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Tuple

from .utils import lines_to_text

_COMMENT_RE = re.compile(r"(?:^|\s)--.*$")
_WS_RE = re.compile(r"\s+")


def byte_key(record: str) -> bytes:
    """Sort key comparing records by raw UTF-8 bytes."""
    return record.encode("utf-8", "surrogateescape")


def canonicalize_line(line: str) -> str:
    """Normalize one line.

    Strips a trailing ``--`` comment (at the start of the line or after
    whitespace), trims both ends and collapses whitespace runs to one space.
    Returns an empty string for lines that carry no record.
    """
    line = _COMMENT_RE.sub("", line)
    return _WS_RE.sub(" ", line).strip()


@dataclass(frozen=True)
class CanonicalResult:
    """Immutable, deduplicated, byte-ordered set of records."""

    records: Tuple[str, ...] = ()

    @classmethod
    def from_records(cls, records: Iterable[str]) -> "CanonicalResult":
        """Build from already-normalized records (dedupes and orders them)."""
        return cls(tuple(sorted({r for r in records if r}, key=byte_key)))

    def __iter__(self) -> Iterator[str]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, record: object) -> bool:
        return record in self.records

    def text(self) -> str:
        """One record per line, newline-terminated."""
        return lines_to_text(self.records)


def canonicalize(raw: str) -> CanonicalResult:
    """Turn raw probe output into a :class:`CanonicalResult`."""
    return CanonicalResult.from_records(canonicalize_line(line) for line in raw.splitlines())
