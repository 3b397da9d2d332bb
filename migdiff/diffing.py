"""
diffing
=======

Asymmetric set difference between canonical probe results.

Both inputs are :class:`~migdiff.canonical.CanonicalResult` values, already
deduplicated and ordered by UTF-8 bytes, so the difference is a single
linear merge (the ``comm -23`` idea) with no hashing.

Records are compared as raw bytes. Two spellings of the same object that the
canonicalizer does not unify (``varchar(10)`` vs ``character varying(10)``)
show up as a difference; keeping probe output stable is up to probe authors.

Primary API
-----------
- :func:`missing_on_target`
- :func:`extra_on_target`
- :func:`compare_pair`
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Tuple

from .canonical import CanonicalResult, byte_key, canonicalize
from .exclusions import apply_record_filter
from .scheduler import ProbeRun


class Status(str, enum.Enum):
    OK = "OK"
    ATTENTION = "ATTENTION"
    ERROR = "ERROR"
    SKIP = "SKIP"


def _difference(left: Sequence[str], right: Sequence[str]) -> Tuple[str, ...]:
    """Records in *left* but not in *right*; both sorted by :func:`byte_key`."""
    out: List[str] = []
    i = j = 0
    n, m = len(left), len(right)
    while i < n and j < m:
        a, b = byte_key(left[i]), byte_key(right[j])
        if a == b:
            i += 1
            j += 1
        elif a < b:
            out.append(left[i])
            i += 1
        else:
            j += 1
    out.extend(left[i:])
    return tuple(out)


def missing_on_target(source: CanonicalResult, target: CanonicalResult) -> Tuple[str, ...]:
    """Records present on *source* and absent from *target*."""
    return _difference(source.records, target.records)


def extra_on_target(source: CanonicalResult, target: CanonicalResult) -> Tuple[str, ...]:
    """Records present on *target* and absent from *source*."""
    return _difference(target.records, source.records)


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome for one (database, probe) pair."""

    database: str
    probe: str
    status: Status
    missing: Tuple[str, ...] = ()
    extra: Tuple[str, ...] = ()
    detail: str = ""
    source: Optional[CanonicalResult] = None
    target: Optional[CanonicalResult] = None


def status_for(missing: Sequence[str], extra: Sequence[str]) -> Status:
    return Status.OK if not missing and not extra else Status.ATTENTION


def _failure_detail(run: ProbeRun, side: str) -> str:
    where = str(run.diagnostic_path) if run.diagnostic_path else "no diagnostic file"
    first = next((line for line in run.diagnostic.splitlines() if line.strip()), "")
    msg = f"{side} failed (exit {run.returncode}, see {where})"
    return f"{msg}: {first.strip()}" if first else msg


def filtered(result: CanonicalResult, record_filter: Optional[Pattern[str]]) -> CanonicalResult:
    if record_filter is None:
        return result
    return CanonicalResult(tuple(apply_record_filter(result.records, record_filter)))


def compare_pair(
    database: str,
    probe: str,
    source_run: Optional[ProbeRun],
    target_run: Optional[ProbeRun],
    show_extra: bool = False,
    record_filter: Optional[Pattern[str]] = None,
) -> ComparisonResult:
    """Classify and diff one pair of probe runs.

    ERROR wins over SKIP: a failed side is reported as an error even when the
    other side never ran.
    """
    failures = [
        _failure_detail(run, side)
        for side, run in (("source", source_run), ("target", target_run))
        if run is not None and not run.usable
    ]
    if failures:
        return ComparisonResult(database, probe, Status.ERROR, detail="; ".join(failures))
    if source_run is None or target_run is None:
        missing_side = "source" if source_run is None else "target"
        return ComparisonResult(
            database, probe, Status.SKIP, detail=f"missing output on {missing_side}"
        )

    src = filtered(canonicalize(source_run.output), record_filter)
    tgt = filtered(canonicalize(target_run.output), record_filter)
    missing = missing_on_target(src, tgt)
    extra = extra_on_target(src, tgt) if show_extra else ()
    return ComparisonResult(
        database,
        probe,
        status_for(missing, extra),
        missing=missing,
        extra=extra,
        source=src,
        target=tgt,
    )
