"""
probes
======

Probe loading, parameter substitution and the read-only safety envelope.

A probe is a ``*.sql`` file whose body is sent verbatim to ``psql`` after one
substitution: the token ``:include_schemas`` is replaced with the quoted
namespace list of the database under test, e.g. ``'public','sales'``.

Probes are expected to print one record per row, shaped like
``namespace.object.detail``, so the exclusion rules in
:mod:`migdiff.exclusions` can address them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

from .errors import ProbeError
from .utils import read_text

SCHEMA_TOKEN = ":include_schemas"
_TOKEN_RE = re.compile(r"(?<![:\w]):include_schemas\b")

DEFAULT_LOCK_TIMEOUT = "5s"
DEFAULT_STATEMENT_TIMEOUT = "30min"


def quote_namespaces(names: Iterable[str]) -> str:
    """Render *names* as a SQL literal list: ``'a','b'``.

    Single quotes inside a name are doubled.
    """
    return ",".join("'" + n.replace("'", "''") + "'" for n in names)


def parse_namespace_list(value: str) -> List[str]:
    """Parse an operator-supplied namespace list.

    Accepts ``public,sales`` as well as the SQL form ``'public','sales'``.
    """
    out: List[str] = []
    for part in value.split(","):
        name = part.strip().strip("'\"").strip()
        if name and name not in out:
            out.append(name)
    return out


@dataclass(frozen=True)
class Probe:
    """A named, read-only SQL template."""

    name: str
    body: str

    def render(self, namespaces: Iterable[str]) -> str:
        """Return the body with the namespace token replaced."""
        literal = quote_namespaces(namespaces)
        return _TOKEN_RE.sub(lambda _m: literal, self.body)


def wrap_read_only(
    sql: str,
    lock_timeout: str = DEFAULT_LOCK_TIMEOUT,
    statement_timeout: str = DEFAULT_STATEMENT_TIMEOUT,
) -> str:
    """Wrap *sql* in a read-only transaction with lock and statement timeouts.

    The transaction is always rolled back. If the body fails, ``psql`` stops
    on ``ON_ERROR_STOP`` and the server aborts the open transaction when the
    session ends.
    """
    body = sql if sql.endswith("\n") else sql + "\n"
    return (
        "SET default_transaction_read_only = on;\n"
        "BEGIN READ ONLY;\n"
        f"SET LOCAL lock_timeout = '{lock_timeout}';\n"
        f"SET LOCAL statement_timeout = '{statement_timeout}';\n"
        f"{body}"
        ";\n"
        "ROLLBACK;\n"
    )


def load_probe(path: Path) -> Probe:
    """Load one probe file and check it has exactly one namespace token."""
    body = read_text(path)
    count = len(_TOKEN_RE.findall(body))
    if count != 1:
        raise ProbeError(
            f"probe {path.name} must contain exactly one {SCHEMA_TOKEN} token (found {count})"
        )
    return Probe(name=path.stem, body=body)


def load_probes(directory: Path) -> List[Probe]:
    """Load every ``*.sql`` file in *directory*, sorted by name.

    Raises
    ------
    ProbeError
        If the directory is missing, holds no probes, or a probe is malformed.
    """
    if not directory.is_dir():
        raise ProbeError(f"probe directory not found: {directory}")
    files = sorted(p for p in directory.glob("*.sql") if p.is_file())
    if not files:
        raise ProbeError(f"no .sql probes found in {directory}")
    return [load_probe(p) for p in files]
