"""
discovery
=========

Find the databases and namespaces that can be compared apples-to-apples.

Databases are listed on both hosts, filtered by the database deny pattern and
intersected. Names present on only one side become informational notes. For
each common database the namespaces are listed, filtered and intersected the
same way. A database whose namespace intersection is empty is skipped with a
note; that is a normal outcome.

Any listing failure is fatal: comparing against a host we could not read
would produce a report full of false gaps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, List, Optional, Pattern, Sequence, Tuple

from .errors import DiscoveryError
from .executor import Executor
from .exclusions import ExclusionRules

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

Q_LIST_DATABASES = """
SELECT datname
FROM pg_database
WHERE datallowconn AND NOT datistemplate
ORDER BY 1;
"""

Q_LIST_SCHEMAS = """
SELECT nspname
FROM pg_namespace
WHERE nspname NOT IN ('pg_catalog', 'information_schema')
  AND nspname NOT LIKE 'pg\\_toast%'
ORDER BY 1;
"""


@dataclass(frozen=True)
class DatabasePlan:
    """What to run against one database."""

    name: str
    namespaces: Tuple[str, ...]
    record_filter: Optional[Pattern[str]] = None


@dataclass
class DiscoveryResult:
    plans: List[DatabasePlan] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)


def parse_single_col(text: str) -> List[str]:
    """Parse single-column ``psql -At`` output into a list of values."""
    out: List[str] = []
    for line in text.splitlines():
        line = line.strip()
        if line:
            out.append(line.split("|")[0].strip())
    return out


def intersect(a: Iterable[str], b: Iterable[str]) -> List[str]:
    """Sorted intersection; ``intersect(a, b) == intersect(b, a)``."""
    return sorted(set(a) & set(b))


def only_in(a: Iterable[str], b: Iterable[str]) -> List[str]:
    """Sorted names in *a* but not in *b*."""
    return sorted(set(a) - set(b))


def _list(executor: Executor, host: str, query: str, database: Optional[str], what: str) -> List[str]:
    res = executor.run(host, query, database)
    if not res.ok:
        detail = (res.stderr or "").strip() or f"exit {res.returncode}"
        raise DiscoveryError(f"cannot list {what} on {host}: {detail}", host=host)
    return parse_single_col(res.stdout)


def list_databases(executor: Executor, host: str) -> List[str]:
    return _list(executor, host, Q_LIST_DATABASES, None, "databases")


def list_schemas(executor: Executor, host: str, database: str) -> List[str]:
    return _list(executor, host, Q_LIST_SCHEMAS, database, f"namespaces of {database}")


def _asymmetry_notes(kind: str, src: Sequence[str], tgt: Sequence[str], source: str, target: str, scope: str = "") -> List[str]:
    notes = []
    for name in only_in(src, tgt):
        notes.append(f"Note: {kind} '{name}'{scope} exists on source only ({source}), not on {target}")
    for name in only_in(tgt, src):
        notes.append(f"Note: {kind} '{name}'{scope} exists on target only ({target}), not on {source}")
    return notes


def _add_notes(result: DiscoveryResult, notes: List[str]) -> None:
    for note in notes:
        logger.info(note)
    result.notes.extend(notes)


def discover(executor: Executor, config: "Config") -> DiscoveryResult:
    """Build the per-database plans for *config*.

    Raises
    ------
    DiscoveryError
        If a host cannot be listed or no database is left to compare.
    """
    rules: ExclusionRules = config.exclusions
    source, target = config.source, config.target
    result = DiscoveryResult()

    if config.databases:
        databases = list(config.databases)
        logger.info("Using pinned database(s): %s", ", ".join(databases))
    else:
        logger.info("Discovering databases...")
        src_dbs = rules.filter_databases(list_databases(executor, source))
        tgt_dbs = rules.filter_databases(list_databases(executor, target))
        _add_notes(result, _asymmetry_notes("DB", src_dbs, tgt_dbs, source, target))
        databases = intersect(src_dbs, tgt_dbs)

    for db in databases:
        src_ns = rules.filter_namespaces(list_schemas(executor, source, db))
        tgt_ns = rules.filter_namespaces(list_schemas(executor, target, db))
        _add_notes(result, _asymmetry_notes("schema", src_ns, tgt_ns, source, target, f" in DB '{db}'"))
        common = intersect(src_ns, tgt_ns)

        if config.schemas:
            namespaces: Tuple[str, ...] = tuple(config.schemas)
        elif common:
            namespaces = tuple(common)
        else:
            logger.info("  Skipping %s (no common namespaces)", db)
            result.skipped.append((db, "skipped: no common namespaces"))
            continue

        record_filter = rules.record_filter(namespaces)
        logger.info("  %s: namespaces %s", db, ", ".join(namespaces))
        if record_filter is not None:
            logger.info("  %s: applying record exclusion filter %s", db, record_filter.pattern)
        result.plans.append(DatabasePlan(db, namespaces, record_filter))

    if not result.plans:
        raise DiscoveryError("no comparable databases", result=result)
    return result
