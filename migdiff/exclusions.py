"""
exclusions
==========

Deny-pattern handling for databases, namespaces and schema objects.

Two kinds of rules exist:

- *discovery* rules drop database and namespace names before they enter the
  comparison set (:meth:`ExclusionRules.filter_databases`,
  :meth:`ExclusionRules.filter_namespaces`);
- *record* rules drop canonical records shaped like ``namespace.object...``
  after a probe ran (:meth:`ExclusionRules.record_filter`,
  :func:`apply_record_filter`).

All patterns are compiled once in :meth:`ExclusionRules.build`; an invalid
regex is a configuration error, not a per-database surprise.

Example
-------
With a global table pattern ``^tmp_.*`` and ``{"public": "audit_log$"}``
for namespaces ``public`` and ``sales`` the combined record pattern is::

    ^(public|sales)\\.(tmp_.*)|^public\\.(audit_log)(?=\\.|$)

so ``public.audit_log.pk.audit_log_pkey`` is dropped while
``public.audit_log_2024.pk.x`` is kept. Unanchored patterns match a prefix of
the object name, as with ``grep``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Pattern, Sequence

from .errors import ConfigError

DEFAULT_EXCLUDE_DB = r"^(template0|template1|postgres)$"
DEFAULT_EXCLUDE_SCHEMA = r"^(pg_catalog|information_schema|pg_toast.*)$"


def compile_pattern(pattern: str, what: str, flags: int = 0) -> Optional[Pattern[str]]:
    """Compile *pattern*; empty means "no rule".

    Raises
    ------
    ConfigError
        If the regex does not compile.
    """
    if not pattern:
        return None
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise ConfigError(f"invalid {what} regex {pattern!r}: {exc}") from exc


def filter_names(names: Iterable[str], pattern: Optional[Pattern[str]]) -> List[str]:
    """Return *names* (blank-free, order kept) that do not match *pattern*."""
    kept = [n for n in names if n]
    if pattern is None:
        return kept
    return [n for n in kept if pattern.search(n) is None]


def _object_pattern(pattern: str) -> str:
    """Turn an object-name pattern into one that matches a whole path segment.

    A leading ``^`` is dropped. An unescaped trailing ``$`` becomes "the
    object ends at a ``.`` or at the end of the record".
    """
    if pattern.startswith("^"):
        pattern = pattern[1:]
    if pattern.endswith("$") and not pattern.endswith("\\$"):
        return rf"({pattern[:-1]})(?=\.|$)"
    return f"({pattern})"


@dataclass(frozen=True)
class ExclusionRules:
    """Validated exclusion rule set.

    Attributes:
        database: Deny pattern for database names.
        namespace: Deny pattern for namespace names.
        table: Raw global object pattern (applied in every namespace in scope).
        table_by_namespace: Raw object pattern per namespace (keys lower-cased).
        case_sensitive: Whether record patterns are case-sensitive.
    """

    database: Optional[Pattern[str]] = None
    namespace: Optional[Pattern[str]] = None
    table: str = ""
    table_by_namespace: Mapping[str, str] = field(default_factory=dict)
    case_sensitive: bool = False

    @classmethod
    def build(
        cls,
        database: str = DEFAULT_EXCLUDE_DB,
        namespace: str = DEFAULT_EXCLUDE_SCHEMA,
        table: str = "",
        table_by_namespace: Optional[Mapping[str, str]] = None,
        case_sensitive: bool = False,
    ) -> "ExclusionRules":
        """Compile and validate every pattern.

        Raises
        ------
        ConfigError
            On the first invalid pattern.
        """
        flags = 0 if case_sensitive else re.IGNORECASE
        compile_pattern(table, "table", flags)
        by_ns: Dict[str, str] = {}
        for ns, pat in (table_by_namespace or {}).items():
            if not pat:
                continue
            compile_pattern(pat, f"table (namespace {ns})", flags)
            by_ns[ns.lower()] = pat
        return cls(
            database=compile_pattern(database, "database"),
            namespace=compile_pattern(namespace, "namespace"),
            table=table,
            table_by_namespace=by_ns,
            case_sensitive=case_sensitive,
        )

    def filter_databases(self, names: Iterable[str]) -> List[str]:
        return filter_names(names, self.database)

    def filter_namespaces(self, names: Iterable[str]) -> List[str]:
        return filter_names(names, self.namespace)

    def record_pattern(self, namespaces: Sequence[str]) -> str:
        """Return the combined ``namespace.object`` pattern source for *namespaces*."""
        parts: List[str] = []
        if self.table and namespaces:
            joined = "|".join(re.escape(ns) for ns in namespaces)
            parts.append(rf"^({joined})\.{_object_pattern(self.table)}")
        for ns in namespaces:
            pat = self.table_by_namespace.get(ns.lower())
            if pat:
                parts.append(rf"^{re.escape(ns)}\.{_object_pattern(pat)}")
        return "|".join(parts)

    def record_filter(self, namespaces: Sequence[str]) -> Optional[Pattern[str]]:
        """Compile the combined record pattern for one database, or None if no rule applies."""
        source = self.record_pattern(namespaces)
        if not source:
            return None
        return re.compile(source, 0 if self.case_sensitive else re.IGNORECASE)


def apply_record_filter(records: Iterable[str], pattern: Optional[Pattern[str]]) -> List[str]:
    """Drop records matching *pattern*; records of other shapes pass through."""
    if pattern is None:
        return list(records)
    return [r for r in records if pattern.search(r) is None]
