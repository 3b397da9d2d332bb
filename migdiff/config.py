"""
config
======

Build one immutable :class:`Config` per run.

Values come from three places, highest priority first:

1. command-line flags,
2. ``MIGDIFF_<FIELD>`` environment variables,
3. the YAML config file (``migdiff.yml`` by default),

then built-in defaults. The result is constructed once and passed by
reference to discovery, the scheduler and the reporter; nothing downstream
reads the environment.

Example ``migdiff.yml``::

    source: db-old.example.com
    target: db-new.example.com
    out_dir: out
    probe_dir: probes
    parallelism: 8
    show_extra_on_target: false
    schemas: []          # fixed namespace list; empty = per-DB intersection
    databases: []        # pinned databases; empty = discover

    exclude:
      databases: "^(template0|template1|postgres)$"
      schemas: "^(pg_catalog|information_schema|pg_toast.*)$"
      tables: "^tmp_.*"
      case_sensitive: false
      tables_by_schema:
        public: "^(audit_log|event_.*)$"

    envelope:
      lock_timeout: 5s
      statement_timeout: 30min

    transport:
      psql: "sudo -u postgres psql"
      multiplex: true
      connect_timeout: 5
      ssh_options: ["Port=22"]
      timeout: 3600      # local watchdog per call, seconds; unset = none

Per-schema table exclusions may also come from the environment as
``MIGDIFF_TABLE_EXCLUDE_<schema>=<regex>``.
"""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError
from .exclusions import DEFAULT_EXCLUDE_DB, DEFAULT_EXCLUDE_SCHEMA, ExclusionRules
from .executor import DEFAULT_CONNECT_TIMEOUT, DEFAULT_PSQL, TransportSettings
from .probes import DEFAULT_LOCK_TIMEOUT, DEFAULT_STATEMENT_TIMEOUT, parse_namespace_list
from .scheduler import Envelope
from .utils import default_parallelism

ENV_PREFIX = "MIGDIFF_"
TABLE_EXCLUDE_ENV_PREFIX = ENV_PREFIX + "TABLE_EXCLUDE_"
DEFAULT_CONFIG_NAME = "migdiff.yml"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class Config:
    """Everything a run needs, fixed at start-up."""

    source: str
    target: str
    out_dir: Path = Path("out")
    probe_dir: Path = Path("probes")
    schemas: Tuple[str, ...] = ()
    databases: Tuple[str, ...] = ()
    parallelism: int = field(default_factory=default_parallelism)
    show_extra: bool = False
    exclusions: ExclusionRules = field(default_factory=ExclusionRules.build)
    envelope: Envelope = field(default_factory=Envelope)
    transport: TransportSettings = field(default_factory=TransportSettings)
    config_path: Optional[Path] = None

    def describe(self) -> List[str]:
        """Human-readable lines for report headers."""
        rules = self.exclusions
        return [
            f"Source: {self.source}",
            f"Target: {self.target}",
            f"Schemas: {', '.join(self.schemas) if self.schemas else '(per-DB intersection)'}",
            f"Databases: {', '.join(self.databases) if self.databases else '(discovered)'}",
            f"Parallelism: {self.parallelism}",
            f"Show extra on target: {self.show_extra}",
            f"Exclude DB regex: {rules.database.pattern if rules.database else '-'}",
            f"Exclude schema regex: {rules.namespace.pattern if rules.namespace else '-'}",
            f"Exclude table regex: {rules.table or '-'}",
            f"Per-schema table excludes: {dict(rules.table_by_namespace) or '-'}",
        ]


def load_config(path: Path) -> Dict[str, Any]:
    """Load a YAML config file.

    Raises
    ------
    ConfigError
        If the file does not exist or is not a mapping.
    """
    if not path.exists():
        raise ConfigError(f"config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"config must be a mapping: {path}")
    return data


def deep_get(d: Mapping[str, Any], keys: List[str], default: Any = None) -> Any:
    """Safely get nested dict value with default."""
    cur: Any = d
    for k in keys:
        if not isinstance(cur, Mapping) or k not in cur:
            return default
        cur = cur[k]
    return cur


def get_env_var(name: str) -> Optional[str]:
    """Return ``MIGDIFF_<NAME>`` from the environment, or None."""
    return os.environ.get(f"{ENV_PREFIX}{name.upper()}")


def parse_bool(value: Any, what: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{what}: expected a boolean, got {value!r}")


def parse_int(value: Any, what: str, minimum: int = 1) -> int:
    try:
        out = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{what}: expected an integer, got {value!r}") from exc
    if out < minimum:
        raise ConfigError(f"{what}: must be >= {minimum}, got {out}")
    return out


def pick(cli: Any, env_name: Optional[str], cfg_value: Any, default: Any = None) -> Any:
    """First value that is set: CLI, then environment, then config, then default."""
    if cli is not None and cli != "" and cli != []:
        return cli
    if env_name is not None:
        env = get_env_var(env_name)
        if env is not None:
            return env
    if cfg_value is not None:
        return cfg_value
    return default


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return parse_namespace_list(value)
    return [str(v) for v in value if str(v)]


def read_table_excludes(cfg: Mapping[str, Any], cli_pairs: Optional[List[str]]) -> Dict[str, str]:
    """Merge per-schema table excludes from config, environment and CLI (in that order)."""
    out: Dict[str, str] = {}
    for schema, pat in (deep_get(cfg, ["exclude", "tables_by_schema"], {}) or {}).items():
        out[str(schema).lower()] = str(pat or "")
    for key, pat in os.environ.items():
        if key.startswith(TABLE_EXCLUDE_ENV_PREFIX) and len(key) > len(TABLE_EXCLUDE_ENV_PREFIX):
            out[key[len(TABLE_EXCLUDE_ENV_PREFIX):].lower()] = pat
    for pair in cli_pairs or []:
        schema, sep, pat = pair.partition("=")
        if not sep or not schema.strip():
            raise ConfigError(f"--exclude-table-in expects SCHEMA=REGEX, got {pair!r}")
        out[schema.strip().lower()] = pat
    return {k: v for k, v in out.items() if v}


def build_config(cfg: Mapping[str, Any], args: argparse.Namespace, config_path: Optional[Path] = None) -> Config:
    """Combine config file values, environment and parsed CLI *args*.

    Raises
    ------
    ConfigError
        On missing hosts, bad numbers/booleans or invalid regexes.
    """
    source = pick(args.source, "source", cfg.get("source"))
    target = pick(args.target, "target", cfg.get("target"))
    if not source:
        raise ConfigError("missing source host (pass SOURCE, set MIGDIFF_SOURCE or `source:` in config)")
    if not target:
        raise ConfigError("missing target host (pass TARGET, set MIGDIFF_TARGET or `target:` in config)")
    if source == target:
        raise ConfigError(f"source and target are the same host: {source}")

    parallelism = parse_int(
        pick(args.parallelism, "parallelism", cfg.get("parallelism"), default_parallelism()),
        "parallelism",
    )
    show_extra = parse_bool(
        pick(args.show_extra, "show_extra_on_target", cfg.get("show_extra_on_target"), False),
        "show_extra_on_target",
    )

    exclusions = ExclusionRules.build(
        database=str(pick(args.exclude_db, "exclude_db_regex", deep_get(cfg, ["exclude", "databases"]), DEFAULT_EXCLUDE_DB)),
        namespace=str(pick(args.exclude_schema, "exclude_schema_regex", deep_get(cfg, ["exclude", "schemas"]), DEFAULT_EXCLUDE_SCHEMA)),
        table=str(pick(args.exclude_table, "exclude_table_regex", deep_get(cfg, ["exclude", "tables"]), "")),
        table_by_namespace=read_table_excludes(cfg, args.exclude_table_in),
        case_sensitive=parse_bool(
            pick(args.case_sensitive, "case_sensitive", deep_get(cfg, ["exclude", "case_sensitive"]), False),
            "case_sensitive",
        ),
    )

    envelope = Envelope(
        lock_timeout=str(pick(args.lock_timeout, "lock_timeout", deep_get(cfg, ["envelope", "lock_timeout"]), DEFAULT_LOCK_TIMEOUT)),
        statement_timeout=str(
            pick(args.statement_timeout, "statement_timeout", deep_get(cfg, ["envelope", "statement_timeout"]), DEFAULT_STATEMENT_TIMEOUT)
        ),
    )

    transport_timeout = pick(None, "transport_timeout", deep_get(cfg, ["transport", "timeout"]))
    multiplex = parse_bool(pick(None, "multiplex", deep_get(cfg, ["transport", "multiplex"]), True), "multiplex")
    if args.no_multiplex:
        multiplex = False
    transport = TransportSettings(
        psql=str(pick(args.psql, "psql", deep_get(cfg, ["transport", "psql"]), DEFAULT_PSQL)),
        connect_timeout=parse_int(
            pick(args.connect_timeout, "connect_timeout", deep_get(cfg, ["transport", "connect_timeout"]), DEFAULT_CONNECT_TIMEOUT),
            "connect_timeout",
        ),
        multiplex=multiplex,
        ssh_options=tuple(_as_list(deep_get(cfg, ["transport", "ssh_options"]))),
        timeout=parse_int(transport_timeout, "transport_timeout") if transport_timeout is not None else None,
    )

    return Config(
        source=str(source),
        target=str(target),
        out_dir=Path(str(pick(args.out, "out_dir", cfg.get("out_dir"), "out"))),
        probe_dir=Path(str(pick(args.probes, "probe_dir", cfg.get("probe_dir"), "probes"))),
        schemas=tuple(_as_list(pick(args.schemas, "schemas", cfg.get("schemas")))),
        databases=tuple(_as_list(pick(args.database, "databases", cfg.get("databases")))),
        parallelism=parallelism,
        show_extra=show_extra,
        exclusions=exclusions,
        envelope=envelope,
        transport=transport,
        config_path=config_path,
    )
