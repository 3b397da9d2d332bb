#!/usr/bin/env python3
"""
cli
===

Compare the schema-level state of two PostgreSQL hosts after a migration.

Every ``*.sql`` probe in the probe directory is run, read-only, against each
database common to both hosts. Outputs are canonicalized and the report lists
only what the *target* is missing (optionally also what it has in excess).

Probe files
-----------
A probe prints one record per row, e.g.
``public.orders.f.orders_customer_id_fkey``, and uses the token
``:include_schemas`` exactly once::

    SELECT n.nspname || '.' || c.relname || '.' || i.relname
    FROM pg_index x
    JOIN pg_class c ON c.oid = x.indrelid
    JOIN pg_class i ON i.oid = x.indexrelid
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname IN (:include_schemas);

CLI Usage
---------

Basic run::

    migdiff db-old db-new

Fixed schema list, eight parallel jobs, also show extra objects::

    migdiff db-old db-new --schemas public,sales -j 8 --show-extra

Ignore temp tables everywhere and audit tables in ``public``::

    migdiff db-old db-new --exclude-table '^tmp_.*' --exclude-table-in 'public=^audit_log$'

Exit status is 0 whether or not differences were found, 1 for a local
precondition failure (no probes, bad configuration), 2 when discovery fails,
130 when interrupted.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from . import __version__
from .config import DEFAULT_CONFIG_NAME, Config, build_config, load_config
from .diffing import compare_pair
from .discovery import discover
from .errors import ConfigError, DiscoveryError, ProbeError, RunAborted
from .executor import Executor, SshPsqlExecutor, ensure_ssh
from .probes import load_probes
from .reporting import Report, build_report, write_outputs
from .scheduler import ArtifactSink, ProbeScheduler, WorkItem

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PRECONDITION = 1
EXIT_DISCOVERY = 2
EXIT_ABORTED = 130


class ComparisonRun:
    """One end-to-end run: discovery, scheduling, diffing, reporting."""

    def __init__(self, config: Config, executor: Executor) -> None:
        self.config = config
        self.executor = executor
        self.sink = ArtifactSink(config.out_dir / "outputs")
        self.scheduler = ProbeScheduler(
            executor,
            config.source,
            config.target,
            parallelism=config.parallelism,
            envelope=config.envelope,
            sink=self.sink,
        )

    def execute(self) -> Report:
        """Run the comparison and return the report (nothing is written yet).

        Raises
        ------
        ProbeError, DiscoveryError, RunAborted
        """
        probes = load_probes(self.config.probe_dir)
        logger.info("Loaded %d probe(s): %s", len(probes), ", ".join(p.name for p in probes))

        found = discover(self.executor, self.config)
        items = [WorkItem(plan, probe) for plan in found.plans for probe in probes]
        logger.info(
            "Running %d probe pair(s) over %d database(s), parallelism=%d",
            len(items),
            len(found.plans),
            self.scheduler.parallelism,
        )

        pairs = self.scheduler.run(items)

        results = [
            compare_pair(
                p.item.plan.name,
                p.item.probe.name,
                p.source,
                p.target,
                show_extra=self.config.show_extra,
                record_filter=p.item.plan.record_filter,
            )
            for p in pairs
        ]
        return build_report(self.config.source, self.config.target, found, results)

    def write(self, report: Report) -> None:
        header = self.config.describe()
        report_path, summary_path = write_outputs(report, self.config.out_dir, self.sink, header)
        logger.info("Report : %s", report_path)
        logger.info("Summary: %s", summary_path)
        logger.info("Outputs: %s", self.sink.root)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="migdiff",
        description="Report schema objects present on SOURCE but missing on TARGET after a PostgreSQL migration.",
    )
    ap.add_argument("source", nargs="?", default=None, help="Source host (SSH destination)")
    ap.add_argument("target", nargs="?", default=None, help="Target host (SSH destination)")
    ap.add_argument("--config", default=None, help=f"Path to YAML config (default: {DEFAULT_CONFIG_NAME} if present)")
    ap.add_argument("--out", default=None, help="Output directory (default: out)")
    ap.add_argument("--probes", default=None, help="Directory holding *.sql probes (default: probes)")
    ap.add_argument("--schemas", default=None, help="Fixed schema list, e.g. public,sales (default: per-DB intersection)")
    ap.add_argument("--database", action="append", default=[], help="Compare only this database (repeatable)")
    ap.add_argument("-j", "--parallelism", type=int, default=None, help="Concurrent remote jobs (default: CPU count)")

    ap.add_argument("--exclude-db", default=None, help="Deny regex for database names")
    ap.add_argument("--exclude-schema", default=None, help="Deny regex for schema names")
    ap.add_argument("--exclude-table", default=None, help="Deny regex for object names in every compared schema")
    ap.add_argument(
        "--exclude-table-in",
        action="append",
        default=[],
        metavar="SCHEMA=REGEX",
        help="Deny regex for object names in one schema (repeatable)",
    )
    ap.add_argument("--case-sensitive", action="store_const", const=True, default=None, help="Case-sensitive object excludes")
    ap.add_argument("--show-extra", action="store_const", const=True, default=None, help="Also report objects only on TARGET")

    ap.add_argument("--lock-timeout", default=None, help="lock_timeout per probe (default: 5s)")
    ap.add_argument("--statement-timeout", default=None, help="statement_timeout per probe (default: 30min)")
    ap.add_argument("--psql", default=None, help="Remote psql command (default: 'sudo -u postgres psql')")
    ap.add_argument("--connect-timeout", type=int, default=None, help="SSH ConnectTimeout seconds (default: 5)")
    ap.add_argument("--no-multiplex", action="store_true", help="Do not reuse SSH connections")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


def read_config(args: argparse.Namespace) -> Config:
    if args.config:
        path: Optional[Path] = Path(args.config).resolve()
        cfg: Dict[str, Any] = load_config(path)
    else:
        default = Path(DEFAULT_CONFIG_NAME)
        path = default.resolve() if default.exists() else None
        cfg = load_config(default) if path else {}
    return build_config(cfg, args, path)


def _install_abort_handlers(run: ComparisonRun) -> Dict[int, Any]:
    previous: Dict[int, Any] = {}

    def handler(signum: int, _frame: Any) -> None:
        logger.warning("Received signal %d, stopping admission of new jobs", signum)
        run.scheduler.abort()

    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    return previous


def main(argv: Optional[Sequence[str]] = None, executor: Optional[Executor] = None) -> int:
    """Run the CLI entry-point; return the process exit status."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = read_config(args)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_PRECONDITION

    if executor is None:
        ensure_ssh()
        ssh = SshPsqlExecutor(config.transport)
        with ssh:
            ssh.open([config.source, config.target])
            return _run(config, ssh)
    return _run(config, executor)


def _run(config: Config, executor: Executor) -> int:
    run = ComparisonRun(config, executor)
    previous: List[Any] = []
    try:
        previous = list(_install_abort_handlers(run).items())
    except ValueError:
        # not in the main thread; abort via signals unavailable
        logger.debug("Signal handlers not installed")

    try:
        report = run.execute()
    except ProbeError as exc:
        logger.error("%s", exc)
        return EXIT_PRECONDITION
    except DiscoveryError as exc:
        logger.error("Discovery failed: %s", exc)
        if exc.result is not None:
            run.write(build_report(config.source, config.target, exc.result, []))
        return EXIT_DISCOVERY
    except RunAborted as exc:
        logger.error("%s", exc)
        return EXIT_ABORTED
    finally:
        for sig, handler in previous:
            signal.signal(sig, handler)

    run.write(report)
    counts = report.counts()
    logger.info(
        "Done. %s",
        ", ".join(f"{status.value}={n}" for status, n in sorted(counts.items(), key=lambda kv: kv[0].value)),
    )
    if report.has_differences:
        logger.info("Target differences found.")
    else:
        logger.info("All checks match; no target changes needed.")
    return EXIT_OK


if __name__ == "__main__":
    if sys.version_info < (3, 10):
        raise SystemExit("Python 3.10+ required.")
    raise SystemExit(main())
