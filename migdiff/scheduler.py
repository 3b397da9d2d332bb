"""
scheduler
=========

Bounded-concurrency execution of probes against both hosts.

For every :class:`WorkItem` (one database, one probe) the scheduler submits
two jobs, one per host, to a :class:`~concurrent.futures.ThreadPoolExecutor`
of size *N*. A worker blocks on the remote call and frees its slot only when
the call returns, so at most *N* remote executions are in flight.

:meth:`ProbeScheduler.run` is the completion barrier: it returns only when
every submitted job has finished, so the differ never sees half a pair.

Job outcome
-----------
- ``FAILED``: non-zero exit, or *any* text on stderr (partial output next to
  an error is not trusted), or an exception from the executor;
- ``EMPTY``: exit 0 with no output, a valid result;
- ``SUCCEEDED``: exit 0 with output.

Abort
-----
:meth:`ProbeScheduler.abort` may be called from a signal handler. Queued jobs
are cancelled, running jobs finish, and :meth:`run` raises
:class:`~migdiff.errors.RunAborted`.
"""

from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from .errors import RunAborted
from .executor import Executor
from .probes import DEFAULT_LOCK_TIMEOUT, DEFAULT_STATEMENT_TIMEOUT, Probe, wrap_read_only
from .utils import artifact_name, default_parallelism, write_text

if TYPE_CHECKING:
    from .discovery import DatabasePlan

logger = logging.getLogger(__name__)

SIDES = ("source", "target")


class RunStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EMPTY = "empty"


@dataclass(frozen=True)
class ProbeRun:
    """Result of one probe on one (host, database). Never mutated."""

    host: str
    database: str
    probe: str
    status: RunStatus
    output: str = ""
    diagnostic: str = ""
    returncode: int = 0
    diagnostic_path: Optional[Path] = None

    @property
    def usable(self) -> bool:
        return self.status in (RunStatus.SUCCEEDED, RunStatus.EMPTY)


def classify(returncode: int, stdout: str, stderr: str) -> RunStatus:
    """Map a raw execution outcome onto a :class:`RunStatus`."""
    if returncode != 0 or stderr.strip():
        return RunStatus.FAILED
    if not stdout.strip():
        return RunStatus.EMPTY
    return RunStatus.SUCCEEDED


@dataclass(frozen=True)
class Envelope:
    """Timeouts requested from the server for every probe."""

    lock_timeout: str = DEFAULT_LOCK_TIMEOUT
    statement_timeout: str = DEFAULT_STATEMENT_TIMEOUT

    def wrap(self, sql: str) -> str:
        return wrap_read_only(sql, self.lock_timeout, self.statement_timeout)


@dataclass(frozen=True)
class WorkItem:
    plan: "DatabasePlan"
    probe: Probe

    @property
    def key(self) -> Tuple[str, str]:
        return (self.plan.name, self.probe.name)


@dataclass(frozen=True)
class PairRuns:
    """Both sides of one work item. A side is None if its job never ran."""

    item: WorkItem
    source: Optional[ProbeRun]
    target: Optional[ProbeRun]


class ArtifactSink:
    """Serialized writer for per-job output files.

    Layout: ``<root>/<host>/<database>/<probe>.txt`` (stdout) and
    ``.err`` (stderr, only when non-empty).
    """

    def __init__(self, root: Optional[Path]) -> None:
        self.root = root
        self._lock = threading.Lock()

    def path_for(self, host: str, database: str, probe: str, suffix: str) -> Optional[Path]:
        if self.root is None:
            return None
        return self.root / artifact_name(host) / artifact_name(database) / f"{artifact_name(probe)}{suffix}"

    def write(self, host: str, database: str, probe: str, suffix: str, content: str) -> Optional[Path]:
        path = self.path_for(host, database, probe, suffix)
        if path is None:
            return None
        with self._lock:
            write_text(path, content)
        return path


class ProbeScheduler:
    """Run work items on both hosts with at most *parallelism* jobs in flight."""

    def __init__(
        self,
        executor: Executor,
        source: str,
        target: str,
        parallelism: Optional[int] = None,
        envelope: Optional[Envelope] = None,
        sink: Optional[ArtifactSink] = None,
    ) -> None:
        if parallelism is not None and parallelism < 1:
            raise ValueError(f"parallelism must be positive, got {parallelism}")
        self.executor = executor
        self.hosts = {"source": source, "target": target}
        self.parallelism = parallelism or default_parallelism()
        self.envelope = envelope or Envelope()
        self.sink = sink or ArtifactSink(None)
        self._abort = threading.Event()
        # re-entrant: abort() may run in a signal handler while run() holds it
        self._lock = threading.RLock()
        self._pending: List[Future] = []

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def abort(self) -> None:
        """Stop admitting jobs; in-flight jobs finish naturally."""
        self._abort.set()
        with self._lock:
            pending = list(self._pending)
        cancelled = sum(1 for f in pending if f.cancel())
        logger.warning("Abort requested: %d queued job(s) cancelled, waiting for running jobs", cancelled)

    def _job(self, side: str, item: WorkItem) -> Optional[ProbeRun]:
        if self._abort.is_set():
            return None
        host = self.hosts[side]
        db = item.plan.name
        payload = self.envelope.wrap(item.probe.render(item.plan.namespaces))
        logger.info("   -> %s : %s on %s", db, item.probe.name, host)
        try:
            res = self.executor.run(host, payload, db)
            returncode, stdout, stderr = res.returncode, res.stdout, res.stderr
        except Exception as exc:  # executor bug or transport crash: record, keep going
            logger.exception("Executor raised for %s on %s/%s", item.probe.name, host, db)
            returncode, stdout, stderr = -1, "", f"{type(exc).__name__}: {exc}\n"

        status = classify(returncode, stdout, stderr)
        self.sink.write(host, db, item.probe.name, ".txt", stdout)
        err_path = None
        if stderr.strip():
            err_path = self.sink.write(host, db, item.probe.name, ".err", stderr)
        if status is RunStatus.FAILED:
            logger.error(
                "ERROR: %s on %s/%s (exit %s)%s",
                item.probe.name,
                host,
                db,
                returncode,
                f" see {err_path}" if err_path else "",
            )
        return ProbeRun(
            host=host,
            database=db,
            probe=item.probe.name,
            status=status,
            output=stdout,
            diagnostic=stderr,
            returncode=returncode,
            diagnostic_path=err_path,
        )

    def run(self, items: Sequence[WorkItem]) -> List[PairRuns]:
        """Execute every item on both hosts and wait for all of them.

        Returns
        -------
        list[PairRuns]
            One entry per item, in input order.

        Raises
        ------
        RunAborted
            If :meth:`abort` was called before all jobs finished.
        """
        futures: Dict[Tuple[int, str], Future] = {}
        with ThreadPoolExecutor(max_workers=self.parallelism, thread_name_prefix="probe") as pool:
            for idx, item in enumerate(items):
                for side in SIDES:
                    if self._abort.is_set():
                        break
                    fut = pool.submit(self._job, side, item)
                    futures[(idx, side)] = fut
                    with self._lock:
                        self._pending.append(fut)
            logger.debug("Submitted %d job(s) with parallelism=%d", len(futures), self.parallelism)
            wait(list(futures.values()))

        with self._lock:
            self._pending = []
        if self._abort.is_set():
            raise RunAborted("run aborted; partial results discarded")

        def result_of(idx: int, side: str) -> Optional[ProbeRun]:
            fut = futures.get((idx, side))
            if fut is None or fut.cancelled():
                return None
            return fut.result()

        return [
            PairRuns(item=item, source=result_of(i, "source"), target=result_of(i, "target"))
            for i, item in enumerate(items)
        ]
