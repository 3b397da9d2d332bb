"""Shared fixtures: an in-memory executor standing in for ssh + psql."""

from __future__ import annotations

import re
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from migdiff.discovery import Q_LIST_DATABASES, Q_LIST_SCHEMAS
from migdiff.executor import ExecResult

_PROBE_RE = re.compile(r"--\s*probe:\s*(\w+)")


class FakeExecutor:
    """Answers catalog listings and probes from dictionaries.

    Probe payloads are recognised by a ``-- probe: <name>`` marker line.
    Records every call and the peak number of concurrent calls.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.databases: Dict[str, ExecResult] = {}
        self.schemas: Dict[Tuple[str, str], ExecResult] = {}
        self.probes: Dict[Tuple[str, str, str], ExecResult] = {}
        self.calls: List[Tuple[str, Optional[str], str]] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    # ---- setup helpers ----
    def set_databases(self, host: str, names: List[str]) -> None:
        self.databases[host] = ExecResult(0, "".join(f"{n}\n" for n in names))

    def set_schemas(self, host: str, db: str, names: List[str]) -> None:
        self.schemas[(host, db)] = ExecResult(0, "".join(f"{n}\n" for n in names))

    def set_probe(self, host: str, db: str, probe: str, stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self.probes[(host, db, probe)] = ExecResult(returncode, stdout, stderr)

    # ---- Executor protocol ----
    def run(self, host: str, payload: str, database: Optional[str] = None) -> ExecResult:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if payload == Q_LIST_DATABASES:
                self.calls.append((host, database, "list_databases"))
                return self.databases.get(host, ExecResult(2, "", f"could not connect to {host}\n"))
            if payload == Q_LIST_SCHEMAS:
                self.calls.append((host, database, "list_schemas"))
                return self.schemas.get((host, database or ""), ExecResult(0, ""))
            match = _PROBE_RE.search(payload)
            name = match.group(1) if match else "?"
            self.calls.append((host, database, name))
            return self.probes.get((host, database or "", name), ExecResult(0, ""))
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture
def fake() -> FakeExecutor:
    return FakeExecutor()


def write_probe(directory: Path, name: str, select: str = "SELECT 1") -> Path:
    """Write a minimal probe file carrying the marker the fake executor routes on."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.sql"
    path.write_text(
        f"-- probe: {name}\n{select}\nWHERE nspname IN (:include_schemas);\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def probe_dir(tmp_path: Path) -> Path:
    d = tmp_path / "probes"
    write_probe(d, "indexes")
    write_probe(d, "foreign_keys")
    return d


@pytest.fixture
def make_probe():
    return write_probe
