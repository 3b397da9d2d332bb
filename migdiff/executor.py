"""
executor
========

Remote ``psql`` execution over SSH.

This module is responsible for sending a SQL payload to a host and returning
what ``psql`` printed. It is the only place that knows about SSH and
``psql`` command lines; everything else talks to the :class:`Executor`
protocol:

- input: host + SQL payload (+ optional database)
- output: :class:`ExecResult` (exit code, stdout, stderr)

This keeps discovery and scheduling testable with an in-memory fake.

Connection reuse
----------------
With ``multiplex=True`` the executor uses an SSH ControlMaster per host, so
the many short probe sessions ride on one authenticated connection. Use the
executor as a context manager to pre-open and tear down the masters::

    with SshPsqlExecutor(settings) as ex:
        ex.open(["db-old", "db-new"])
        ex.run("db-old", "SELECT 1;")
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Tuple

from .utils import normalize_newlines

logger = logging.getLogger(__name__)

DEFAULT_PSQL = "sudo -u postgres psql"
DEFAULT_CONNECT_TIMEOUT = 5  # seconds
CONTROL_PERSIST = "5m"


@dataclass(frozen=True)
class ExecResult:
    """Outcome of one remote execution.

    Parameters
    ----------
    returncode:
        Exit status of the remote command (``124`` for a transport timeout,
        ``127`` when ``ssh`` could not be started).
    stdout:
        Primary output with normalized newlines.
    stderr:
        Diagnostic side channel.
    """

    returncode: int
    stdout: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """True when the command exited 0 and wrote nothing to stderr."""
        return self.returncode == 0 and not self.stderr.strip()


class Executor(Protocol):
    """Capability: run *payload* on *host* against *database*."""

    def run(self, host: str, payload: str, database: Optional[str] = None) -> ExecResult:
        ...


@dataclass(frozen=True)
class TransportSettings:
    """How to reach the hosts.

    Attributes:
        psql: Remote command used to start ``psql`` (split with shell rules).
        connect_timeout: SSH ``ConnectTimeout`` in seconds.
        multiplex: Reuse one SSH ControlMaster connection per host.
        ssh_options: Extra ``-o`` options, e.g. ``["Port=2222"]``.
        timeout: Optional local timeout for one transport call, in seconds.
    """

    psql: str = DEFAULT_PSQL
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    multiplex: bool = True
    ssh_options: Tuple[str, ...] = field(default_factory=tuple)
    timeout: Optional[int] = None


def ensure_ssh() -> None:
    """Ensure the ``ssh`` executable exists on PATH.

    Raises
    ------
    SystemExit
        If ``ssh`` is not found.
    """
    if shutil.which("ssh") is None:
        raise SystemExit("ERROR: `ssh` not found in PATH. Install OpenSSH client.")


def psql_command(psql: str, database: Optional[str] = None) -> str:
    """Build the remote ``psql`` command line (quiet, unaligned, tuples only)."""
    parts = shlex.split(psql) + [
        "-X",
        "-qAt",
        "-P",
        "pager=off",
        "--set=ON_ERROR_STOP=1",
    ]
    if database:
        parts += ["-d", database]
    parts += ["-f", "-"]
    return " ".join(shlex.quote(p) for p in parts)


class SshPsqlExecutor:
    """Run SQL on remote hosts through ``ssh <host> psql -f -``."""

    def __init__(self, settings: Optional[TransportSettings] = None) -> None:
        self.settings = settings or TransportSettings()
        self._control_dir: Optional[Path] = None
        self._opened: List[str] = []

    # ---- connection pooling ----
    def __enter__(self) -> "SshPsqlExecutor":
        if self.settings.multiplex:
            self._control_dir = Path(tempfile.mkdtemp(prefix="migdiff-ssh-"))
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def ssh_base(self) -> List[str]:
        """Return the ``ssh`` argv prefix shared by every call."""
        cmd = [
            "ssh",
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self.settings.connect_timeout}",
            "-o",
            "StrictHostKeyChecking=accept-new",
        ]
        if self._control_dir is not None:
            cmd += [
                "-o",
                "ControlMaster=auto",
                "-o",
                f"ControlPersist={CONTROL_PERSIST}",
                "-o",
                f"ControlPath={self._control_dir}/cm-%r@%h:%p",
            ]
        for opt in self.settings.ssh_options:
            cmd += ["-o", opt]
        return cmd

    def open(self, hosts: Iterable[str]) -> None:
        """Pre-open a ControlMaster per host. Failures are left to the first real call."""
        if self._control_dir is None:
            return
        for host in hosts:
            proc = subprocess.run(
                self.ssh_base() + ["-N", "-f", host],
                check=False,
                capture_output=True,
                text=True,
            )
            if proc.returncode == 0:
                self._opened.append(host)
            else:
                logger.warning("Could not pre-open SSH master for %s: %s", host, proc.stderr.strip())

    def close(self) -> None:
        """Close ControlMasters and remove the control directory."""
        if self._control_dir is None:
            return
        for host in self._opened:
            subprocess.run(
                self.ssh_base() + ["-O", "exit", host],
                check=False,
                capture_output=True,
                text=True,
            )
        self._opened = []
        shutil.rmtree(self._control_dir, ignore_errors=True)
        self._control_dir = None

    # ---- execution ----
    def run(self, host: str, payload: str, database: Optional[str] = None) -> ExecResult:
        """Send *payload* to ``psql`` on *host* and capture its output.

        Parameters
        ----------
        host:
            SSH destination.
        payload:
            SQL text, fed to ``psql -f -`` on stdin.
        database:
            Database to connect to; the server default when omitted.

        Returns
        -------
        ExecResult
            Never raises for remote failures; the exit code and stderr carry
            them. Output is decoded as UTF-8 with ``surrogateescape``, so
            bytes that are not valid UTF-8 survive and still compare by their
            raw value.
        """
        cmd = self.ssh_base() + [host, psql_command(self.settings.psql, database)]
        logger.debug("ssh %s db=%s", host, database or "-")
        try:
            proc = subprocess.run(
                cmd,
                input=payload,
                check=False,
                capture_output=True,
                encoding="utf-8",
                errors="surrogateescape",
                timeout=self.settings.timeout,
            )
        except subprocess.TimeoutExpired:
            return ExecResult(124, "", f"TIMEOUT: transport timed out after {self.settings.timeout} seconds\n")
        except OSError as exc:
            return ExecResult(127, "", f"could not start ssh: {exc}\n")

        return ExecResult(
            proc.returncode,
            normalize_newlines(proc.stdout or ""),
            normalize_newlines(proc.stderr or ""),
        )
