"""Exception types raised by migdiff.

The CLI maps these onto process exit codes (see :func:`migdiff.cli.main`).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .discovery import DiscoveryResult


class MigdiffError(Exception):
    """Base class for all migdiff errors."""


class ConfigError(MigdiffError):
    """Invalid or incomplete configuration (local precondition failure)."""


class ProbeError(MigdiffError):
    """Probe files are missing or malformed (local precondition failure)."""


class DiscoveryError(MigdiffError):
    """A host could not be listed, or nothing is comparable. Fatal for the run.

    ``result`` carries the notes gathered before giving up, when discovery got
    far enough to produce any.
    """

    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        result: Optional["DiscoveryResult"] = None,
    ) -> None:
        super().__init__(message)
        self.host = host
        self.result = result


class RunAborted(MigdiffError):
    """The run was interrupted; partial results were discarded."""
