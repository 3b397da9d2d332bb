"""
migdiff
=======

Schema-level migration verification for PostgreSQL.

The package runs the same read-only SQL probes against a *source* and a
*target* host, canonicalizes their output and reports every record that is
present on the source but missing on the target.

Modules are intended to be used together via the CLI entry point:

- :mod:`migdiff.cli`

Pipeline
--------
:mod:`~migdiff.discovery` -> :mod:`~migdiff.exclusions` ->
:mod:`~migdiff.scheduler` -> :mod:`~migdiff.canonical` ->
:mod:`~migdiff.diffing` -> :mod:`~migdiff.reporting`
"""

__version__ = "0.3.0"
