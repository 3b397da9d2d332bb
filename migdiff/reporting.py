"""
reporting
=========

Report generation.

A run produces:

- ``comparison_report_<timestamp>.txt``: discovery notes, the databases
  compared and, per database, the status of every probe, listing each
  missing/extra record for pairs that need attention;
- ``gaps/<db>/<probe>.missing.txt``: the missing-on-target records of one
  ATTENTION pair, one per line, for downstream tooling (empty when the pair
  only has extra records on the target);
- ``outputs/<host>/<db>/<probe>.canonical.txt``: the normalized records
  each side was compared on;
- ``SUMMARY.md``: a Markdown overview linking to the gap files.

Primary API
-----------
- :func:`build_report`
- :func:`write_outputs`
"""

from __future__ import annotations

import datetime as dt
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .diffing import ComparisonResult, Status
from .discovery import DiscoveryResult
from .scheduler import ArtifactSink
from .utils import artifact_name, lines_to_text, md_anchor, rel_link, write_text

SEPARATOR = "  " + "-" * 40

STATUS_TEXT = {
    Status.OK: "OK (no target changes needed)",
    Status.ATTENTION: "TARGET needs attention",
    Status.ERROR: "ERROR",
    Status.SKIP: "SKIP",
}


@dataclass
class Report:
    """All results of one run."""

    source: str
    target: str
    results: List[ComparisonResult] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    generated: dt.datetime = field(default_factory=dt.datetime.now)

    def databases(self) -> List[str]:
        """Compared databases in first-seen order."""
        seen: Dict[str, None] = {}
        for r in self.results:
            seen.setdefault(r.database, None)
        return list(seen)

    def by_database(self) -> Dict[str, List[ComparisonResult]]:
        out: Dict[str, List[ComparisonResult]] = {}
        for r in self.results:
            out.setdefault(r.database, []).append(r)
        return out

    def counts(self) -> Counter:
        return Counter(r.status for r in self.results)

    @property
    def has_differences(self) -> bool:
        return any(r.status is not Status.OK for r in self.results)


def build_report(source: str, target: str, discovery: DiscoveryResult, results: Sequence[ComparisonResult]) -> Report:
    return Report(
        source=source,
        target=target,
        results=list(results),
        notes=list(discovery.notes),
        skipped=list(discovery.skipped),
    )


def _status_line(r: ComparisonResult) -> str:
    text = STATUS_TEXT[r.status]
    if r.detail:
        text = f"{text} ({r.detail})"
    return f"  {r.probe}: {text}"


def render_text_report(report: Report, header_lines: Sequence[str] = ()) -> str:
    """Render the plain-text report."""
    lines: List[str] = ["== Migration Comparison Report =="]
    lines.append(f"Generated: {report.generated.strftime('%Y-%m-%d %H:%M:%S')}")
    lines.extend(header_lines)
    lines.append("")

    if report.notes or report.skipped:
        lines.extend(report.notes)
        for db, reason in report.skipped:
            lines.append(f"DB '{db}': {reason}")
        lines.append("")

    dbs = report.databases()
    lines.append(f"=== Databases to compare ({len(dbs)}) ===")
    lines.extend(f" - {db}" for db in dbs)
    lines.append("")
    lines.append("=== Target deltas ===")

    for db, results in report.by_database().items():
        lines.append("")
        lines.append(f"DB: {db}")
        for r in results:
            lines.append(_status_line(r))
            if r.status is not Status.ATTENTION:
                continue
            if r.missing:
                lines.append("    Missing on TARGET (present in SOURCE, absent in TARGET):")
                lines.extend(f"      {rec}" for rec in r.missing)
            if r.extra:
                lines.append("    Extra on TARGET (present in TARGET, absent in SOURCE):")
                lines.extend(f"      {rec}" for rec in r.extra)
            lines.append(SEPARATOR)

    counts = report.counts()
    lines.append("")
    lines.append("Totals: " + " ".join(f"{s.value}={counts.get(s, 0)}" for s in Status))
    if not report.results:
        lines.append("No comparable databases; nothing was compared.")
    elif report.has_differences:
        lines.append("Target differences found. See the gap files and outputs/ folders.")
    else:
        lines.append("All checks match; no target changes needed.")
    return lines_to_text(lines)


def gap_path(out_dir: Path, database: str, probe: str) -> Path:
    return out_dir / "gaps" / artifact_name(database) / f"{artifact_name(probe)}.missing.txt"


def write_gap_files(report: Report, out_dir: Path) -> Dict[Tuple[str, str], Path]:
    """Write one missing-on-target file per ATTENTION pair, empty if nothing is missing."""
    written: Dict[Tuple[str, str], Path] = {}
    for r in report.results:
        if r.status is Status.ATTENTION:
            path = gap_path(out_dir, r.database, r.probe)
            write_text(path, lines_to_text(r.missing))
            written[(r.database, r.probe)] = path
    return written


def write_canonical_outputs(report: Report, sink: ArtifactSink) -> None:
    """Write the normalized records each side was compared on."""
    for r in report.results:
        for host, canon in ((report.source, r.source), (report.target, r.target)):
            if canon is not None:
                sink.write(host, r.database, r.probe, ".canonical.txt", canon.text())


def generate_summary_md(
    report: Report,
    out_dir: Path,
    header_lines: Sequence[str],
    gap_files: Dict[Tuple[str, str], Path],
) -> Path:
    """Generate a Markdown summary linking to gap files.

    Links are written as *relative* paths so the whole output directory can be
    moved or archived while preserving navigation.
    """
    summary_path = out_dir / "SUMMARY.md"
    lines: List[str] = []
    lines.append("# Migration Diff Summary\n\n")
    lines.append(f"_Generated: {report.generated.strftime('%Y-%m-%d %H:%M:%S')}_\n\n")

    for h in header_lines:
        lines.append(f"- {h}\n")
    counts = report.counts()
    lines.append("- Totals: " + ", ".join(f"{s.value} {counts.get(s, 0)}" for s in Status) + "\n\n")

    if report.notes or report.skipped:
        lines.append("## Discovery notes\n\n")
        for note in report.notes:
            lines.append(f"- {note}\n")
        for db, reason in report.skipped:
            lines.append(f"- DB `{db}`: {reason}\n")
        lines.append("\n")

    grouped = report.by_database()
    lines.append("## Contents\n")
    for db in grouped:
        lines.append(f"- [{db}](#{md_anchor(db)})\n")
    lines.append("\n")

    for db, results in grouped.items():
        lines.append(f"## {db}\n\n")
        for r in results:
            gap: Optional[Path] = gap_files.get((r.database, r.probe))
            line = f"- `{r.probe}`: **{r.status.value}**"
            if gap is not None:
                line += f" ({len(r.missing)} missing, [{gap.name}]({rel_link(summary_path, gap)}))"
            elif r.detail:
                line += f" ({r.detail})"
            if r.extra:
                line += f", {len(r.extra)} extra on target"
            lines.append(line + "\n")
        lines.append("\n")

    write_text(summary_path, "".join(lines))
    return summary_path


def write_outputs(
    report: Report,
    out_dir: Path,
    sink: ArtifactSink,
    header_lines: Sequence[str] = (),
) -> Tuple[Path, Path]:
    """Write every report artifact; return ``(report_path, summary_path)``."""
    write_canonical_outputs(report, sink)
    gap_files = write_gap_files(report, out_dir)
    report_path = out_dir / f"comparison_report_{report.generated.strftime('%Y%m%d_%H%M%S')}.txt"
    write_text(report_path, render_text_report(report, header_lines))
    summary_path = generate_summary_md(report, out_dir, header_lines, gap_files)
    return report_path, summary_path
