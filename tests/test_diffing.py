"""Unit tests for the asymmetric differ and pair classification."""

import re
from pathlib import Path
from typing import Optional

from migdiff.canonical import CanonicalResult, canonicalize
from migdiff.diffing import Status, compare_pair, extra_on_target, missing_on_target
from migdiff.scheduler import ProbeRun, classify


def run(
    output: str = "",
    returncode: int = 0,
    stderr: str = "",
    host: str = "h",
    path: Optional[Path] = None,
) -> ProbeRun:
    return ProbeRun(
        host=host,
        database="app",
        probe="indexes",
        status=classify(returncode, output, stderr),
        output=output,
        diagnostic=stderr,
        returncode=returncode,
        diagnostic_path=path,
    )


def cr(*records: str) -> CanonicalResult:
    return CanonicalResult.from_records(records)


class TestDifference:
    """Tests for missing_on_target and extra_on_target."""

    def test_missing_on_target(self) -> None:
        """Test both directions of the difference."""
        src = cr("a", "b", "c", "d")
        tgt = cr("b", "d", "e")
        assert missing_on_target(src, tgt) == ("a", "c")
        assert extra_on_target(src, tgt) == ("e",)

    def test_identical_sets(self) -> None:
        """Test equal sides have nothing missing."""
        src = cr("x", "y")
        assert missing_on_target(src, src) == ()

    def test_empty_sides(self) -> None:
        """Test an empty side on either end."""
        assert missing_on_target(cr(), cr("a")) == ()
        assert missing_on_target(cr("a"), cr()) == ("a",)

    def test_matches_set_semantics(self) -> None:
        """Test the merge agrees with plain set difference."""
        src_records = [f"r{i:03d}" for i in range(0, 200, 3)] + ["Ä", "z"]
        tgt_records = [f"r{i:03d}" for i in range(0, 200, 5)] + ["z"]
        src, tgt = cr(*src_records), cr(*tgt_records)
        missing = missing_on_target(src, tgt)
        extra = extra_on_target(src, tgt)
        assert set(missing) == set(src_records) - set(tgt_records)
        assert set(missing) <= set(src.records)
        assert not set(missing) & set(tgt.records)
        assert set(missing) | set(tgt.records) >= set(src.records)
        assert set(extra) == set(tgt_records) - set(src_records)
        assert list(missing) == list(cr(*missing).records)

    def test_undecodable_record_compared_by_bytes(self) -> None:
        """Test a Latin-1 record differs from its UTF-8 spelling."""
        latin1 = "public.caf\udce9_orders.idx.i"
        src = canonicalize(f"{latin1}\npublic.a.idx.a\n")
        tgt = canonicalize("public.café_orders.idx.i\npublic.a.idx.a\n")
        assert missing_on_target(src, tgt) == (latin1,)
        assert missing_on_target(src, canonicalize(f"public.a.idx.a\n{latin1}\n")) == ()


class TestComparePair:
    """Tests for compare_pair classification."""

    def test_ok_when_target_superset_without_extra(self) -> None:
        """Test extra target records are ignored unless requested."""
        res = compare_pair("app", "indexes", run("a\nb\n"), run("b\na\nc\n"))
        assert res.status is Status.OK
        assert res.missing == ()
        assert res.extra == ()

    def test_attention_when_missing(self) -> None:
        """Test a record absent on target needs attention."""
        res = compare_pair(
            "app",
            "indexes",
            run("a.t1.pk.idx1\na.t1.pk.idx2\n"),
            run("a.t1.pk.idx1\n"),
        )
        assert res.status is Status.ATTENTION
        assert res.missing == ("a.t1.pk.idx2",)

    def test_show_extra_turns_extra_into_attention(self) -> None:
        """Test requested extra records make the pair need attention."""
        res = compare_pair("app", "indexes", run("a\n"), run("a\nb\n"), show_extra=True)
        assert res.status is Status.ATTENTION
        assert res.missing == ()
        assert res.extra == ("b",)

    def test_both_empty_is_ok(self) -> None:
        """Test two empty results match."""
        res = compare_pair("app", "indexes", run(""), run(""))
        assert res.status is Status.OK

    def test_failed_side_is_error(self, tmp_path: Path) -> None:
        """Test stderr makes a side fail even with partial output."""
        err = tmp_path / "indexes.err"
        res = compare_pair(
            "app",
            "indexes",
            run("partial\n", returncode=0, stderr="ERROR:  canceling statement due to lock timeout\n", path=err),
            run("a\n"),
        )
        assert res.status is Status.ERROR
        assert "source failed" in res.detail
        assert str(err) in res.detail
        assert "lock timeout" in res.detail
        assert res.missing == ()

    def test_both_failed(self) -> None:
        """Test both failures are named in the detail."""
        res = compare_pair("app", "indexes", run(returncode=2, stderr="x\n"), run(returncode=3))
        assert res.status is Status.ERROR
        assert "source failed (exit 2" in res.detail
        assert "target failed (exit 3" in res.detail

    def test_skip_when_side_missing(self) -> None:
        """Test a side that never ran is a skip."""
        res = compare_pair("app", "indexes", run("a\n"), None)
        assert res.status is Status.SKIP
        assert res.detail == "missing output on target"

    def test_error_wins_over_skip(self) -> None:
        """Test a failure is reported even when the other side never ran."""
        res = compare_pair("app", "indexes", None, run(returncode=1, stderr="boom\n"))
        assert res.status is Status.ERROR

    def test_record_filter_applied_to_both_sides(self) -> None:
        """Test excluded records are dropped before diffing."""
        pattern = re.compile(r"^(public)\.(tmp_.*)", re.IGNORECASE)
        res = compare_pair(
            "app",
            "indexes",
            run("public.tmp_x.idx.i\npublic.orders.idx.o\n"),
            run("public.orders.idx.o\n"),
            record_filter=pattern,
        )
        assert res.status is Status.OK
        assert "public.tmp_x.idx.i" not in res.source

    def test_canonical_results_kept_for_output(self) -> None:
        """Test the compared records are kept on the result."""
        res = compare_pair("app", "indexes", run("b\na\n"), run("a\n"))
        assert res.source == canonicalize("a\nb\n")
        assert res.target == canonicalize("a\n")
