"""Unit tests for run statistics."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from dehost.core.index import ClassificationRecord
from dehost.core.stats import StatsAccumulator
from dehost.models.stats import RunStats
from tests.utils.assertions import StatsAssertions

HOST = ClassificationRecord("h", True, 9606, 1.0, 100)
OTHER = ClassificationRecord("o", False, 0, 0.0, 100)


class TestStatsAccumulator:
    """Counting decisions and freezing the snapshot."""

    def test_counts(self):
        acc = StatsAccumulator()
        acc.record(HOST, kept=False, input_bytes=10)
        acc.record(OTHER, kept=True, input_bytes=10, output_bytes=10)
        acc.record(None, kept=True, input_bytes=5, output_bytes=5)

        stats = acc.finalize(input_paths=[Path("in.fq")], output_paths=[Path("out.fq")], elapsed_seconds=0.5)

        assert stats.total == 3
        assert stats.kept == 2
        assert stats.discarded == 1
        assert stats.classified == 1
        assert stats.unclassified == 1
        assert stats.missing == 1
        assert stats.input_bytes == 25
        assert stats.output_bytes == 15
        assert stats.layout == "single"

    def test_finalize_twice_raises(self):
        acc = StatsAccumulator("paired")
        acc.finalize(input_paths=[], output_paths=[], elapsed_seconds=0.0)
        assert acc.finalized
        with pytest.raises(RuntimeError, match="already finalized"):
            acc.finalize(input_paths=[], output_paths=[], elapsed_seconds=0.0)

    def test_record_after_finalize_raises(self):
        acc = StatsAccumulator()
        acc.finalize(input_paths=[], output_paths=[], elapsed_seconds=0.0)
        with pytest.raises(RuntimeError):
            acc.record(HOST, kept=False)

    def test_empty_run(self):
        stats = StatsAccumulator().finalize(input_paths=[], output_paths=[], elapsed_seconds=0.0)
        assert stats.total == 0
        assert stats.kept_pct == 0.0


class TestRunStats:
    """Invariants on the frozen snapshot."""

    def test_kept_plus_discarded_must_equal_total(self):
        with pytest.raises(ValidationError, match="kept"):
            RunStats(layout="single", total=3, kept=1, discarded=1, classified=2, unclassified=1)

    def test_verdict_counts_must_equal_total(self):
        with pytest.raises(ValidationError, match="classified"):
            RunStats(layout="single", total=2, kept=1, discarded=1, classified=0, unclassified=1)

    def test_percentages(self):
        stats = RunStats(layout="paired", total=4, kept=3, discarded=1, classified=1, unclassified=3)
        assert stats.kept_pct == pytest.approx(75.0)
        assert stats.discarded_pct == pytest.approx(25.0)

    def test_write_json(self, tmp_path: Path):
        stats = RunStats(
            layout="single",
            total=2,
            kept=1,
            discarded=1,
            classified=1,
            unclassified=1,
            input_paths=[tmp_path / "a.fq"],
        )
        path = tmp_path / "stats.json"
        stats.write_json(path)

        data = StatsAssertions.assert_valid_stats_file(path)
        StatsAssertions.assert_counts_sum_to_total(data)
        assert data["kept_pct"] == pytest.approx(50.0)
        assert json.loads(path.read_text())["input_paths"] == [str(tmp_path / "a.fq")]
