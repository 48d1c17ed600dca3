"""Unit tests for the FASTA/FASTQ record scanner and mate normalization."""

from __future__ import annotations

from pathlib import Path

import pytest

from dehost.core.codecs import open_reader
from dehost.core.compression import Codec
from dehost.core.exceptions import ConfigurationError, FormatError
from dehost.core.records import MATE_SUFFIX_PRESETS, MateNormalizer, ReadFileScanner
from tests.utils.readfiles import fasta_text, fastq_text, write_file


def scan(path: Path) -> list:
    with open_reader(path) as reader:
        return list(ReadFileScanner(reader))


class TestFastqScanning:
    """Tests for FASTQ layout."""

    @pytest.mark.parametrize("codec", list(Codec))
    def test_parses_ids_in_order(self, tmp_path: Path, codec: Codec):
        path = write_file(tmp_path / "reads.fq", fastq_text(["a", "b", "c"]), codec)
        records = scan(path)
        assert [r.id for r in records] == ["a", "b", "c"]
        assert all(r.quality is not None for r in records)

    def test_raw_is_byte_exact(self, tmp_path: Path):
        """Headers, comments and '+' lines are preserved verbatim."""
        text = "@r1 1:N:0:ATCG extra\nACGT\n+r1 again\nIIII\n@r2\nTT\n+\n##\n"
        path = write_file(tmp_path / "reads.fq", text)
        records = scan(path)

        assert b"".join(r.raw for r in records) == text.encode()
        assert records[0].id == "r1"
        assert records[0].header == b"@r1 1:N:0:ATCG extra"
        assert records[0].sequence == b"ACGT"
        assert records[1].quality == b"##"

    def test_crlf_line_endings(self, tmp_path: Path):
        text = "@r1\r\nACGT\r\n+\r\nIIII\r\n"
        path = write_file(tmp_path / "reads.fq", text)
        (record,) = scan(path)
        assert record.sequence == b"ACGT"
        assert record.raw == text.encode()

    def test_missing_final_newline(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fq", "@r1\nAC\n+\nII")
        (record,) = scan(path)
        assert record.quality == b"II"
        assert record.raw == b"@r1\nAC\n+\nII"

    def test_empty_file_yields_nothing(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fq", "")
        assert scan(path) == []

    def test_blank_lines_between_records(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fq", "\n@r1\nA\n+\nI\n\n@r2\nC\n+\nI\n")
        assert [r.id for r in scan(path)] == ["r1", "r2"]

    def test_record_spanning_chunk_boundary(self, tmp_path: Path):
        """Lines longer than one read chunk are reassembled."""
        seq = "A" * 200_000
        path = write_file(tmp_path / "long.fq.gz", f"@long\n{seq}\n+\n{'I' * 200_000}\n", Codec.GZIP)
        (record,) = scan(path)
        assert len(record.sequence) == 200_000


class TestFastqErrors:
    """Malformed FASTQ raises FormatError with the offending line."""

    def test_truncated_record(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fq", "@r1\nA\n+\nI\n@r2\nAC\n")
        with pytest.raises(FormatError, match="truncated") as exc_info:
            scan(path)
        assert exc_info.value.line == 5

    def test_missing_plus_line(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fq", "@r1\nACGT\nIIII\n@r2\n")
        with pytest.raises(FormatError, match="'\\+'") as exc_info:
            scan(path)
        assert exc_info.value.line == 3

    def test_quality_length_mismatch(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fq", "@r1\nA\n+\nI\n@r2\nACGT\n+\nII\n")
        with pytest.raises(FormatError, match="quality length") as exc_info:
            scan(path)
        assert exc_info.value.line == 8
        assert "r2" in exc_info.value.message

    def test_bad_sentinel(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fq", "r1\nACGT\n")
        with pytest.raises(FormatError) as exc_info:
            scan(path)
        assert exc_info.value.line == 1

    def test_record_not_starting_with_at(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fq", "@r1\nA\n+\nI\nr2\nA\n+\nI\n")
        with pytest.raises(FormatError, match="'@'") as exc_info:
            scan(path)
        assert exc_info.value.line == 5

    def test_empty_id(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fq", "@ \nA\n+\nI\n")
        with pytest.raises(FormatError, match="empty read id"):
            scan(path)


class TestFastaScanning:
    """Tests for FASTA layout."""

    def test_multiline_sequences(self, tmp_path: Path):
        text = fasta_text(["s1", "s2"])
        path = write_file(tmp_path / "reads.fa", text)
        records = scan(path)

        assert [r.id for r in records] == ["s1", "s2"]
        assert records[0].sequence == b"ACGTTGCA"
        assert records[0].quality is None
        assert b"".join(r.raw for r in records) == text.encode()

    def test_header_only_record(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fa", ">empty\n>s2\nAC\n")
        records = scan(path)
        assert [r.id for r in records] == ["empty", "s2"]
        assert records[0].sequence == b""


class TestScannerState:
    """Single-pass semantics and counters."""

    def test_second_iteration_raises(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fq", fastq_text(["a"]))
        with open_reader(path) as reader:
            scanner = ReadFileScanner(reader)
            list(scanner)
            with pytest.raises(RuntimeError, match="single-pass"):
                iter(scanner)

    def test_counts_records_and_lines(self, tmp_path: Path):
        path = write_file(tmp_path / "reads.fq", fastq_text(["a", "b"]))
        with open_reader(path) as reader:
            scanner = ReadFileScanner(reader)
            list(scanner)
        assert scanner.records == 2
        assert scanner.line_number == 8
        assert scanner.path == path


class TestMateNormalizer:
    """Mate suffix presets and custom rules."""

    @pytest.mark.parametrize(
        ("rule", "read_id", "expected"),
        [
            ("slash", "read1/1", "read1"),
            ("slash", "read1/2", "read1"),
            ("slash", "read1.1", "read1.1"),
            ("dot", "SRR123.45.1", "SRR123.45"),
            ("underscore", "frag_7_2", "frag_7"),
            ("any", "read1/2", "read1"),
            ("any", "read1.1", "read1"),
            ("any", "read1_2", "read1"),
            ("none", "read1/1", "read1/1"),
            ("slash", "read1/3", "read1/3"),
        ],
    )
    def test_presets(self, rule: str, read_id: str, expected: str):
        assert MateNormalizer(rule)(read_id) == expected

    def test_casava_ids_need_no_stripping(self, tmp_path: Path):
        """Illumina 1.8+ puts the mate number in the comment, not the id."""
        path = write_file(
            tmp_path / "reads.fq",
            "@M001:1:FC:1:1101:1000:2000 1:N:0:ATCG\nA\n+\nI\n",
        )
        (record,) = scan(path)
        assert MateNormalizer("slash")(record.id) == "M001:1:FC:1:1101:1000:2000"

    def test_custom_regex(self):
        assert MateNormalizer(r"-R[12]$")("frag-R2") == "frag"

    @pytest.mark.parametrize("pattern", [r"/[12]", r"(", r".*$", r"x?$"])
    def test_rejects_bad_patterns(self, pattern: str):
        """Unanchored, invalid or empty-matching rules are configuration errors."""
        with pytest.raises(ConfigurationError):
            MateNormalizer(pattern)

    def test_presets_are_known(self):
        assert set(MATE_SUFFIX_PRESETS) == {"none", "slash", "dot", "underscore", "any"}
