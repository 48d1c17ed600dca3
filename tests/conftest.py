"""
Shared pytest fixtures for dehost tests.

Provides small read files, Kraken2 output files and helpers to write them
in any supported compression format.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from pathlib import Path

import pytest

from dehost.core.compression import Codec
from dehost.external.base import ExternalTool
from tests.utils.readfiles import fastq_text, kraken_line, write_file


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Temporary working directory."""
    return tmp_path


@pytest.fixture
def make_fastq(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a FASTQ file of the given ids."""

    def _make(name: str, ids: Iterable[str], codec: Codec = Codec.NONE) -> Path:
        return write_file(tmp_path / name, fastq_text(ids), codec)

    return _make


@pytest.fixture
def make_kraken(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a Kraken2 output file from pre-rendered lines."""

    def _make(lines: Iterable[str], name: str = "reads.kraken") -> Path:
        path = tmp_path / name
        path.write_text("".join(lines))
        return path

    return _make


@pytest.fixture
def example_reads(make_fastq: Callable[..., Path]) -> Path:
    """Single-end file with reads r1, r2, r3."""
    return make_fastq("a.fq", ["r1", "r2", "r3"])


@pytest.fixture
def example_kraken(make_kraken: Callable[..., Path]) -> Path:
    """r2 is human (9606) with confidence 0.9; r1 and r3 are unclassified."""
    return make_kraken(
        [
            kraken_line("r1"),
            kraken_line("r2", 9606, trace="9606:90 0:10"),
            kraken_line("r3"),
        ]
    )


@pytest.fixture
def paired_reads(make_fastq: Callable[..., Path]) -> tuple[Path, Path]:
    """Paired files with /1 and /2 mate suffixes for p1..p4."""
    ids = ["p1", "p2", "p3", "p4"]
    return (
        make_fastq("s_R1.fq", [f"{i}/1" for i in ids]),
        make_fastq("s_R2.fq", [f"{i}/2" for i in ids]),
    )


@pytest.fixture
def paired_kraken(make_kraken: Callable[..., Path]) -> Path:
    """Paired Kraken2 output: p2 and p4 are human."""
    return make_kraken(
        [
            kraken_line("p1", length="8|8", trace="0:2 |:| 0:2"),
            kraken_line("p2", 9606, length="8|8", trace="9606:2 |:| 9606:2"),
            kraken_line("p3", 562, length="8|8", trace="562:2 |:| 0:2"),
            kraken_line("p4", 9606, length="8|8", trace="9606:2 |:| 9606:2"),
        ]
    )


@pytest.fixture
def fake_kraken_path():
    """Resolve every external tool to /usr/bin/<name> for the test's duration."""
    ExternalTool.set_executable_resolver(lambda name: f"/usr/bin/{name}")
    yield
    ExternalTool.reset_executable_resolver()


@pytest.fixture
def kraken_db(tmp_path: Path) -> Path:
    """Directory that looks like a Kraken2 database."""
    db = tmp_path / "db_dir"
    db.mkdir()
    for name in ("hash.k2d", "opts.k2d", "taxo.k2d"):
        (db / name).write_bytes(b"\x00")
    return db
