"""Unit tests for the external tool base class and the Kraken2 wrapper.

All tests mock subprocess execution, so kraken2 need not be installed.
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar
from unittest.mock import MagicMock, patch

import pytest

from dehost.core.compression import Codec
from dehost.core.exceptions import (
    DatabaseError,
    EmptyClassifierOutputError,
    InvalidThresholdError,
)
from dehost.external.base import (
    ExternalTool,
    ToolExecutionError,
    ToolNotFoundError,
    ToolResult,
)
from dehost.external.kraken import (
    Kraken2,
    KrakenSummary,
    classify_reads,
    parse_confidence_score,
    prepare_classifier_input,
    validate_db_directory,
)
from tests.utils.readfiles import fastq_text, kraken_line, write_file

KRAKEN_STDERR = (
    "Loading database information... done.\n"
    "1,000 sequences (0.15 Mbp) processed in 0.123s (487.8 Kseq/m, 73.17 Mbp/m).\n"
    "  12 sequences classified (1.20%)\n"
    "  988 sequences unclassified (98.80%)\n"
)


class _MockTool(ExternalTool):
    """Minimal concrete tool for exercising the base class."""

    TOOL_NAME: ClassVar[str] = "mocktool"
    INSTALL_HINT: ClassVar[str] = "pip install mocktool"

    def build_command(self, **kwargs: object) -> list[str]:
        return [str(self.get_executable()), "run"]


@pytest.fixture(autouse=True)
def _reset_resolver():
    """Each test starts with the default resolver."""
    ExternalTool.reset_executable_resolver()
    yield
    ExternalTool.reset_executable_resolver()


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


def _fake_kraken(lines: list[str], stderr: str = KRAKEN_STDERR, returncode: int = 0):
    """subprocess.run side effect that writes ``lines`` to the --output path."""
    calls: list[list[str]] = []

    def _run(command: list[str], **kwargs: object) -> MagicMock:
        calls.append(list(command))
        output = Path(command[command.index("--output") + 1])
        output.write_text("".join(lines))
        return _completed(returncode, stderr=stderr)

    _run.calls = calls
    return _run


class TestExecutableResolution:
    """Locating tools and the resolver hook."""

    def test_resolver_receives_tool_name(self):
        resolver = MagicMock(return_value="/opt/bin/mocktool")
        ExternalTool.set_executable_resolver(resolver)
        assert _MockTool.get_executable() == Path("/opt/bin/mocktool")
        resolver.assert_called_once_with("mocktool")

    def test_missing_tool(self):
        ExternalTool.set_executable_resolver(lambda name: None)
        assert _MockTool.check_available() is False
        with pytest.raises(ToolNotFoundError) as exc_info:
            _MockTool.get_executable()
        assert "pip install mocktool" in exc_info.value.suggestion
        assert exc_info.value.exit_code == 7

    def test_resolver_is_shared_by_subclasses(self):
        ExternalTool.set_executable_resolver(lambda name: f"/custom/{name}")
        assert Kraken2.get_executable() == Path("/custom/kraken2")
        assert _MockTool.get_executable() == Path("/custom/mocktool")


class TestRun:
    """Running tools through subprocess."""

    def test_dry_run_does_not_execute(self, fake_kraken_path):
        with patch("dehost.external.base.subprocess.run") as mock_run:
            result = _MockTool().run(dry_run=True)
        mock_run.assert_not_called()
        assert result.success
        assert result.command_string == "/usr/bin/mocktool run"

    def test_captures_output(self, fake_kraken_path):
        with patch("dehost.external.base.subprocess.run", return_value=_completed(0, "out", "err")):
            result = _MockTool().run()
        assert isinstance(result, ToolResult)
        assert result.stdout == "out"
        assert result.stderr == "err"

    def test_non_zero_exit_raises(self, fake_kraken_path):
        with (
            patch("dehost.external.base.subprocess.run", return_value=_completed(2, stderr="database corrupt")),
            pytest.raises(ToolExecutionError) as exc_info,
        ):
            _MockTool().run()
        assert exc_info.value.return_code == 2
        assert "database corrupt" in exc_info.value.message
        assert "/usr/bin/mocktool run" in exc_info.value.suggestion
        assert exc_info.value.exit_code == 7

    def test_vanished_executable(self, fake_kraken_path):
        with (
            patch("dehost.external.base.subprocess.run", side_effect=FileNotFoundError),
            pytest.raises(ToolNotFoundError),
        ):
            _MockTool().run()

    def test_stderr_tail_is_quoted(self, fake_kraken_path):
        stderr = "".join(f"line {i}\n" for i in range(30))
        with (
            patch("dehost.external.base.subprocess.run", return_value=_completed(1, stderr=stderr)),
            pytest.raises(ToolExecutionError) as exc_info,
        ):
            _MockTool().run()
        assert "line 29" in exc_info.value.message
        assert "line 19" not in exc_info.value.message

    def test_version(self, fake_kraken_path):
        stdout = "\nKraken version 2.1.3\nCopyright 2013-2023\n"
        with patch("dehost.external.base.subprocess.run", return_value=_completed(0, stdout)):
            assert Kraken2().version() == "Kraken version 2.1.3"

    def test_version_missing_tool(self):
        ExternalTool.set_executable_resolver(lambda name: None)
        assert Kraken2().version() is None


class TestKrakenCommand:
    """Kraken2 command construction."""

    def test_single_end(self, fake_kraken_path):
        cmd = Kraken2().build_command(
            reads_1=Path("r.fq.gz"),
            database=Path("/db"),
            output=Path("r.kraken"),
            threads=4,
        )
        assert cmd == [
            "/usr/bin/kraken2", "--db", "/db", "--threads", "4",
            "--output", "r.kraken", "r.fq.gz",
        ]

    def test_paired_with_options(self, fake_kraken_path):
        cmd = Kraken2().build_command(
            reads_1=Path("a_R1.fq"),
            reads_2=Path("a_R2.fq"),
            database=Path("/db"),
            output=Path("a.kraken"),
            confidence=0.1,
            memory_mapping=True,
        )
        assert cmd[-3:] == ["--paired", "a_R1.fq", "a_R2.fq"]
        assert cmd[cmd.index("--confidence") + 1] == "0.1"
        assert "--memory-mapping" in cmd


class TestKrakenSummary:
    """Parsing the stderr summary."""

    def test_parses_counts(self):
        summary = KrakenSummary.from_stderr(KRAKEN_STDERR)
        assert summary == KrakenSummary(processed=1000, classified=12, unclassified=988)
        assert summary.classified_pct == pytest.approx(1.2)

    def test_absent_summary(self):
        summary = KrakenSummary.from_stderr("Loading database information... done.\n")
        assert summary.processed == 0
        assert summary.classified_pct == 0.0


class TestValidateDbDirectory:
    """Database directory checks."""

    def test_direct_layout(self, kraken_db: Path):
        assert validate_db_directory(kraken_db) == kraken_db

    def test_db_subdirectory(self, tmp_path: Path):
        inner = tmp_path / "human" / "db"
        inner.mkdir(parents=True)
        for name in ("hash.k2d", "opts.k2d", "taxo.k2d"):
            (inner / name).touch()
        assert validate_db_directory(tmp_path / "human") == inner

    def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(DatabaseError, match="not found"):
            validate_db_directory(tmp_path / "nope")

    def test_missing_files_are_named(self, tmp_path: Path):
        (tmp_path / "hash.k2d").touch()
        with pytest.raises(DatabaseError, match="opts.k2d, taxo.k2d") as exc_info:
            validate_db_directory(tmp_path)
        assert exc_info.value.exit_code == 8


class TestParseConfidenceScore:
    """Kraken2 --confidence values."""

    @pytest.mark.parametrize(("value", "expected"), [("0", 0.0), ("0.05", 0.05), (1, 1.0)])
    def test_valid(self, value: str | float, expected: float):
        assert parse_confidence_score(value) == expected

    @pytest.mark.parametrize("value", ["-0.1", "1.5", "high"])
    def test_invalid(self, value: str):
        with pytest.raises(InvalidThresholdError):
            parse_confidence_score(value)


class TestPrepareClassifierInput:
    """Expanding inputs kraken2 cannot decompress."""

    @pytest.mark.parametrize("codec", [Codec.NONE, Codec.GZIP, Codec.BZIP2])
    def test_native_codecs_pass_through(self, tmp_path: Path, codec: Codec):
        path = write_file(tmp_path / "reads.fq", fastq_text(["a"]), codec)
        assert prepare_classifier_input(path, tmp_path / "work") == path

    @pytest.mark.parametrize(("codec", "suffix"), [(Codec.XZ, ".xz"), (Codec.ZSTD, ".zst")])
    def test_expands_xz_and_zstd(self, tmp_path: Path, codec: Codec, suffix: str):
        text = fastq_text(["a", "b"])
        path = write_file(tmp_path / f"reads.fq{suffix}", text, codec)
        workdir = tmp_path / "work"
        workdir.mkdir()

        expanded = prepare_classifier_input(path, workdir)

        assert expanded == workdir / "reads.fq"
        assert expanded.read_text() == text


class TestClassifyReads:
    """End-to-end Kraken2 invocation with a mocked process."""

    def test_writes_output_and_log(self, tmp_path: Path, fake_kraken_path, kraken_db: Path, example_reads: Path):
        output = tmp_path / "out.kraken"
        log = tmp_path / "kraken.log"
        fake = _fake_kraken([kraken_line("r1"), kraken_line("r2", 9606)])

        with patch("dehost.external.base.subprocess.run", side_effect=fake):
            result, summary = classify_reads([example_reads], kraken_db, output, threads=2, log_path=log)

        assert result.success
        assert summary.classified == 12
        assert output.read_text().startswith("U\tr1")
        assert log.read_text() == KRAKEN_STDERR
        assert fake.calls[0][-1] == str(example_reads)

    def test_paired(self, tmp_path: Path, fake_kraken_path, kraken_db: Path, paired_reads: tuple[Path, Path]):
        fake = _fake_kraken([kraken_line("p1", length="8|8")])
        with patch("dehost.external.base.subprocess.run", side_effect=fake):
            classify_reads(list(paired_reads), kraken_db, tmp_path / "out.kraken")
        assert fake.calls[0][-3:] == ["--paired", str(paired_reads[0]), str(paired_reads[1])]

    def test_expanded_inputs_are_removed(self, tmp_path: Path, fake_kraken_path, kraken_db: Path):
        reads = write_file(tmp_path / "reads.fq.xz", fastq_text(["a"]), Codec.XZ)
        workdir = tmp_path / "work"
        workdir.mkdir()
        fake = _fake_kraken([kraken_line("a")])

        with patch("dehost.external.base.subprocess.run", side_effect=fake):
            classify_reads([reads], kraken_db, tmp_path / "out.kraken", workdir=workdir)

        assert fake.calls[0][-1] == str(workdir / "reads.fq")
        assert not (workdir / "reads.fq").exists()

    def test_empty_output_raises(self, tmp_path: Path, fake_kraken_path, kraken_db: Path, example_reads: Path):
        with (
            patch("dehost.external.base.subprocess.run", side_effect=_fake_kraken([])),
            pytest.raises(EmptyClassifierOutputError),
        ):
            classify_reads([example_reads], kraken_db, tmp_path / "out.kraken")

    def test_failure_raises(self, tmp_path: Path, fake_kraken_path, kraken_db: Path, example_reads: Path):
        fake = _fake_kraken([], stderr="kraken2: database (db_dir) does not contain necessary file", returncode=1)
        with (
            patch("dehost.external.base.subprocess.run", side_effect=fake),
            pytest.raises(ToolExecutionError, match="necessary file"),
        ):
            classify_reads([example_reads], kraken_db, tmp_path / "out.kraken")

    def test_dry_run(self, tmp_path: Path, fake_kraken_path, kraken_db: Path, example_reads: Path):
        output = tmp_path / "out.kraken"
        with patch("dehost.external.base.subprocess.run") as mock_run:
            result, summary = classify_reads([example_reads], kraken_db, output, dry_run=True)
        mock_run.assert_not_called()
        assert "--db" in result.command
        assert not output.exists()
        assert summary.processed == 0
