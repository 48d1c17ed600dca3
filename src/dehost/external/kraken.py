"""
Kraken2 wrapper.

Provides Python interfaces for:
- Kraken2: per-read classification against a host database
- KrakenSummary: the classified/unclassified totals Kraken2 prints on stderr
- Database validation and classifier input preparation
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from dehost.core.codecs import open_reader
from dehost.core.compression import Codec, sniff_path
from dehost.core.constants import KRAKEN_DB_FILES, READ_CHUNK_SIZE
from dehost.core.exceptions import (
    DatabaseError,
    EmptyClassifierOutputError,
    InvalidThresholdError,
)
from dehost.core.io_utils import strip_compression_suffix
from dehost.external.base import ExternalTool, ToolResult

logger = logging.getLogger(__name__)

# Codecs Kraken2 decompresses itself; anything else is expanded first
KRAKEN_NATIVE_CODECS = frozenset({Codec.NONE, Codec.GZIP, Codec.BGZF, Codec.BZIP2})

_SUMMARY_COUNT = re.compile(r"^\s*([\d,]+)\s+sequences")


class Kraken2(ExternalTool):
    """Wrapper for the Kraken2 taxonomic classifier.

    Only the per-read output (``--output``) is requested; the report is not
    needed to filter reads.

    Example:
        >>> kraken = Kraken2()
        >>> result = kraken.run(
        ...     reads_1=Path("sample_R1.fastq.gz"),
        ...     reads_2=Path("sample_R2.fastq.gz"),
        ...     database=Path("/data/human_db"),
        ...     output=Path("sample.kraken"),
        ...     threads=8,
        ... )
        >>> KrakenSummary.from_stderr(result.stderr).classified
        18766
    """

    TOOL_NAME = "kraken2"
    INSTALL_HINT = "conda install -c bioconda kraken2"

    def build_command(
        self,
        *,
        reads_1: Path,
        database: Path,
        output: Path,
        reads_2: Path | None = None,
        threads: int = 1,
        confidence: float | None = None,
        memory_mapping: bool = False,
    ) -> list[str]:
        """Build the Kraken2 command.

        Args:
            reads_1: Forward (or single-end) reads file.
            database: Kraken2 database directory.
            output: Per-read classification output file.
            reads_2: Reverse reads file for paired-end data.
            threads: Number of classifier threads.
            confidence: Kraken2 confidence score threshold (0-1).
            memory_mapping: Use memory mapping instead of loading the database.

        Returns:
            Command as list of strings.
        """
        cmd = [str(self.get_executable())]
        cmd.extend(["--db", str(database)])
        cmd.extend(["--threads", str(threads)])

        if confidence is not None:
            cmd.extend(["--confidence", str(confidence)])

        if memory_mapping:
            cmd.append("--memory-mapping")

        cmd.extend(["--output", str(output)])

        if reads_2 is not None:
            cmd.append("--paired")
            cmd.extend([str(reads_1), str(reads_2)])
        else:
            cmd.append(str(reads_1))

        return cmd


@dataclass(frozen=True)
class KrakenSummary:
    """Totals from the summary Kraken2 writes to stderr.

    Kraken2 prints lines such as::

        1,000 sequences (0.15 Mbp) processed in 0.123s (487.8 Kseq/m, 73.17 Mbp/m).
          12 sequences classified (1.20%)
          988 sequences unclassified (98.80%)
    """

    processed: int = 0
    classified: int = 0
    unclassified: int = 0

    @property
    def classified_pct(self) -> float:
        if self.processed == 0:
            return 0.0
        return 100.0 * self.classified / self.processed

    @classmethod
    def from_stderr(cls, stderr: str) -> KrakenSummary:
        """Parse the summary; lines that are absent leave their count at 0."""
        counts: dict[str, int] = {}
        for line in stderr.splitlines():
            match = _SUMMARY_COUNT.match(line)
            if match is None:
                continue
            value = int(match.group(1).replace(",", ""))
            if "processed" in line:
                counts["processed"] = value
            elif "sequences unclassified" in line:
                counts["unclassified"] = value
            elif "sequences classified" in line:
                counts["classified"] = value
        return cls(**counts)


def validate_db_directory(path: Path) -> Path:
    """Locate the Kraken2 index files under ``path``.

    Accepts a directory holding ``hash.k2d``, ``opts.k2d`` and ``taxo.k2d``
    directly, or a ``db/`` subdirectory holding them.

    Returns:
        The directory that contains the index files.

    Raises:
        DatabaseError: If neither location holds all required files.
    """
    if not path.is_dir():
        raise DatabaseError(
            message=f"Kraken2 database directory not found: {path}",
            suggestion="Pass the directory containing hash.k2d, opts.k2d and taxo.k2d via --db.",
        )

    for candidate in (path, path / "db"):
        if all((candidate / name).is_file() for name in KRAKEN_DB_FILES):
            return candidate

    missing = [name for name in KRAKEN_DB_FILES if not (path / name).is_file()]
    raise DatabaseError(
        message=f"{path} is not a Kraken2 database (missing {', '.join(missing)})",
        suggestion="Pass the directory containing hash.k2d, opts.k2d and taxo.k2d via --db.",
    )


def parse_confidence_score(value: str | float) -> float:
    """Parse a Kraken2 confidence score, which must lie in [0, 1].

    Raises:
        InvalidThresholdError: If the value is not a number in range.
    """
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise InvalidThresholdError("confidence", value, 0.0, 1.0) from None
    if not 0.0 <= score <= 1.0:
        raise InvalidThresholdError("confidence", score, 0.0, 1.0)
    return score


def prepare_classifier_input(path: Path, workdir: Path) -> Path:
    """Return a path Kraken2 can read, expanding xz/zstd files into ``workdir``.

    Kraken2 reads plain, gzip and bzip2 input itself; other codecs are
    decompressed to a plain file first.
    """
    codec = sniff_path(path)
    if codec in KRAKEN_NATIVE_CODECS:
        return path

    target = workdir / strip_compression_suffix(path).name
    logger.info("Decompressing %s (%s) for the classifier", path, codec.value)
    with open_reader(path) as reader, target.open("wb") as handle:
        while chunk := reader.read_chunk(READ_CHUNK_SIZE):
            handle.write(chunk)
    return target


def classify_reads(
    reads: list[Path],
    database: Path,
    output: Path,
    *,
    threads: int = 1,
    confidence: float | None = None,
    log_path: Path | None = None,
    workdir: Path | None = None,
    dry_run: bool = False,
) -> tuple[ToolResult, KrakenSummary]:
    """Run Kraken2 on one or two read files.

    Args:
        reads: Single-end file or both files of a pair.
        database: Validated database directory.
        output: Where Kraken2 writes its per-read verdicts.
        threads: Classifier threads.
        confidence: Kraken2 confidence threshold.
        log_path: If given, Kraken2's stderr is written there verbatim.
        workdir: Scratch directory for decompressed inputs; defaults to the
            output's directory.
        dry_run: Build the command without executing it.

    Raises:
        ToolNotFoundError: If kraken2 is not installed.
        ToolExecutionError: If kraken2 exits non-zero.
        EmptyClassifierOutputError: If the verdict file is missing or empty.
    """
    scratch = workdir if workdir is not None else output.parent
    inputs = reads if dry_run else [prepare_classifier_input(p, scratch) for p in reads]

    try:
        result = Kraken2().run(
            reads_1=inputs[0],
            reads_2=inputs[1] if len(inputs) > 1 else None,
            database=database,
            output=output,
            threads=threads,
            confidence=confidence,
            dry_run=dry_run,
        )
    finally:
        for expanded, original in zip(inputs, reads, strict=True):
            if expanded != original:
                expanded.unlink(missing_ok=True)

    if log_path is not None and not dry_run:
        log_path.write_text(result.stderr)

    summary = KrakenSummary.from_stderr(result.stderr)
    if dry_run:
        return result, summary

    if not output.is_file() or output.stat().st_size == 0:
        raise EmptyClassifierOutputError(output)

    logger.info(
        "Kraken2 classified %d / %d sequences (%.2f%%) in %.1fs",
        summary.classified,
        summary.processed,
        summary.classified_pct,
        result.elapsed_seconds,
    )
    return result, summary
