"""
Custom exceptions with actionable guidance.

Every failure that aborts a filtering run has its own type so the CLI can
report a distinguishable reason (and exit code) for it. None of these are
ever downgraded to warnings: a read that should be removed must never be
emitted.
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar


class DehostError(Exception):
    """Base exception for dehost errors."""

    exit_code: ClassVar[int] = 1

    def __init__(self, message: str, suggestion: str | None = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.full_message)

    @property
    def full_message(self) -> str:
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class ConfigurationError(DehostError):
    """Raised when configuration is invalid."""

    exit_code = 2


class InvalidThresholdError(ConfigurationError):
    """Raised when a threshold parameter is out of valid range."""

    def __init__(self, param_name: str, value: float, min_val: float, max_val: float):
        super().__init__(
            message=f"{param_name} = {value} is out of valid range [{min_val}, {max_val}]",
            suggestion=f"Set {param_name} to a value between {min_val} and {max_val}.",
        )


class FormatError(DehostError):
    """Raised when a read file, codec stream or classifier line cannot be parsed.

    At least one of ``line`` (1-based) or ``offset`` (compressed byte
    offset) locates the problem inside ``path``.
    """

    exit_code = 3

    def __init__(
        self,
        path: Path | str,
        detail: str,
        *,
        line: int | None = None,
        offset: int | None = None,
    ):
        where = ""
        if line is not None:
            where = f" at line {line}"
        elif offset is not None:
            where = f" at byte offset {offset}"

        super().__init__(
            message=f"Malformed input '{path}'{where}: {detail}",
            suggestion=(
                "Check that the file is complete and in FASTA/FASTQ format "
                "(optionally gzip, bgzf, bzip2, xz or zstd compressed) and "
                "was not truncated during transfer."
            ),
        )
        self.path = Path(path)
        self.detail = detail
        self.line = line
        self.offset = offset


class DesyncError(DehostError):
    """Raised when paired read files differ in length or read id."""

    exit_code = 4

    def __init__(self, position: int, detail: str):
        super().__init__(
            message=f"Paired read files are out of sync at record {position}: {detail}",
            suggestion=(
                "Both files of a pair must contain the same reads in the same "
                "order. Re-export the pair from the same run, or check whether "
                "one file was truncated."
            ),
        )
        self.position = position
        self.detail = detail


class IndexMissError(DehostError):
    """Raised when a read id has no verdict in the classifier output."""

    exit_code = 5

    def __init__(self, read_id: str, path: Path | str | None = None):
        source = f" (reads file '{path}')" if path is not None else ""
        super().__init__(
            message=f"Read '{read_id}'{source} is missing from the classifier output",
            suggestion=(
                "The classifier output must come from the same read files. "
                "If read ids carry mate suffixes, adjust --mate-suffix. "
                "Use --on-missing keep|discard only if you understand the "
                "consequences for unclassified reads."
            ),
        )
        self.read_id = read_id
        self.path = path


class OutputExistsError(DehostError):
    """Raised when an output path exists and overwriting was not permitted."""

    exit_code = 6

    def __init__(self, path: Path):
        super().__init__(
            message=f"Output file already exists: {path}",
            suggestion="Choose another output path or pass --force to overwrite.",
        )
        self.path = path


class UpstreamError(DehostError):
    """Raised when the classifier failed or produced no usable output."""

    exit_code = 7


class EmptyClassifierOutputError(UpstreamError):
    """Raised when the classifier output file is missing or has no verdicts."""

    def __init__(self, path: Path | str):
        super().__init__(
            message=f"Classifier output is missing or contains no verdicts: {path}",
            suggestion=(
                "Check that kraken2 completed successfully and that the input "
                "reads are non-empty FASTA/FASTQ files."
            ),
        )
        self.path = path


class DatabaseError(DehostError):
    """Raised when the Kraken2 database directory is unusable."""

    exit_code = 8
