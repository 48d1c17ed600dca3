"""
Streaming FASTA/FASTQ record scanner.

Only what filtering needs is parsed: record boundaries, the read id and the
sequence/quality lengths. Each record keeps its exact input bytes so kept
reads are written back byte-for-byte, whatever the line wrapping or header
annotations.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from pathlib import Path
from typing import NamedTuple

from dehost.core.codecs import CodecReader
from dehost.core.exceptions import ConfigurationError, FormatError

logger = logging.getLogger(__name__)

FASTQ_SENTINEL = b"@"
FASTA_SENTINEL = b">"
QUALITY_MARKER = b"+"


class ReadRecord(NamedTuple):
    """One sequencing read.

    ``raw`` is the record exactly as it appeared in the input (including
    line endings); ``header`` is the header line without its line ending.
    """

    id: str
    header: bytes
    sequence: bytes
    quality: bytes | None
    raw: bytes


# =============================================================================
# Mate Suffix Normalization
# =============================================================================

MATE_SUFFIX_PRESETS: dict[str, str | None] = {
    "none": None,
    "slash": r"/[12]$",
    "dot": r"\.[12]$",
    "underscore": r"_[12]$",
    "any": r"[/._][12]$",
}

DEFAULT_MATE_SUFFIX = "slash"


class MateNormalizer:
    """Strips a trailing mate marker from read ids for pairing comparisons.

    The rule is either a preset name (see ``MATE_SUFFIX_PRESETS``) or a
    regular expression anchored at the end of the id. Only the id used for
    lookups and pair checks is normalized; raw headers are never touched.

    Example:
        >>> MateNormalizer("slash")("read1/2")
        'read1'
        >>> MateNormalizer("none")("read1/2")
        'read1/2'
    """

    def __init__(self, rule: str = DEFAULT_MATE_SUFFIX):
        self.rule = rule
        pattern = MATE_SUFFIX_PRESETS[rule] if rule in MATE_SUFFIX_PRESETS else rule
        self._pattern = None if pattern is None else _compile_suffix(pattern)

    def __call__(self, read_id: str) -> str:
        if self._pattern is None:
            return read_id
        return self._pattern.sub("", read_id, count=1)

    def __repr__(self) -> str:
        return f"MateNormalizer({self.rule!r})"


def _compile_suffix(pattern: str) -> re.Pattern[str]:
    suggestion = (
        f"Use a preset ({', '.join(MATE_SUFFIX_PRESETS)}) or a regular "
        "expression ending in '$' that matches only the mate marker, e.g. '/[12]$'."
    )
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        raise ConfigurationError(
            message=f"Invalid mate suffix pattern {pattern!r}: {e}",
            suggestion=suggestion,
        ) from e
    if not (pattern.endswith("$") or pattern.endswith(r"\Z")):
        raise ConfigurationError(
            message=f"Mate suffix pattern {pattern!r} is not anchored at the end of the id",
            suggestion=suggestion,
        )
    if compiled.fullmatch("") is not None:
        raise ConfigurationError(
            message=f"Mate suffix pattern {pattern!r} matches the empty string",
            suggestion=suggestion,
        )
    return compiled


# =============================================================================
# Scanner
# =============================================================================


def _decode_id(header: bytes) -> str:
    fields = header[1:].split(maxsplit=1)
    return fields[0].decode("utf-8", errors="surrogateescape") if fields else ""


class ReadFileScanner:
    """Lazy, single-pass iterator of ``ReadRecord`` from a decoded stream.

    The layout is chosen by the sentinel of the first non-empty line:
    ``@`` for FASTQ (header, sequence, ``+`` marker, quality) and ``>``
    for FASTA (header, one or more sequence lines). Parse failures raise
    ``FormatError`` with the 1-based line number.

    Example:
        >>> with open_reader(Path("reads.fq.gz")) as reader:
        ...     for record in ReadFileScanner(reader):
        ...         print(record.id, len(record.sequence))
    """

    def __init__(self, reader: CodecReader, path: Path | None = None):
        self.reader = reader
        self.path = path if path is not None else reader.path
        self.line_number = 0
        self.records = 0
        self._lines = self._iter_lines()
        self._pushback: bytes | None = None
        self._started = False

    def _iter_lines(self) -> Iterator[bytes]:
        pending = b""
        while chunk := self.reader.read_chunk():
            pending += chunk
            if b"\n" not in chunk:
                continue
            *lines, pending = pending.split(b"\n")
            for line in lines:
                yield line + b"\n"
        if pending:
            yield pending

    def _next_line(self) -> bytes | None:
        if self._pushback is not None:
            line, self._pushback = self._pushback, None
        else:
            line = next(self._lines, None)
            if line is None:
                return None
        self.line_number += 1
        return line

    def _unread(self, line: bytes) -> None:
        self._pushback = line
        self.line_number -= 1

    def _error(self, detail: str, line: int | None = None) -> FormatError:
        return FormatError(self.path, detail, line=line if line is not None else self.line_number)

    def __iter__(self) -> Iterator[ReadRecord]:
        if self._started:
            msg = f"Scanner over {self.path} is single-pass and was already consumed"
            raise RuntimeError(msg)
        self._started = True
        return self._scan()

    def _scan(self) -> Iterator[ReadRecord]:
        first = self._skip_blank()
        if first is None:
            return
        if first.startswith(FASTQ_SENTINEL):
            parse = self._parse_fastq
        elif first.startswith(FASTA_SENTINEL):
            parse = self._parse_fasta
        else:
            raise self._error("expected '@' (FASTQ) or '>' (FASTA) at start of file")
        self._unread(first)

        while (header := self._skip_blank()) is not None:
            record = parse(header)
            self.records += 1
            yield record
        logger.debug("Scanned %d records from %s", self.records, self.path)

    def _skip_blank(self) -> bytes | None:
        while (line := self._next_line()) is not None:
            if line.strip():
                return line
        return None

    def _parse_fastq(self, header: bytes) -> ReadRecord:
        header_line = self.line_number
        if not header.startswith(FASTQ_SENTINEL):
            raise self._error("expected '@' at start of FASTQ record")
        read_id = _decode_id(header)
        if not read_id:
            raise self._error("record has an empty read id")

        sequence = self._next_line()
        marker = self._next_line()
        quality = self._next_line()
        if sequence is None or marker is None or quality is None:
            raise self._error(f"truncated FASTQ record '{read_id}'", line=header_line)
        if not marker.startswith(QUALITY_MARKER):
            raise self._error(
                f"expected '+' line in FASTQ record '{read_id}'", line=header_line + 2
            )

        seq = sequence.rstrip(b"\r\n")
        qual = quality.rstrip(b"\r\n")
        if len(seq) != len(qual):
            raise self._error(
                f"quality length {len(qual)} does not match sequence length "
                f"{len(seq)} for read '{read_id}'",
                line=header_line + 3,
            )
        return ReadRecord(
            id=read_id,
            header=header.rstrip(b"\r\n"),
            sequence=seq,
            quality=qual,
            raw=header + sequence + marker + quality,
        )

    def _parse_fasta(self, header: bytes) -> ReadRecord:
        if not header.startswith(FASTA_SENTINEL):
            raise self._error("expected '>' at start of FASTA record")
        read_id = _decode_id(header)
        if not read_id:
            raise self._error("record has an empty read id")

        raw = [header]
        sequence = []
        while (line := self._next_line()) is not None:
            if line.startswith(FASTA_SENTINEL):
                self._unread(line)
                break
            raw.append(line)
            sequence.append(line.strip())
        return ReadRecord(
            id=read_id,
            header=header.rstrip(b"\r\n"),
            sequence=b"".join(sequence),
            quality=None,
            raw=b"".join(raw),
        )
