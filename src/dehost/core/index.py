"""
Classification index built from Kraken2 per-read output.

Kraken2 writes one tab-separated line per read (or read pair):

    C/U  read_id  taxon  length  [k-mer trace]

where ``taxon`` is a plain taxid (``9606``) or, with ``--use-names``,
``Homo sapiens (taxid 9606)``, ``length`` is ``150`` or ``150|148`` for
pairs, and the trace lists ``taxid:count`` runs of k-mer hits.

The whole file is loaded into a dict keyed by normalized read id. This is
the one component whose memory grows with the number of reads rather than
staying constant; everything else streams.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import ClassVar, NamedTuple

import polars as pl

from dehost.core.constants import INDEX_BATCH_SIZE
from dehost.core.exceptions import EmptyClassifierOutputError, FormatError
from dehost.core.records import DEFAULT_MATE_SUFFIX, MateNormalizer

logger = logging.getLogger(__name__)


class ClassificationRecord(NamedTuple):
    """Classifier verdict for one read (or read pair)."""

    read_id: str
    classified: bool
    taxon_id: int
    confidence: float
    length: int

    def to_line(self) -> str:
        """Render as a tab-separated line (flag, id, taxid, length, confidence)."""
        flag = "C" if self.classified else "U"
        return f"{flag}\t{self.read_id}\t{self.taxon_id}\t{self.length}\t{self.confidence:.4f}"


# =============================================================================
# Vectorized Column Parsing
# =============================================================================


def taxon_id_expr() -> pl.Expr:
    """Extract the integer taxid from ``9606`` or ``Homo sapiens (taxid 9606)``."""
    return (
        pl.col("taxon")
        .str.extract(r"(\d+)\)?\s*$", 1)
        .cast(pl.Int64, strict=False)
        .alias("taxon_id")
    )


def length_expr() -> pl.Expr:
    """Sum mate lengths: ``150|148`` -> 298."""
    return (
        pl.col("length")
        .str.split("|")
        .list.eval(pl.element().cast(pl.Int64))
        .list.sum()
        .alias("length_bp")
    )


def invalid_row_expr() -> pl.Expr:
    """True for rows that are not a usable Kraken2 verdict."""
    return (
        ~pl.col("flag").is_in(["C", "U"])
        | pl.col("flag").is_null()
        | pl.col("read_id").is_null()
        | (pl.col("read_id") == "")
        | pl.col("taxon_id").is_null()
        | ~pl.col("length").str.contains(r"^\d+(\|\d+)*$").fill_null(False)
    )


def trace_confidence(df: pl.DataFrame) -> pl.DataFrame:
    """Fraction of non-ambiguous k-mers assigned to the reported taxon.

    Returns one row per ``line`` with ``hits`` and ``total`` k-mer counts.
    Ambiguous (``A``) runs and the ``|:|`` mate separator are excluded from
    the denominator.

    Only k-mers mapped to exactly the reported taxid count as hits. Kraken2's
    own confidence also credits k-mers of descendant taxa (the whole clade),
    so this value is a lower bound on it; without the taxonomy tree the
    clade cannot be reconstructed from the output alone.
    """
    return (
        df.select(
            "line",
            "taxon_id",
            pl.col("trace").str.extract_all(r"(?:\d+|A):\d+").alias("kmer"),
        )
        .explode("kmer")
        .with_columns(
            pl.col("kmer").str.split_exact(":", 1).struct.rename_fields(["kmer_taxon", "count"])
        )
        .unnest("kmer")
        .with_columns(pl.col("count").cast(pl.Int64))
        .group_by("line")
        .agg(
            pl.col("count").filter(pl.col("kmer_taxon") != "A").sum().alias("total"),
            pl.col("count")
            .filter(pl.col("kmer_taxon") == pl.col("taxon_id").cast(pl.Utf8))
            .sum()
            .alias("hits"),
        )
    )


# =============================================================================
# Index
# =============================================================================


class ClassificationIndex:
    """Read id -> ``ClassificationRecord`` lookup.

    Read-only once built. Ids are normalized with the same
    ``MateNormalizer`` the read scanner uses so ``read1/1`` in a reads file
    resolves against ``read1`` in paired classifier output.

    Example:
        >>> index = ClassificationIndex.from_kraken_output(Path("sample.kraken"))
        >>> index.lookup("read_001")
        ClassificationRecord(read_id='read_001', classified=True, taxon_id=9606, ...)
    """

    COLUMNS: ClassVar[list[str]] = ["flag", "read_id", "taxon", "length", "trace"]

    def __init__(
        self,
        records: dict[str, ClassificationRecord],
        normalizer: MateNormalizer | None = None,
        source: Path | None = None,
    ):
        self._records = records
        self.normalizer = normalizer or MateNormalizer(DEFAULT_MATE_SUFFIX)
        self.source = source

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, read_id: object) -> bool:
        return isinstance(read_id, str) and self.normalizer(read_id) in self._records

    def __iter__(self) -> Iterator[ClassificationRecord]:
        return iter(self._records.values())

    def lookup(self, read_id: str) -> ClassificationRecord | None:
        """Return the verdict for ``read_id`` or None when it is absent."""
        return self._records.get(self.normalizer(read_id))

    @property
    def classified_count(self) -> int:
        return sum(1 for record in self._records.values() if record.classified)

    @classmethod
    def from_records(
        cls,
        records: Iterable[ClassificationRecord],
        normalizer: MateNormalizer | None = None,
    ) -> ClassificationIndex:
        """Build an index from already-parsed verdicts.

        Raises:
            ValueError: If two records share a normalized read id.
        """
        normalizer = normalizer or MateNormalizer(DEFAULT_MATE_SUFFIX)
        mapping: dict[str, ClassificationRecord] = {}
        for record in records:
            key = normalizer(record.read_id)
            if key in mapping:
                msg = f"Duplicate read id in classification records: {record.read_id}"
                raise ValueError(msg)
            mapping[key] = record
        return cls(mapping, normalizer)

    @classmethod
    def from_kraken_output(
        cls,
        path: Path,
        normalizer: MateNormalizer | None = None,
        chunk_size: int = INDEX_BATCH_SIZE,
    ) -> ClassificationIndex:
        """Load Kraken2 per-read output into an index.

        Args:
            path: Kraken2 ``--output`` file.
            normalizer: Mate suffix rule applied to every read id.
            chunk_size: Rows per polars batch.

        Raises:
            EmptyClassifierOutputError: If the file is missing or has no lines.
            FormatError: On malformed lines or duplicate read ids.
        """
        normalizer = normalizer or MateNormalizer(DEFAULT_MATE_SUFFIX)
        num_cols = _detect_column_count(path)
        columns = cls.COLUMNS[:num_cols]

        lazy = (
            pl.scan_csv(
                path,
                separator="\t",
                has_header=False,
                schema=dict.fromkeys(columns, pl.Utf8),
                quote_char=None,
            )
            .with_row_index("line", offset=1)
        )

        mapping: dict[str, ClassificationRecord] = {}
        try:
            for batch in lazy.collect_batches(chunk_size=chunk_size):
                for key, record in _batch_records(batch, path, normalizer, has_trace=num_cols == 5):
                    if key in mapping:
                        raise FormatError(path, f"duplicate read id '{record.read_id}'")
                    mapping[key] = record
        except pl.exceptions.ComputeError as e:
            line = _locate_ragged_line(path, num_cols)
            raise FormatError(path, f"inconsistent number of columns ({e})", line=line) from e

        if not mapping:
            raise EmptyClassifierOutputError(path)

        index = cls(mapping, normalizer, source=path)
        logger.info(
            "Loaded %d classifier verdicts (%d classified) from %s",
            len(index),
            index.classified_count,
            path,
        )
        return index


def _batch_records(
    batch: pl.DataFrame,
    path: Path,
    normalizer: MateNormalizer,
    *,
    has_trace: bool,
) -> Iterator[tuple[str, ClassificationRecord]]:
    df = batch.with_columns(
        (pl.col("flag") == "C").alias("classified"),
        taxon_id_expr(),
    )

    invalid = df.filter(invalid_row_expr())
    if invalid.height > 0:
        row = invalid.row(0, named=True)
        raise FormatError(
            path,
            "expected Kraken2 columns: C/U, read id, taxid, length[|length], [k-mer trace]",
            line=row["line"],
        )

    df = df.with_columns(length_expr())
    if has_trace:
        df = df.join(trace_confidence(df), on="line", how="left")
        confidence = (
            pl.when(~pl.col("classified"))
            .then(0.0)
            .when(pl.col("total").fill_null(0) > 0)
            .then(pl.col("hits").fill_null(0) / pl.col("total"))
            .otherwise(1.0)
        )
    else:
        confidence = pl.when(pl.col("classified")).then(1.0).otherwise(0.0)

    rows = df.select(
        "read_id",
        "classified",
        "taxon_id",
        confidence.cast(pl.Float64).alias("confidence"),
        "length_bp",
    ).iter_rows()
    for read_id, classified, taxon_id, conf, length in rows:
        record = ClassificationRecord(read_id, classified, taxon_id, conf, length)
        yield normalizer(read_id), record


def _detect_column_count(path: Path) -> int:
    """Number of tab-separated columns on the first non-blank line (4 or 5).

    Raises:
        EmptyClassifierOutputError: If the file is missing or empty.
        FormatError: If that line has an unexpected column count.
    """
    if not path.is_file():
        raise EmptyClassifierOutputError(path)

    with path.open() as handle:
        for line_num, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            num_cols = len(line.rstrip("\n").split("\t"))
            if num_cols not in (4, 5):
                raise FormatError(
                    path, f"expected 4 or 5 tab-separated columns, got {num_cols}", line=line_num
                )
            return num_cols

    raise EmptyClassifierOutputError(path)


def _locate_ragged_line(path: Path, num_cols: int) -> int | None:
    """Find the first line whose column count differs from ``num_cols``."""
    with path.open() as handle:
        for line_num, line in enumerate(handle, start=1):
            if len(line.rstrip("\n").split("\t")) != num_cols:
                return line_num
    return None
