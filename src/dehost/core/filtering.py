"""
Single-pass host read filtering.

The engine re-scans the original read file(s) exactly once, looks every
read up in the ``ClassificationIndex`` and streams kept records to codec
writers. Paired files are read in lock-step and each pair gets one
decision, applied to both mates, so pairing is preserved.

All outputs are written to hidden ``.partial`` siblings and moved into
place only after the whole run succeeded; a failed run leaves no output
files behind.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from collections.abc import Iterator, Sequence
from contextlib import ExitStack
from dataclasses import dataclass
from itertools import zip_longest
from pathlib import Path

from dehost.core.codecs import CodecWriter, open_reader, open_writer
from dehost.core.compression import Codec, sniff_path
from dehost.core.exceptions import (
    ConfigurationError,
    DesyncError,
    IndexMissError,
    OutputExistsError,
)
from dehost.core.index import ClassificationIndex, ClassificationRecord
from dehost.core.io_utils import default_output_path, partial_path, resolve_output_codec
from dehost.core.records import ReadFileScanner, ReadRecord
from dehost.core.stats import StatsAccumulator
from dehost.models.config import FilterConfig, validate_compression_level
from dehost.models.stats import RunStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputPlan:
    """Where and how one input's kept reads are written."""

    input_path: Path
    input_codec: Codec
    output_path: Path
    output_codec: Codec


def plan_outputs(
    inputs: Sequence[Path],
    outputs: Sequence[Path | None] | None,
    config: FilterConfig,
    output_dir: Path | None = None,
) -> list[OutputPlan]:
    """Resolve output paths and codecs for each input.

    Raises:
        ConfigurationError: On a wrong number of outputs, or outputs that
            collide with each other or with an input.
    """
    if outputs is None:
        outputs = [None] * len(inputs)
    if len(outputs) != len(inputs):
        raise ConfigurationError(
            message=f"Got {len(inputs)} input file(s) but {len(outputs)} output path(s)",
            suggestion="Give one output path per input file, or none to use default names.",
        )

    plans = []
    for input_path, output_path in zip(inputs, outputs, strict=True):
        input_codec = sniff_path(input_path)
        codec = resolve_output_codec(input_codec, output_path, config.output_codec)
        validate_compression_level(codec, config.compression_level)
        if output_path is None:
            output_path = default_output_path(input_path, codec, output_dir)
        plans.append(OutputPlan(input_path, input_codec, output_path, codec))

    check_distinct(inputs, [plan.output_path for plan in plans])
    return plans


def check_distinct(inputs: Sequence[Path], outputs: Sequence[Path | None]) -> None:
    """Reject outputs that overwrite an input or are shared by two writers.

    Raises:
        ConfigurationError: If two outputs, or an output and an input,
            resolve to the same file.
    """
    sources = {Path(path).resolve() for path in inputs}
    seen: set[Path] = set()
    for path in outputs:
        if path is None:
            continue
        resolved = path.resolve()
        if resolved in sources:
            raise ConfigurationError(
                message=f"Output path {path} is also an input file",
                suggestion="Write outputs to a path that is not read by the run.",
            )
        if resolved in seen:
            raise ConfigurationError(
                message=f"Two outputs resolve to the same path: {path}",
                suggestion="Give every output (reads, decision log, stats, logs) its own path.",
            )
        seen.add(resolved)


def check_existing(paths: Sequence[Path | None], overwrite: bool) -> None:
    """Reject existing destinations unless overwriting is allowed.

    Raises:
        OutputExistsError: For the first destination that already exists.
    """
    if overwrite:
        return
    for path in paths:
        if path is not None and path.exists():
            raise OutputExistsError(path)


def preflight_outputs(
    inputs: Sequence[Path],
    outputs: Sequence[Path | None] | None,
    config: FilterConfig,
    *,
    output_dir: Path | None = None,
    decision_log: Path | None = None,
    artifacts: Sequence[Path | None] = (),
    sources: Sequence[Path] = (),
) -> list[OutputPlan]:
    """Resolve and vet every destination of a run before anything is written.

    Args:
        inputs: One or two read files.
        outputs: Output path per input; None entries get default names.
        config: Run configuration (codec, level, overwrite).
        output_dir: Directory for default-named outputs.
        decision_log: Per-read decision log, if requested.
        artifacts: Further files the run will create (stats, classifier
            output and log).
        sources: Further files the run reads, which must not be overwritten.

    Raises:
        ConfigurationError: Bad arity or colliding paths.
        OutputExistsError: A destination exists and overwrite is off.
    """
    if len(inputs) not in (1, 2):
        raise ConfigurationError(
            message=f"Expected one or two input files, got {len(inputs)}",
            suggestion="Pass a single-end file, or both files of a pair.",
        )
    plans = plan_outputs(inputs, outputs, config, output_dir)
    destinations: list[Path | None] = [plan.output_path for plan in plans]
    destinations += [decision_log, *artifacts]
    check_distinct([*inputs, *sources], destinations)
    check_existing(destinations, config.overwrite)
    return plans


class FilterEngine:
    """Decides and routes every read of one filtering run.

    Example:
        >>> index = ClassificationIndex.from_kraken_output(Path("sample.kraken"))
        >>> engine = FilterEngine(index, FilterConfig(target_taxa={9606}))
        >>> stats = engine.run([Path("sample_R1.fq.gz"), Path("sample_R2.fq.gz")])
        >>> stats.kept, stats.discarded
        (981234, 18766)
    """

    def __init__(
        self,
        index: ClassificationIndex,
        config: FilterConfig | None = None,
        decision_log: Path | None = None,
    ):
        self.index = index
        self.config = config or FilterConfig()
        self.decision_log = decision_log
        self.normalizer = index.normalizer
        self._warned_missing = False

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def is_target(self, verdict: ClassificationRecord) -> bool:
        """Whether the verdict assigns the read to a target (host) taxon."""
        return (
            verdict.classified
            and verdict.taxon_id in self.config.target_taxa
            and verdict.confidence >= self.config.min_confidence
        )

    def decide(self, verdict: ClassificationRecord) -> bool:
        """Return True to keep the read."""
        is_target = self.is_target(verdict)
        return is_target if self.config.invert else not is_target

    def _resolve(self, read_id: str, path: Path) -> tuple[ClassificationRecord | None, bool]:
        verdict = self.index.lookup(read_id)
        if verdict is not None:
            return verdict, self.decide(verdict)
        if self.config.on_missing == "error":
            raise IndexMissError(read_id, path)
        if not self._warned_missing:
            logger.warning(
                "Read '%s' is missing from the classifier output; reads without "
                "a verdict will be %s (--on-missing %s)",
                read_id,
                "kept" if self.config.on_missing == "keep" else "discarded",
                self.config.on_missing,
            )
            self._warned_missing = True
        return None, self.config.on_missing == "keep"

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(
        self,
        inputs: Sequence[Path],
        outputs: Sequence[Path | None] | None = None,
        output_dir: Path | None = None,
    ) -> RunStats:
        """Filter one (single-end) or two (paired-end) read files.

        Args:
            inputs: One or two read files.
            outputs: Output path per input; None entries get default names.
            output_dir: Directory for default-named outputs.

        Returns:
            Finalized run statistics.

        Raises:
            ConfigurationError: Bad input/output arity or colliding paths.
            OutputExistsError: An output exists and overwrite is off.
            FormatError: Unparseable read file or codec stream.
            DesyncError: Paired files differ in length or read id.
            IndexMissError: A read has no verdict (strict mode).
            OSError: Any read/write failure.
        """
        inputs = [Path(p) for p in inputs]
        plans = preflight_outputs(
            inputs,
            outputs,
            self.config,
            output_dir=output_dir,
            decision_log=self.decision_log,
        )
        finals = [plan.output_path for plan in plans]
        if self.decision_log is not None:
            finals.append(self.decision_log)

        token = uuid.uuid4().hex[:8]
        partials = [partial_path(path, token) for path in finals]
        stats = StatsAccumulator("paired" if len(inputs) == 2 else "single")
        start = time.perf_counter()

        for plan in plans:
            logger.info(
                "Filtering %s (%s) -> %s (%s)",
                plan.input_path,
                plan.input_codec.value,
                plan.output_path,
                plan.output_codec.value,
            )

        try:
            with ExitStack() as stack:
                readers = [stack.enter_context(open_reader(plan.input_path)) for plan in plans]
                writers = [
                    stack.enter_context(
                        open_writer(
                            partial,
                            plan.output_codec,
                            threads=self.config.threads,
                            level=self.config.compression_level,
                        )
                    )
                    for plan, partial in zip(plans, partials, strict=False)
                ]
                log_writer = None
                if self.decision_log is not None:
                    log_writer = stack.enter_context(
                        open_writer(partials[-1], Codec.from_path(self.decision_log))
                    )

                scanners = [ReadFileScanner(reader) for reader in readers]
                if len(scanners) == 1:
                    self._filter_single(scanners[0], writers[0], log_writer, stats)
                else:
                    self._filter_paired(scanners, writers, log_writer, stats)

                for writer in writers:
                    writer.finish()
                if log_writer is not None:
                    log_writer.finish()
        except BaseException:
            for partial in partials:
                partial.unlink(missing_ok=True)
            raise

        for partial, final in zip(partials, finals, strict=True):
            os.replace(partial, final)

        result = stats.finalize(
            input_paths=inputs,
            output_paths=[plan.output_path for plan in plans],
            elapsed_seconds=time.perf_counter() - start,
        )
        logger.info(
            "Kept %d / %d %s (%.2f%%); discarded %d (%.2f%%)",
            result.kept,
            result.total,
            "pairs" if result.layout == "paired" else "reads",
            result.kept_pct,
            result.discarded,
            result.discarded_pct,
        )
        return result

    def _filter_single(
        self,
        scanner: ReadFileScanner,
        writer: CodecWriter,
        log_writer: CodecWriter | None,
        stats: StatsAccumulator,
    ) -> None:
        for record in scanner:
            verdict, keep = self._resolve(record.id, scanner.path)
            if keep:
                writer.write_chunk(record.raw)
            if log_writer is not None:
                log_writer.write_chunk(_log_line(record.id, verdict, keep))
            stats.record(
                verdict,
                kept=keep,
                input_bytes=len(record.raw),
                output_bytes=len(record.raw) if keep else 0,
            )

    def _filter_paired(
        self,
        scanners: list[ReadFileScanner],
        writers: list[CodecWriter],
        log_writer: CodecWriter | None,
        stats: StatsAccumulator,
    ) -> None:
        first, second = scanners
        for mate1, mate2 in self._iter_pairs(first, second):
            verdict, keep = self._resolve(mate1.id, first.path)
            if keep:
                writers[0].write_chunk(mate1.raw)
                writers[1].write_chunk(mate2.raw)
            if log_writer is not None:
                log_writer.write_chunk(_log_line(self.normalizer(mate1.id), verdict, keep))
            size = len(mate1.raw) + len(mate2.raw)
            stats.record(
                verdict,
                kept=keep,
                input_bytes=size,
                output_bytes=size if keep else 0,
            )

    def _iter_pairs(
        self,
        first: ReadFileScanner,
        second: ReadFileScanner,
    ) -> Iterator[tuple[ReadRecord, ReadRecord]]:
        """Yield mates in lock-step, failing on any length or id mismatch."""
        position = 0
        for mate1, mate2 in zip_longest(first, second):
            position += 1
            if mate1 is None or mate2 is None:
                shorter, longer = (first, second) if mate1 is None else (second, first)
                raise DesyncError(
                    position,
                    f"{shorter.path} ended after {position - 1} records "
                    f"but {longer.path} has more",
                )
            if self.normalizer(mate1.id) != self.normalizer(mate2.id):
                raise DesyncError(
                    position,
                    f"read '{mate1.id}' in {first.path} does not match "
                    f"'{mate2.id}' in {second.path}",
                )
            yield mate1, mate2


def _log_line(read_id: str, verdict: ClassificationRecord | None, keep: bool) -> bytes:
    decision = "kept" if keep else "discarded"
    if verdict is None:
        line = f"-\t{read_id}\t-\t-\t-\t{decision}\n"
    else:
        line = f"{verdict.to_line()}\t{decision}\n"
    return line.encode()
