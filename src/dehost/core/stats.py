"""
Run statistics accumulation.

The accumulator is owned by the thread driving the filter pass and updated
only after each read's decision is final. Codec worker threads never see
it, so it needs no locking.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from dehost.core.index import ClassificationRecord
from dehost.models.stats import RunStats


class StatsAccumulator:
    """Mutable counters for one run, finalized exactly once into ``RunStats``."""

    def __init__(self, layout: Literal["single", "paired"] = "single"):
        self.layout = layout
        self.total = 0
        self.kept = 0
        self.discarded = 0
        self.classified = 0
        self.unclassified = 0
        self.missing = 0
        self.input_bytes = 0
        self.output_bytes = 0
        self._snapshot: RunStats | None = None

    def record(
        self,
        verdict: ClassificationRecord | None,
        *,
        kept: bool,
        input_bytes: int = 0,
        output_bytes: int = 0,
    ) -> None:
        """Count one finalized decision; ``verdict`` is None for an index miss."""
        if self._snapshot is not None:
            msg = "Statistics were already finalized"
            raise RuntimeError(msg)
        self.total += 1
        if kept:
            self.kept += 1
        else:
            self.discarded += 1
        if verdict is None:
            self.missing += 1
        elif verdict.classified:
            self.classified += 1
        else:
            self.unclassified += 1
        self.input_bytes += input_bytes
        self.output_bytes += output_bytes

    @property
    def finalized(self) -> bool:
        return self._snapshot is not None

    def finalize(
        self,
        *,
        input_paths: list[Path],
        output_paths: list[Path],
        elapsed_seconds: float,
    ) -> RunStats:
        """Freeze the counters into an immutable snapshot.

        Raises:
            RuntimeError: If called more than once.
        """
        if self._snapshot is not None:
            msg = "Statistics were already finalized"
            raise RuntimeError(msg)
        self._snapshot = RunStats(
            layout=self.layout,
            total=self.total,
            kept=self.kept,
            discarded=self.discarded,
            classified=self.classified,
            unclassified=self.unclassified,
            missing=self.missing,
            input_bytes=self.input_bytes,
            output_bytes=self.output_bytes,
            input_paths=list(input_paths),
            output_paths=list(output_paths),
            elapsed_seconds=elapsed_seconds,
        )
        return self._snapshot
