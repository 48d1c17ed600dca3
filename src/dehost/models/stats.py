"""
Pydantic model for the run statistics artifact.

``RunStats`` is the immutable snapshot produced once at the end of a
filtering run; it is what gets serialized to the ``--stats`` JSON file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Self

from pydantic import BaseModel, Field, computed_field, model_validator


class RunStats(BaseModel):
    """Counters for one completed filtering run.

    Counts are per read (single-end) or per read pair (paired-end); in
    paired mode both output files hold exactly ``kept`` records each.
    """

    layout: Literal["single", "paired"] = Field(description="Single-end or paired-end input")
    total: int = Field(ge=0, description="Reads (or pairs) scanned")
    kept: int = Field(ge=0, description="Reads (or pairs) written to the output")
    discarded: int = Field(ge=0, description="Reads (or pairs) removed")
    classified: int = Field(ge=0, description="Scanned reads the classifier assigned a taxon")
    unclassified: int = Field(ge=0, description="Scanned reads the classifier left unassigned")
    missing: int = Field(
        default=0,
        ge=0,
        description="Reads absent from the classifier output (lenient mode only)",
    )
    input_bytes: int = Field(default=0, ge=0, description="Decoded bytes scanned across inputs")
    output_bytes: int = Field(default=0, ge=0, description="Decoded bytes written across outputs")
    input_paths: list[Path] = Field(default_factory=list)
    output_paths: list[Path] = Field(default_factory=list)
    elapsed_seconds: float = Field(default=0.0, ge=0.0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_totals(self) -> Self:
        """Every scanned read is either kept or discarded."""
        if self.kept + self.discarded != self.total:
            msg = (
                f"kept ({self.kept}) + discarded ({self.discarded}) "
                f"!= total ({self.total})"
            )
            raise ValueError(msg)
        if self.classified + self.unclassified + self.missing != self.total:
            msg = (
                f"classified ({self.classified}) + unclassified ({self.unclassified}) "
                f"+ missing ({self.missing}) != total ({self.total})"
            )
            raise ValueError(msg)
        return self

    @computed_field
    @property
    def kept_pct(self) -> float:
        return 100.0 * self.kept / self.total if self.total else 0.0

    @computed_field
    @property
    def discarded_pct(self) -> float:
        return 100.0 * self.discarded / self.total if self.total else 0.0

    def write_json(self, path: Path) -> None:
        """Write the stats artifact as indented JSON."""
        path.write_text(self.model_dump_json(indent=2) + "\n")
