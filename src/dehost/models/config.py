"""
Pydantic configuration models for dehost.

``FilterConfig`` holds every knob of a filtering run: which taxa count as
host, the confidence threshold, polarity, how to treat reads missing from
the classifier output, the mate suffix rule and output encoding.
Configuration can be loaded from YAML files and overridden by CLI options.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal, Self

from pydantic import BaseModel, Field, field_validator, model_validator

from dehost.core.compression import Codec
from dehost.core.constants import HUMAN_TAXID
from dehost.core.exceptions import ConfigurationError
from dehost.core.records import DEFAULT_MATE_SUFFIX, MateNormalizer

logger = logging.getLogger(__name__)

MissingPolicy = Literal["error", "keep", "discard"]

# Inclusive (min, max) compression level per codec
COMPRESSION_LEVELS: dict[Codec, tuple[int, int]] = {
    Codec.GZIP: (0, 9),
    Codec.BGZF: (0, 9),
    Codec.BZIP2: (1, 9),
    Codec.XZ: (0, 9),
    Codec.ZSTD: (1, 22),
}


def validate_compression_level(codec: Codec, level: int | None) -> None:
    """Check ``level`` against the codec's accepted range.

    Raises:
        ConfigurationError: If the level is outside the codec's range.
    """
    if level is None or codec not in COMPRESSION_LEVELS:
        return
    low, high = COMPRESSION_LEVELS[codec]
    if not low <= level <= high:
        raise ConfigurationError(
            message=f"Compression level {level} is invalid for {codec.value}",
            suggestion=f"{codec.value} accepts levels {low} to {high}.",
        )


class FilterConfig(BaseModel):
    """
    Configuration for one host-read filtering run.

    Decision rule, applied to each read's classifier verdict:

        is_target = classified and taxon_id in target_taxa
                    and confidence >= min_confidence
        keep      = is_target if invert else not is_target

    With the defaults (target 9606, invert off) human reads are removed and
    everything else, unclassified reads included, is kept.
    """

    target_taxa: frozenset[int] = Field(
        default=frozenset({HUMAN_TAXID}),
        description="Taxon ids treated as host (NCBI taxids)",
    )
    min_confidence: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Minimum classifier confidence for a read to count as host",
    )
    invert: bool = Field(
        default=False,
        description="Keep host reads and discard everything else",
    )
    on_missing: MissingPolicy = Field(
        default="error",
        description=(
            "What to do with reads absent from the classifier output. "
            "'error' aborts the run; 'keep'/'discard' must be chosen explicitly."
        ),
    )
    mate_suffix: str = Field(
        default=DEFAULT_MATE_SUFFIX,
        description="Mate suffix rule: preset name (none, slash, dot, underscore, any) or regex",
    )
    threads: int = Field(default=1, ge=1, description="Compression worker threads")
    output_codec: Codec | None = Field(
        default=None,
        description="Force output compression; inferred from the output name when None",
    )
    compression_level: int | None = Field(default=None, description="Codec compression level")
    overwrite: bool = Field(default=False, description="Replace existing output files")

    model_config = {"frozen": True}

    @field_validator("target_taxa")
    @classmethod
    def validate_target_taxa(cls, value: frozenset[int]) -> frozenset[int]:
        if not value:
            msg = "target_taxa must name at least one taxon"
            raise ValueError(msg)
        if any(taxid <= 0 for taxid in value):
            msg = f"taxon ids must be positive, got {sorted(value)}"
            raise ValueError(msg)
        return value

    @field_validator("output_codec", mode="before")
    @classmethod
    def parse_output_codec(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return Codec.parse(value)
            except ConfigurationError as e:
                raise ValueError(e.message) from e
        return value

    @field_validator("mate_suffix")
    @classmethod
    def validate_mate_suffix(cls, value: str) -> str:
        try:
            MateNormalizer(value)
        except ConfigurationError as e:
            raise ValueError(e.message) from e
        return value

    @model_validator(mode="after")
    def validate_level_for_codec(self) -> Self:
        if self.output_codec is not None:
            try:
                validate_compression_level(self.output_codec, self.compression_level)
            except ConfigurationError as e:
                raise ValueError(e.message) from e
        return self

    def normalizer(self) -> MateNormalizer:
        """Build the mate suffix normalizer for this configuration."""
        return MateNormalizer(self.mate_suffix)

    @classmethod
    def from_yaml(cls, path: Path) -> FilterConfig:
        """
        Load configuration from a YAML file.

        Expected structure (all keys optional):

            filter:
              target_taxa: [9606]
              min_confidence: 0.0
              invert: false
              on_missing: error
              mate_suffix: slash
            output:
              codec: gzip
              compression_level: 6
              threads: 4
              overwrite: false
        """
        import yaml

        raw = yaml.safe_load(path.read_text()) or {}
        if not isinstance(raw, dict):
            msg = f"Config file {path} must contain a mapping at the top level"
            raise ConfigurationError(msg)
        flat = _flatten_yaml_config(raw)
        logger.debug("Loaded config from %s: %s", path, flat)
        return cls(**flat)

    def to_yaml(self, path: Path) -> None:
        """Save configuration to a YAML file."""
        path.write_text(self.to_yaml_str())

    def to_yaml_str(self) -> str:
        """Serialize configuration to a YAML string."""
        import yaml

        data = _build_yaml_structure(self)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)

    def merged(self, **overrides: Any) -> FilterConfig:
        """Return a copy with non-None ``overrides`` applied and re-validated."""
        values = self.model_dump()
        values.update({key: value for key, value in overrides.items() if value is not None})
        return FilterConfig(**values)


def _flatten_yaml_config(raw: dict[str, Any]) -> dict[str, Any]:
    """
    Flatten nested YAML config structure into FilterConfig keyword arguments.

    Maps:
        filter.target_taxa -> target_taxa
        output.codec -> output_codec
        output.threads -> threads
    """
    flat: dict[str, Any] = {}

    filter_sec = raw.get("filter", {}) or {}
    _map_if_present(filter_sec, "target_taxa", flat, "target_taxa")
    _map_if_present(filter_sec, "min_confidence", flat, "min_confidence")
    _map_if_present(filter_sec, "invert", flat, "invert")
    _map_if_present(filter_sec, "on_missing", flat, "on_missing")
    _map_if_present(filter_sec, "mate_suffix", flat, "mate_suffix")

    output_sec = raw.get("output", {}) or {}
    _map_if_present(output_sec, "codec", flat, "output_codec")
    _map_if_present(output_sec, "compression_level", flat, "compression_level")
    _map_if_present(output_sec, "threads", flat, "threads")
    _map_if_present(output_sec, "overwrite", flat, "overwrite")

    return flat


def _map_if_present(
    source: dict[str, Any],
    source_key: str,
    target: dict[str, Any],
    target_key: str,
) -> None:
    """Copy value from source dict to target dict if key exists."""
    if source_key in source and source[source_key] is not None:
        target[target_key] = source[source_key]


def _build_yaml_structure(config: FilterConfig) -> dict[str, Any]:
    """Build nested YAML dict from a FilterConfig instance."""
    output: dict[str, Any] = {
        "threads": config.threads,
        "overwrite": config.overwrite,
    }
    if config.output_codec is not None:
        output["codec"] = config.output_codec.value
    if config.compression_level is not None:
        output["compression_level"] = config.compression_level

    return {
        "filter": {
            "target_taxa": sorted(config.target_taxa),
            "min_confidence": config.min_confidence,
            "invert": config.invert,
            "on_missing": config.on_missing,
            "mate_suffix": config.mate_suffix,
        },
        "output": output,
    }
