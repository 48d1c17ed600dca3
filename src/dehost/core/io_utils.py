"""
Output path and codec resolution.

Provides consistent handling of output naming and output compression across
the filter engine and the CLI.
"""

from __future__ import annotations

from pathlib import Path

from dehost.core.compression import Codec, compression_suffixes
from dehost.core.constants import OUTPUT_INFIX


def strip_compression_suffix(path: Path) -> Path:
    """Remove a trailing compression extension, if any.

    Example:
        >>> strip_compression_suffix(Path("reads.fq.gz"))
        PosixPath('reads.fq')
    """
    if path.suffix.lower() in compression_suffixes():
        return path.with_suffix("")
    return path


def default_output_path(input_path: Path, codec: Codec, directory: Path | None = None) -> Path:
    """Derive an output name from an input read file.

    The compression suffix is dropped, ``.dehosted`` is inserted before the
    remaining extension and the resolved codec's extension is appended.

    Args:
        input_path: Input reads file.
        codec: Resolved output codec.
        directory: Output directory; defaults to the input's directory.

    Example:
        >>> default_output_path(Path("sample_R1.fq.gz"), Codec.GZIP)
        PosixPath('sample_R1.dehosted.fq.gz')
        >>> default_output_path(Path("sample.fasta"), Codec.ZSTD)
        PosixPath('sample.dehosted.fasta.zst')
    """
    base = strip_compression_suffix(input_path)
    if base.suffix:
        name = f"{base.stem}.{OUTPUT_INFIX}{base.suffix}"
    else:
        name = f"{base.name}.{OUTPUT_INFIX}"
    parent = directory if directory is not None else input_path.parent
    return codec.add_extension(parent / name)


def resolve_output_codec(
    input_codec: Codec,
    output_path: Path | None,
    override: Codec | None = None,
) -> Codec:
    """Pick the output codec for one file.

    Precedence: explicit override, then the output filename's extension
    (when an output path was given), then the input file's codec. A ``.gz``
    output of a BGZF input stays BGZF.
    """
    if override is not None:
        return override
    if output_path is not None:
        inferred = Codec.from_path(output_path)
        if inferred is Codec.GZIP and input_codec is Codec.BGZF:
            return Codec.BGZF
        return inferred
    return input_codec


def partial_path(final_path: Path, token: str) -> Path:
    """Hidden sibling path a writer fills before the run succeeds."""
    return final_path.with_name(f".{final_path.name}.{token}.partial")
