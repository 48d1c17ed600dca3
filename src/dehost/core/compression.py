"""
Compression format detection.

The set of supported codecs is closed: every reader/writer and every
path-naming decision dispatches on the ``Codec`` enum. Detection prefers the
stream's magic bytes; the filename is consulted only when there are no bytes
yet (choosing the codec of an output file before writing it).
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import BinaryIO

from dehost.core.constants import (
    BZIP2_MAGIC,
    GZIP_MAGIC,
    SNIFF_LENGTH,
    XZ_MAGIC,
    ZSTD_MAGIC,
)
from dehost.core.exceptions import ConfigurationError


class Codec(str, Enum):
    """Compression codec of a read file."""

    NONE = "none"
    GZIP = "gzip"
    BGZF = "bgzf"
    BZIP2 = "bzip2"
    XZ = "xz"
    ZSTD = "zstd"

    @property
    def extension(self) -> str:
        """File extension (without dot) for this codec; empty for NONE."""
        return _EXTENSIONS[self]

    @property
    def is_compressed(self) -> bool:
        return self is not Codec.NONE

    @property
    def is_parallel(self) -> bool:
        """Whether the writer spreads compression over worker threads."""
        return self in (Codec.GZIP, Codec.BGZF, Codec.XZ, Codec.ZSTD)

    @classmethod
    def parse(cls, value: str | Codec) -> Codec:
        """Parse a codec name or single-letter code.

        Letters follow the usual ``-F`` convention of read tools:
        ``u`` (uncompressed), ``g`` (gzip), ``B`` (bgzf), ``b`` (bzip2),
        ``x`` (xz), ``z`` (zstd). Full names are case-insensitive.

        Raises:
            ConfigurationError: If the value names no known codec.
        """
        if isinstance(value, Codec):
            return value
        if value in _LETTERS:
            return _LETTERS[value]
        lowered = value.lower()
        if lowered in _LETTERS:
            return _LETTERS[lowered]
        try:
            return cls(_ALIASES.get(lowered, lowered))
        except ValueError:
            raise ConfigurationError(
                message=f"Invalid compression format: {value}",
                suggestion="Use one of: u, g, B, b, x, z (or none, gzip, bgzf, bzip2, xz, zstd).",
            ) from None

    @classmethod
    def from_path(cls, path: Path | str) -> Codec:
        """Infer the codec from a filename extension.

        Example:
            >>> Codec.from_path("reads.fq.gz")
            <Codec.GZIP: 'gzip'>
            >>> Codec.from_path("reads.fq")
            <Codec.NONE: 'none'>
        """
        suffix = Path(path).suffix.lower().lstrip(".")
        return _SUFFIXES.get(suffix, cls.NONE)

    def add_extension(self, path: Path) -> Path:
        """Append this codec's extension to ``path`` (no-op for NONE)."""
        if not self.is_compressed:
            return path
        return path.with_name(f"{path.name}.{self.extension}")


_EXTENSIONS: dict[Codec, str] = {
    Codec.NONE: "",
    Codec.GZIP: "gz",
    Codec.BGZF: "gz",
    Codec.BZIP2: "bz2",
    Codec.XZ: "xz",
    Codec.ZSTD: "zst",
}

_SUFFIXES: dict[str, Codec] = {
    "gz": Codec.GZIP,
    "bgz": Codec.BGZF,
    "bgzf": Codec.BGZF,
    "bz2": Codec.BZIP2,
    "xz": Codec.XZ,
    "zst": Codec.ZSTD,
    "zstd": Codec.ZSTD,
}

_LETTERS: dict[str, Codec] = {
    "u": Codec.NONE,
    "g": Codec.GZIP,
    "B": Codec.BGZF,
    "b": Codec.BZIP2,
    "x": Codec.XZ,
    "z": Codec.ZSTD,
}

_ALIASES: dict[str, str] = {
    "uncompressed": "none",
    "gz": "gzip",
    "bgz": "bgzf",
    "bz2": "bzip2",
    "zst": "zstd",
}


def compression_suffixes() -> frozenset[str]:
    """All filename suffixes (with dot) that denote a compressed file."""
    return frozenset(f".{s}" for s in _SUFFIXES)


def sniff_bytes(header: bytes) -> Codec:
    """Detect the codec from the first bytes of a stream.

    Unknown or missing magic means the stream is uncompressed; sniffing
    never fails.

    Example:
        >>> sniff_bytes(b"\\x28\\xb5\\x2f\\xfd\\x24")
        <Codec.ZSTD: 'zstd'>
        >>> sniff_bytes(b"@read1")
        <Codec.NONE: 'none'>
    """
    if header.startswith(GZIP_MAGIC):
        return Codec.BGZF if _is_bgzf(header) else Codec.GZIP
    if header.startswith(BZIP2_MAGIC):
        return Codec.BZIP2
    if header.startswith(XZ_MAGIC):
        return Codec.XZ
    if header.startswith(ZSTD_MAGIC):
        return Codec.ZSTD
    return Codec.NONE


def _is_bgzf(header: bytes) -> bool:
    # FLG.FEXTRA set, XLEN >= 6 and first subfield is 'BC' with SLEN 2
    if len(header) < SNIFF_LENGTH:
        return False
    return (
        header[3] & 0x04 != 0
        and int.from_bytes(header[10:12], "little") >= 6
        and header[12:14] == b"BC"
        and int.from_bytes(header[14:16], "little") == 2
    )


def sniff_stream(stream: BinaryIO) -> Codec:
    """Detect the codec of a buffered stream without consuming any bytes.

    The stream must support ``peek()`` (``io.BufferedReader`` does); the
    peeked bytes remain available to the first real read.
    """
    header = stream.peek(SNIFF_LENGTH)[:SNIFF_LENGTH]
    return sniff_bytes(header)


def sniff_path(path: Path) -> Codec:
    """Detect the codec of an existing file from its magic bytes.

    An empty file falls back to the filename extension.
    """
    with path.open("rb") as handle:
        header = handle.read(SNIFF_LENGTH)
    if not header:
        return Codec.from_path(path)
    return sniff_bytes(header)
