"""
Constants used throughout the dehost package.

Centralizes magic bytes, block sizes and default values.
"""

from __future__ import annotations

# =============================================================================
# Filtering Defaults
# =============================================================================

# NCBI taxonomy id for Homo sapiens, the default host
HUMAN_TAXID = 9606

# Infix inserted into default output names: reads.fq.gz -> reads.dehosted.fq.gz
OUTPUT_INFIX = "dehosted"

# Files a Kraken2 database directory must contain
KRAKEN_DB_FILES = ("hash.k2d", "opts.k2d", "taxo.k2d")

# =============================================================================
# Compression Magic Bytes
# =============================================================================

GZIP_MAGIC = b"\x1f\x8b"
BZIP2_MAGIC = b"BZh"
XZ_MAGIC = b"\xfd7zXZ\x00"
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"

# Bytes needed to tell BGZF apart from plain gzip (header + first extra subfield)
SNIFF_LENGTH = 16

# =============================================================================
# Streaming and Block Sizes
# =============================================================================

# Decoded bytes requested per read_chunk() call
READ_CHUNK_SIZE = 1 << 16

# Uncompressed bytes per independently compressed gzip member
GZIP_BLOCK_SIZE = 1 << 20

# Uncompressed bytes per BGZF block (htslib uses 0xff00 so a stored block always fits)
BGZF_BLOCK_SIZE = 0xFF00

# Maximum total size of one BGZF block on disk
BGZF_MAX_BLOCK_SIZE = 1 << 16

# Standard BGZF end-of-file marker: an empty block
BGZF_EOF = bytes.fromhex(
    "1f8b08040000000000ff0600424302001b0003000000000000000000"
)

# Uncompressed bytes per independently compressed xz stream
XZ_BLOCK_SIZE = 1 << 23

# Default compression levels
GZIP_DEFAULT_LEVEL = 6
BZIP2_DEFAULT_LEVEL = 9
XZ_DEFAULT_LEVEL = 6
ZSTD_DEFAULT_LEVEL = 3

# Rows per polars batch when loading the classifier output
INDEX_BATCH_SIZE = 1_000_000
