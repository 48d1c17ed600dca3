"""
dehost: remove host reads from sequencing data.

Streams FASTA/FASTQ files (plain, gzip, bgzf, bzip2, xz or zstd) and drops
every read that Kraken2 assigned to a host taxon, keeping read pairs in
sync and writing outputs in the requested compression format.
"""

__version__ = "0.1.0"

from dehost.core.filtering import FilterEngine
from dehost.core.index import ClassificationIndex, ClassificationRecord
from dehost.models.config import FilterConfig
from dehost.models.stats import RunStats

__all__ = [
    "ClassificationIndex",
    "ClassificationRecord",
    "FilterConfig",
    "FilterEngine",
    "RunStats",
    "__version__",
]
