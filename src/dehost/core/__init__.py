"""
Core streaming components: format detection, codecs, record scanning,
the classification index and the filter engine.
"""

from dehost.core.compression import Codec, sniff_bytes, sniff_path
from dehost.core.filtering import FilterEngine, plan_outputs
from dehost.core.index import ClassificationIndex, ClassificationRecord
from dehost.core.records import MateNormalizer, ReadFileScanner, ReadRecord

__all__ = [
    "ClassificationIndex",
    "ClassificationRecord",
    "Codec",
    "FilterEngine",
    "MateNormalizer",
    "ReadFileScanner",
    "ReadRecord",
    "plan_outputs",
    "sniff_bytes",
    "sniff_path",
]
