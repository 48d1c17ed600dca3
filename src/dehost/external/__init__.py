"""
Wrappers for external tools.

Provides a Python interface to Kraken2, the classifier whose per-read
output drives host read removal.
"""

from dehost.external.base import (
    ExternalTool,
    ToolExecutionError,
    ToolNotFoundError,
    ToolResult,
)
from dehost.external.kraken import (
    Kraken2,
    KrakenSummary,
    classify_reads,
    parse_confidence_score,
    validate_db_directory,
)

__all__ = [
    "ExternalTool",
    "Kraken2",
    "KrakenSummary",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolResult",
    "classify_reads",
    "parse_confidence_score",
    "validate_db_directory",
]
