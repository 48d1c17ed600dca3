"""
Pydantic data models for dehost: run configuration and run statistics.
"""

from dehost.models.config import FilterConfig
from dehost.models.stats import RunStats

__all__ = [
    "FilterConfig",
    "RunStats",
]
