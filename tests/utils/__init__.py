"""Testing utilities for dehost."""

from tests.utils.assertions import (
    CLIAssertions,
    StatsAssertions,
)

__all__ = [
    "CLIAssertions",
    "StatsAssertions",
]
