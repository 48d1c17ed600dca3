"""Shared conftest for integration tests."""

from __future__ import annotations

import pytest

from dehost.external.kraken import Kraken2


def pytest_collection_modifyitems(config, items):
    """Skip tests marked requires_kraken2 if Kraken2 is not available."""
    if not Kraken2.check_available():
        skip_kraken2 = pytest.mark.skip(reason="Kraken2 not installed")
        for item in items:
            if "requires_kraken2" in item.keywords:
                item.add_marker(skip_kraken2)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Keep a DEHOST_DB from the caller's shell out of the tests."""
    monkeypatch.delenv("DEHOST_DB", raising=False)
