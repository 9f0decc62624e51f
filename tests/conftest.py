"""Pytest fixtures for graphledger tests."""

import logging

import pytest

from graphledger.coordinator import TransactionCoordinator
from graphledger.ledger import get_ledger
from graphledger.source import InMemoryChangeSource


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep tests away from the developer's ledger and config files."""
    monkeypatch.delenv("GRAPHLEDGER_DB", raising=False)
    monkeypatch.delenv("GRAPHLEDGER_DATA_DIR", raising=False)
    monkeypatch.delenv("GRAPHLEDGER_CHANGES_DIR", raising=False)
    monkeypatch.delenv("GRAPHLEDGER_LOG_LEVEL", raising=False)
    monkeypatch.setenv("GRAPHLEDGER_CONFIG", str(tmp_path / "missing-config.toml"))
    package_logger = logging.getLogger("graphledger")
    level = package_logger.level
    yield
    package_logger.setLevel(level)


@pytest.fixture
def ledger_path(tmp_path):
    """Path to a ledger database with the schema installed."""
    path = tmp_path / "ledger.db"
    get_ledger(path, init=True)
    return path


@pytest.fixture
def ledger(ledger_path):
    """Open Ledger; changes are committed when the test ends."""
    with get_ledger(ledger_path) as ledger:
        yield ledger


@pytest.fixture
def change_source():
    return InMemoryChangeSource()


@pytest.fixture
def coordinator(tmp_path, change_source):
    """Coordinator on a temporary ledger, reading changes from memory."""
    return TransactionCoordinator(
        db_path=tmp_path / "coordinated.db",
        change_source=change_source,
    )
