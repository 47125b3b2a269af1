"""Pytest configuration and fixtures."""

import pytest


@pytest.fixture
def db_path(tmp_path):
    """Fresh SQLite file shared by the configuration store and ticker cache."""
    return str(tmp_path / "relay.db")
