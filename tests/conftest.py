"""Pytest fixtures shared across the streakd tests."""

import os
import tempfile
from unittest.mock import AsyncMock

import pytest

from streakd.db import KeyValueStore
from streakd.orchestrator import EventOrchestrator, OrchestratorContext


@pytest.fixture
def db_path():
    """Path to a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        path = f.name

    try:
        yield path
    finally:
        os.unlink(path)


@pytest.fixture
def kv_store(db_path):
    return KeyValueStore(db_path)


@pytest.fixture
def presenter():
    """Presenter stand-in that records open_interruption() calls."""
    fake = AsyncMock()
    fake.open_interruption.return_value = True
    return fake


@pytest.fixture
def orchestrator(kv_store, presenter):
    orch = EventOrchestrator(OrchestratorContext(store=kv_store, presenter=presenter))
    try:
        yield orch
    finally:
        orch.close()
