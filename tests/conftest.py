"""
Shared pytest fixtures: an isolated SQLite file per test and fresh in-memory maps.
"""
from datetime import datetime, timezone

import pytest

from app.confirmation import ConfirmationRegistry
from app.dispatcher import MessageDispatcher
from app.ownership import OwnershipStore
from app.presence import PresenceTracker
from database.db import create_db_engine, init_db


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'devices.db'}", timeout=5)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def presence():
    return PresenceTracker()


@pytest.fixture
def registry():
    return ConfirmationRegistry()


@pytest.fixture
def store(engine, registry, presence):
    return OwnershipStore(engine, registry, presence)


@pytest.fixture
def dispatcher(presence, registry, store):
    return MessageDispatcher(presence, registry, history_sink=store.record_history)


@pytest.fixture
def now():
    return datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
