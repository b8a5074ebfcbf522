"""
Shared fixtures: file-backed SQLite stores standing in for the PostgreSQL
source and target, and a mocked replication slot.
"""
from unittest.mock import MagicMock

import pytest
from sqlalchemy import MetaData, create_engine

from replicator.replication.slot_manager import SlotManager
from replicator.utils.table_creator import build_person_table
from tests.helpers import person_row


@pytest.fixture
def source_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'source.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def target_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'target.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def source_table(source_engine):
    table = build_person_table(MetaData())
    table.create(source_engine)
    return table


@pytest.fixture
def target_table(target_engine):
    table = build_person_table(MetaData())
    table.create(target_engine)
    return table


@pytest.fixture
def seed_source(source_engine, source_table):
    """Insert `count` person rows (ids 1..count) into the source."""
    def _seed(count):
        rows = [person_row(i) for i in range(1, count + 1)]
        if rows:
            with source_engine.begin() as conn:
                conn.execute(source_table.insert(), rows)
        return rows
    return _seed


@pytest.fixture
def slot_manager():
    manager = MagicMock(spec=SlotManager)
    manager.slot_name = 'test_slot'
    manager.consume_pending_changes.return_value = []
    return manager
