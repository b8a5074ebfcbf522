"""
Tests for the replication slot lifecycle, against a mocked source engine.
"""
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from replicator.exceptions import ReplicationError, SlotError
from replicator.replication.slot_manager import (
    CREATE_SLOT_SQL,
    DROP_SLOT_SQL,
    GET_CHANGES_SQL,
    SLOT_EXISTS_SQL,
    SlotManager,
)


@pytest.fixture
def conn():
    return MagicMock()


@pytest.fixture
def source_engine(conn):
    engine = MagicMock()
    engine.connect.return_value.__enter__.return_value = conn
    engine.connect.return_value.__exit__.return_value = False
    engine.begin.return_value.__enter__.return_value = conn
    engine.begin.return_value.__exit__.return_value = False
    return engine


@pytest.fixture
def manager(source_engine):
    return SlotManager(source_engine, 'migration_slot', 'wal2json')


def executed_sql(conn):
    return [str(call.args[0]) for call in conn.execute.call_args_list]


def db_error(message):
    return OperationalError('SELECT', {}, Exception(message))


class TestEnsureSlot:
    def test_creates_slot_when_absent(self, manager, conn):
        conn.execute.return_value.scalar.return_value = False
        conn.execute.return_value.fetchone.return_value = ('migration_slot', '0/16B3748')

        manager.ensure_slot()

        assert executed_sql(conn) == [str(SLOT_EXISTS_SQL), str(CREATE_SLOT_SQL)]
        assert conn.execute.call_args_list[-1].args[1] == {
            'slot_name': 'migration_slot',
            'plugin': 'wal2json',
        }

    def test_drops_existing_slot_before_creating(self, manager, conn):
        conn.execute.return_value.scalar.return_value = True
        conn.execute.return_value.fetchone.return_value = ('migration_slot', '0/16B3748')

        manager.ensure_slot()

        assert executed_sql(conn) == [str(SLOT_EXISTS_SQL), str(DROP_SLOT_SQL), str(CREATE_SLOT_SQL)]

    def test_drop_failure_is_fatal(self, manager, conn):
        conn.execute.side_effect = [MagicMock(scalar=MagicMock(return_value=True)), db_error('slot is active')]

        with pytest.raises(SlotError, match='Could not drop existing slot') as exc_info:
            manager.ensure_slot()

        assert exc_info.value.slot_name == 'migration_slot'
        assert str(CREATE_SLOT_SQL) not in executed_sql(conn)

    def test_create_failure_is_fatal(self, manager, conn):
        conn.execute.side_effect = [
            MagicMock(scalar=MagicMock(return_value=False)),
            ProgrammingError('SELECT', {}, Exception('could not access file "wal2json"')),
        ]

        with pytest.raises(SlotError, match='Could not create replication slot'):
            manager.ensure_slot()

    def test_existence_check_failure_is_fatal(self, manager, conn):
        conn.execute.side_effect = db_error('connection refused')

        with pytest.raises(SlotError, match='Could not check if slot exists'):
            manager.ensure_slot()

    def test_slot_error_is_a_replication_error(self):
        error = SlotError('boom', 'migration_slot')
        assert isinstance(error, ReplicationError)
        assert str(error) == 'boom (slot=migration_slot)'


class TestConsumePendingChanges:
    def test_returns_records_in_order(self, manager, conn):
        conn.execute.return_value.fetchall.return_value = [('{"a": 1}',), ('{"b": 2}',)]

        assert manager.consume_pending_changes() == ['{"a": 1}', '{"b": 2}']
        assert executed_sql(conn) == [str(GET_CHANGES_SQL)]
        assert conn.execute.call_args.args[1] == {'slot_name': 'migration_slot'}

    def test_requests_format_version_2(self):
        sql = str(GET_CHANGES_SQL)
        assert "'format-version', '2'" in sql
        assert "'include-timestamp', 'true'" in sql
        assert 'pg_logical_slot_get_changes' in sql

    def test_empty_slot(self, manager, conn):
        conn.execute.return_value.fetchall.return_value = []
        assert manager.consume_pending_changes() == []

    def test_failure_raises_slot_error(self, manager, conn):
        conn.execute.side_effect = db_error('statement timeout')

        with pytest.raises(SlotError, match='Failed to get changes'):
            manager.consume_pending_changes()
