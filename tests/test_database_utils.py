"""
Tests for configuration lookup and database helpers.
"""
import pytest
from django.test import override_settings
from sqlalchemy import MetaData, create_engine

from replicator.utils import (
    DatabaseConnectionError,
    DatabaseOperationError,
    build_connection_string,
    build_person_table,
    check_database_connection,
    effective_schema,
    ensure_table_exists,
    get_database_engine,
    get_insert_construct,
    get_replicator_config,
    get_row_count,
    table_exists,
)


class TestReplicatorConfig:
    def test_defaults_come_from_settings(self):
        config = get_replicator_config()

        assert config['SLOT_NAME'] == 'migration_slot'
        assert config['DECODING_PLUGIN'] == 'wal2json'
        assert config['TABLE_NAME'] == 'person'
        assert config['BULK_BATCH_SIZE'] == 100
        assert config['SOURCE']['PORT'] == 5429
        assert config['TARGET']['PORT'] == 5431

    def test_partial_connection_override_keeps_other_keys(self):
        config = get_replicator_config({'SOURCE': {'HOST': 'db.internal'}, 'SLOT_NAME': 'other'})

        assert config['SOURCE']['HOST'] == 'db.internal'
        assert config['SOURCE']['PORT'] == 5429
        assert config['SLOT_NAME'] == 'other'

    @override_settings(REPLICATOR_CONFIG={'TABLE_NAME': 'customer'})
    def test_missing_settings_fall_back_to_defaults(self):
        config = get_replicator_config()

        assert config['TABLE_NAME'] == 'customer'
        assert config['TICK_INTERVAL_SECONDS'] == 2.0
        assert config['SOURCE']['PORT'] == 5432
        assert config['DEAD_LETTER_TABLE'] is None

    def test_overrides_do_not_leak_between_calls(self):
        get_replicator_config({'SOURCE': {'HOST': 'elsewhere'}})
        assert get_replicator_config()['SOURCE']['HOST'] != 'elsewhere'


class TestConnectionString:
    def test_postgresql_credentials_are_escaped(self):
        url = build_connection_string({
            'DB_TYPE': 'postgresql', 'HOST': 'db', 'PORT': 5431,
            'USER': 'repl', 'PASSWORD': 'p@ss:word/1', 'NAME': 'testdb',
        })
        assert url == 'postgresql+psycopg2://repl:p%40ss%3Aword%2F1@db:5431/testdb'

    def test_sqlite(self):
        assert build_connection_string({'DB_TYPE': 'sqlite', 'NAME': '/tmp/t.db'}) == 'sqlite:////tmp/t.db'
        assert build_connection_string({'DB_TYPE': 'sqlite', 'NAME': ''}) == 'sqlite://'

    def test_unsupported_type(self):
        with pytest.raises(ValueError, match='Unsupported database type'):
            build_connection_string({'DB_TYPE': 'oracle'})

    def test_unsupported_type_surfaces_as_connection_error(self):
        with pytest.raises(DatabaseConnectionError):
            get_database_engine({'DB_TYPE': 'oracle'})


class TestDatabaseHelpers:
    def test_check_connection(self, tmp_path):
        engine = get_database_engine({'DB_TYPE': 'sqlite', 'NAME': str(tmp_path / 'ok.db')})
        assert check_database_connection(engine, 'target') == (True, None)

    def test_check_connection_failure(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'x.db'}")

        ok, error = check_database_connection(engine, 'source')

        assert ok is False
        assert error.startswith('Connection test failed')

    def test_ensure_table_and_count(self, target_engine):
        table = build_person_table(MetaData())

        ensure_table_exists(target_engine, table)
        ensure_table_exists(target_engine, table)

        assert table_exists(target_engine, 'person')
        assert get_row_count(target_engine, 'person') == 0

    def test_row_count_of_missing_table(self, target_engine):
        with pytest.raises(DatabaseOperationError):
            get_row_count(target_engine, 'nope')

    def test_insert_construct_per_dialect(self, target_engine):
        from sqlalchemy.dialects import sqlite

        assert get_insert_construct(target_engine) is sqlite.insert

    @pytest.mark.parametrize('schema', ['inventory', None, ''])
    def test_sqlite_drops_schema(self, target_engine, schema):
        assert effective_schema(target_engine, schema) is None

    def test_postgresql_keeps_schema(self):
        engine = create_engine('postgresql+psycopg2://user:pw@localhost/db')

        assert effective_schema(engine, 'inventory') == 'inventory'
        assert effective_schema(engine, None) is None

    def test_schema_qualifies_person_table(self):
        table = build_person_table(MetaData(), schema='inventory')

        assert table.fullname == 'inventory.person'
