"""
Utility modules for configuration and database operations
"""

from .config import get_replicator_config

from .database_utils import (
    DatabaseConnectionError,
    DatabaseOperationError,
    build_connection_string,
    get_database_engine,
    check_database_connection,
    get_row_count,
    table_exists,
    get_insert_construct,
    effective_schema,
)

from .table_creator import (
    PRIMARY_KEY,
    build_person_table,
    ensure_table_exists,
)

__all__ = [
    # Configuration
    'get_replicator_config',

    # Database utilities
    'DatabaseConnectionError',
    'DatabaseOperationError',
    'build_connection_string',
    'get_database_engine',
    'check_database_connection',
    'get_row_count',
    'table_exists',
    'get_insert_construct',
    'effective_schema',

    # Table definition
    'PRIMARY_KEY',
    'build_person_table',
    'ensure_table_exists',
]
