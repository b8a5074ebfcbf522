"""
Database utility functions for connection management and operations
Supports: PostgreSQL (source and target), SQLite (target, local runs)
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote_plus

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine

from replicator.logging_utils import log_database_connection
from replicator.exceptions import ReplicationError

logger = logging.getLogger(__name__)


class DatabaseConnectionError(ReplicationError):
    """Raised when database connection fails"""
    pass


class DatabaseOperationError(ReplicationError):
    """Raised when database operation fails"""
    pass


def build_connection_string(db_config: Dict[str, Any]) -> str:
    """
    Build SQLAlchemy connection string from a SOURCE/TARGET settings dict

    Args:
        db_config: dict with DB_TYPE, HOST, PORT, USER, PASSWORD, NAME

    Returns:
        str: SQLAlchemy connection string

    Raises:
        ValueError: If database type is not supported
    """
    db_type = (db_config.get('DB_TYPE') or 'postgresql').lower()
    database = db_config.get('NAME') or ''

    if db_type == 'sqlite':
        if database in ('', ':memory:'):
            return "sqlite://"
        return f"sqlite:///{database}"

    if db_type != 'postgresql':
        raise ValueError(f"Unsupported database type: {db_type}")

    # URL-encode username and password to handle special characters (@, :, /, etc.)
    username = quote_plus(str(db_config.get('USER') or ''))
    password = quote_plus(str(db_config.get('PASSWORD') or ''))
    host = db_config.get('HOST') or 'localhost'
    port = db_config.get('PORT') or 5432

    return f"postgresql+psycopg2://{username}:{password}@{host}:{port}/{database}"


def get_database_engine(
    db_config: Dict[str, Any],
    pool_size: int = 5,
    statement_timeout_ms: Optional[int] = None,
) -> Engine:
    """
    Create SQLAlchemy engine for database connection

    Args:
        db_config: SOURCE/TARGET settings dict
        pool_size: Connection pool size (default: 5)
        statement_timeout_ms: Server-side statement timeout (PostgreSQL only)

    Returns:
        Engine: SQLAlchemy engine instance

    Raises:
        DatabaseConnectionError: If the engine cannot be created
    """
    label = _describe(db_config)
    try:
        connection_string = build_connection_string(db_config)

        if connection_string.startswith('sqlite'):
            engine = create_engine(connection_string, echo=False)
        else:
            connect_args = {}
            if statement_timeout_ms:
                connect_args['options'] = f"-c statement_timeout={int(statement_timeout_ms)}"

            engine = create_engine(
                connection_string,
                pool_size=pool_size,
                pool_pre_ping=True,  # Test connections before using
                pool_recycle=3600,   # Recycle connections after 1 hour
                connect_args=connect_args,
                echo=False
            )

        logger.info(f"Created database engine for {label}")
        return engine

    except Exception as e:
        error_msg = f"Failed to create database engine for {label}: {str(e)}"
        logger.error(error_msg)
        raise DatabaseConnectionError(error_msg) from e


def check_database_connection(engine: Engine, label: str = 'database') -> Tuple[bool, Optional[str]]:
    """
    Test database connection with a trivial query

    Args:
        engine: SQLAlchemy engine
        label: Name used in log lines ('source', 'target', ...)

    Returns:
        Tuple[bool, Optional[str]]: (success, error_message)
    """
    start_time = time.time()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()

        log_database_connection(engine.dialect.name, label, 'success', duration=time.time() - start_time)
        return True, None

    except Exception as e:
        error_msg = f"Connection test failed: {str(e)}"
        log_database_connection(engine.dialect.name, label, 'failed', duration=time.time() - start_time, error=e)
        return False, error_msg


def get_row_count(engine: Engine, table_name: str, schema: Optional[str] = None) -> int:
    """
    Get row count for a specific table

    Args:
        engine: SQLAlchemy engine
        table_name: Name of the table
        schema: Schema name (optional)

    Returns:
        int: Number of rows in the table

    Raises:
        DatabaseOperationError: If operation fails
    """
    try:
        preparer = engine.dialect.identifier_preparer
        qualified = preparer.quote(table_name)
        if schema:
            qualified = f"{preparer.quote_schema(schema)}.{qualified}"

        with engine.connect() as conn:
            count = conn.execute(text(f"SELECT COUNT(*) AS cnt FROM {qualified}")).scalar()

        logger.debug(f"Row count for '{table_name}': {count}")
        return int(count or 0)

    except Exception as e:
        error_msg = f"Failed to get row count for {table_name}: {str(e)}"
        logger.error(error_msg)
        raise DatabaseOperationError(error_msg) from e


def table_exists(engine: Engine, table_name: str, schema: Optional[str] = None) -> bool:
    """
    Check if a table exists in the database

    Raises:
        DatabaseOperationError: If the catalog cannot be read
    """
    try:
        return inspect(engine).has_table(table_name, schema=schema)
    except Exception as e:
        error_msg = f"Failed to check if table {table_name} exists: {str(e)}"
        logger.error(error_msg)
        raise DatabaseOperationError(error_msg) from e


def _describe(db_config: Dict[str, Any]) -> str:
    db_type = (db_config.get('DB_TYPE') or 'postgresql').lower()
    if db_type == 'sqlite':
        return f"sqlite:{db_config.get('NAME') or ':memory:'}"
    return f"{db_config.get('HOST')}:{db_config.get('PORT')}/{db_config.get('NAME')}"


def get_insert_construct(engine: Engine):
    """
    Return the dialect-specific insert() that supports ON CONFLICT

    Raises:
        DatabaseOperationError: If the dialect has no ON CONFLICT support
    """
    dialect = engine.dialect.name
    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise DatabaseOperationError(f"Upsert is not supported for {dialect} targets")
    return insert


def effective_schema(engine: Engine, schema: Optional[str]) -> Optional[str]:
    """
    Schema to qualify table names with on this engine

    Only PostgreSQL has named schemas; on SQLite a schema name would refer to
    an attached database, so the name is dropped there.
    """
    if not schema or engine.dialect.name != 'postgresql':
        return None
    return schema
