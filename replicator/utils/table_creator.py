"""
Replicated table definition and creation in the target database
"""

import logging
from typing import Optional

from sqlalchemy import MetaData, Table, Column, Integer, String, DateTime, Uuid, func
from sqlalchemy.engine import Engine

from replicator.utils.database_utils import DatabaseOperationError

logger = logging.getLogger(__name__)

PRIMARY_KEY = 'id'


def build_person_table(metadata: MetaData, table_name: str = 'person', schema: Optional[str] = None) -> Table:
    """
    person(id integer primary key, name text not null, uid uuid not null,
    score integer not null, created_at timestamp default now())

    `id` is a SERIAL on PostgreSQL so the target owns a `<table>_id_seq`
    sequence that the bulk loader resynchronises. `schema` qualifies the
    table name; None resolves it through the connection's search_path.
    """
    return Table(
        table_name,
        metadata,
        Column(PRIMARY_KEY, Integer, primary_key=True, autoincrement=True),
        Column('name', String(100), nullable=False),
        Column('uid', Uuid, nullable=False),
        Column('score', Integer, nullable=False),
        Column('created_at', DateTime, server_default=func.now()),
        schema=schema,
    )


def ensure_table_exists(engine: Engine, table: Table) -> None:
    """
    Create the table if it is not present (CREATE TABLE IF NOT EXISTS semantics)

    Raises:
        DatabaseOperationError: If the table cannot be created or verified
    """
    try:
        table.create(engine, checkfirst=True)
        logger.info(f"Table '{table.name}' is ready on {engine.dialect.name} target")
    except Exception as e:
        error_msg = f"Failed to create table {table.name}: {str(e)}"
        logger.error(error_msg)
        raise DatabaseOperationError(error_msg) from e
