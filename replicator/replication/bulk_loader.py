"""
Initial snapshot copy of the source table into the target.

Rows are streamed from the source in primary-key order and written in fixed
size batches with INSERT ... ON CONFLICT (id) DO NOTHING. Rows that already
exist in the target are left untouched, which makes re-running the load safe
after a crash part-way through; it does not repair rows whose content has
diverged (subsequent change events do that).
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import Table, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from replicator import metrics
from replicator.utils.database_utils import DatabaseOperationError, get_insert_construct
from replicator.utils.table_creator import PRIMARY_KEY

logger = logging.getLogger(__name__)

SERIAL_SEQUENCE_SQL = text("SELECT pg_get_serial_sequence(:table_name, :column_name)")
RESYNC_SEQUENCE_SQL = text("SELECT setval(CAST(:sequence_name AS regclass), :next_value, false)")


class BulkLoader:
    DEFAULT_BATCH_SIZE = 100

    def __init__(
        self,
        source_engine: Engine,
        target_engine: Engine,
        source_table: Table,
        target_table: Table,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        """
        Args:
            source_engine: SQLAlchemy engine for the source database
            target_engine: SQLAlchemy engine for the target database
            source_table: table definition bound to the source
            target_table: table definition bound to the target
            batch_size: rows per INSERT batch
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")

        self.source_engine = source_engine
        self.target_engine = target_engine
        self.source_table = source_table
        self.target_table = target_table
        self.batch_size = batch_size

        self.stats = {
            'rows_read': 0,
            'batches_written': 0,
            'batches_failed': 0,
            'next_sequence_value': None,
        }

    def iter_source_rows(self) -> Iterator[Dict[str, Any]]:
        """
        Lazily yield source rows ordered by primary key.

        A single forward cursor; restarting means calling this again, which
        re-issues the query from the beginning.

        Raises:
            DatabaseOperationError: if the source query fails
        """
        stmt = select(self.source_table).order_by(self.source_table.c[PRIMARY_KEY])
        try:
            with self.source_engine.connect() as conn:
                result = conn.execution_options(yield_per=self.batch_size).execute(stmt)
                for row in result:
                    yield dict(row._mapping)
        except SQLAlchemyError as e:
            raise DatabaseOperationError(f"Failed to query source data: {e}") from e

    def load_all(self) -> int:
        """
        Copy every source row into the target, then resynchronise the target
        id sequence.

        Returns:
            int: number of source rows read

        Raises:
            DatabaseOperationError: if the source cannot be read
        """
        insert = get_insert_construct(self.target_engine)
        stmt = insert(self.target_table).on_conflict_do_nothing(index_elements=[PRIMARY_KEY])

        copied = 0
        batch: List[Dict[str, Any]] = []

        for row in self.iter_source_rows():
            batch.append(row)
            copied += 1

            if len(batch) >= self.batch_size:
                self._write_batch(stmt, batch)
                batch = []

        if batch:
            self._write_batch(stmt, batch)

        self.stats['rows_read'] += copied
        metrics.bulk_rows_loaded_total.labels(table_name=self.target_table.name).inc(copied)
        logger.info(f"Bulk copied {copied} records into {self.target_table.name}")

        self.stats['next_sequence_value'] = self.resync_sequence()
        return copied

    def _write_batch(self, stmt, batch: List[Dict[str, Any]]) -> None:
        # A failed batch is logged and skipped; the rows it carried are
        # repaired only by a later bulk load or by change events.
        try:
            with self.target_engine.begin() as conn:
                conn.execute(stmt, batch)
            self.stats['batches_written'] += 1
        except SQLAlchemyError as e:
            self.stats['batches_failed'] += 1
            metrics.bulk_batch_failures_total.labels(table_name=self.target_table.name).inc()
            logger.error(
                f"Failed to execute batch of {len(batch)} rows "
                f"(ids {batch[0].get(PRIMARY_KEY)}..{batch[-1].get(PRIMARY_KEY)}): {e}"
            )

    def resync_sequence(self) -> Optional[int]:
        """
        Point the target's id sequence at max(id) + 1.

        Only PostgreSQL targets have a sequence; other dialects are skipped.

        Returns:
            Optional[int]: the next value the sequence will hand out, or None
        """
        if self.target_engine.dialect.name != 'postgresql':
            logger.debug(f"Skipping sequence resync on {self.target_engine.dialect.name} target")
            return None

        pk = self.target_table.c[PRIMARY_KEY]
        try:
            with self.target_engine.begin() as conn:
                max_id = conn.execute(select(func.coalesce(func.max(pk), 0))).scalar()
                if not max_id:
                    return None

                sequence_name = conn.execute(SERIAL_SEQUENCE_SQL, {
                    'table_name': self.target_table.fullname,
                    'column_name': PRIMARY_KEY,
                }).scalar()
                if sequence_name is None:
                    logger.warning(
                        f"No sequence owns {self.target_table.name}.{PRIMARY_KEY}; "
                        f"sequence resync skipped"
                    )
                    return None

                conn.execute(RESYNC_SEQUENCE_SQL, {
                    'sequence_name': sequence_name,
                    'next_value': max_id + 1,
                })
        except SQLAlchemyError as e:
            logger.warning(f"Could not update sequence for {self.target_table.name}: {e}")
            return None

        logger.info(f"Sequence for {self.target_table.name}.{PRIMARY_KEY} restarts at {max_id + 1}")
        return max_id + 1
