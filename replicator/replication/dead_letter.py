"""
Dead-letter ledger for change records that failed to decode or apply.

pg_logical_slot_get_changes releases records as it returns them, so a record
that fails downstream is gone from the slot. When a ledger table is
configured, the raw record is kept on the target together with the failure,
and replay() re-runs decode + apply, deleting each entry once it succeeds.
Without a ledger those records are lost to the pipeline.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import MetaData, Table, Column, Integer, String, Text, DateTime, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from replicator import metrics
from replicator.exceptions import ApplyError, DecodeError
from replicator.utils.table_creator import ensure_table_exists
from .decoder import decode

logger = logging.getLogger(__name__)


class DeadLetterLedger:
    STAGE_DECODE = 'decode'
    STAGE_APPLY = 'apply'

    def __init__(self, engine: Engine, table_name: str, slot_name: str = ''):
        self.engine = engine
        self.slot_name = slot_name
        self.metadata = MetaData()
        self.table = Table(
            table_name,
            self.metadata,
            Column('id', Integer, primary_key=True, autoincrement=True),
            Column('slot_name', String(63)),
            Column('stage', String(16), nullable=False),
            Column('raw_record', Text, nullable=False),
            Column('error_message', Text),
            Column('recorded_at', DateTime, server_default=func.now()),
        )

    def ensure(self) -> None:
        """Create the ledger table if needed (DatabaseOperationError on failure)."""
        ensure_table_exists(self.engine, self.table)

    def record(self, raw: Any, stage: str, error: Exception) -> bool:
        """
        Persist one failed record.

        Returns:
            bool: False when the ledger itself could not be written; the
                record is then lost like it would be without a ledger
        """
        if isinstance(raw, (bytes, bytearray, memoryview)):
            raw = bytes(raw).decode('utf-8', errors='replace')

        try:
            with self.engine.begin() as conn:
                conn.execute(self.table.insert().values(
                    slot_name=self.slot_name,
                    stage=stage,
                    raw_record=str(raw),
                    error_message=str(error),
                ))
        except SQLAlchemyError as e:
            logger.error(f"[{self.slot_name}] Failed to write dead letter ({stage}): {e}")
            return False

        metrics.dead_letters_total.labels(stage=stage).inc()
        return True

    def entries(self) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            result = conn.execute(select(self.table).order_by(self.table.c.id))
            return [dict(row._mapping) for row in result]

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(self.table)).scalar() or 0

    def replay(self, apply_engine) -> Dict[str, int]:
        """
        Re-run decode + apply for every ledger entry in insertion order.

        Entries that succeed are deleted; entries that fail again keep their
        row with the new error message.
        """
        summary = {'replayed': 0, 'failed': 0}

        for entry in self.entries():
            try:
                event = decode(entry['raw_record'])
                apply_engine.apply(event)
            except (DecodeError, ApplyError) as e:
                summary['failed'] += 1
                with self.engine.begin() as conn:
                    conn.execute(
                        self.table.update()
                        .where(self.table.c.id == entry['id'])
                        .values(error_message=str(e))
                    )
                continue

            with self.engine.begin() as conn:
                conn.execute(self.table.delete().where(self.table.c.id == entry['id']))
            summary['replayed'] += 1

        logger.info(
            f"[{self.slot_name}] Dead-letter replay: {summary['replayed']} replayed, "
            f"{summary['failed']} still failing"
        )
        return summary
