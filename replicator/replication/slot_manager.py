"""
Logical replication slot lifecycle on the source database.

The slot is the only checkpoint in the pipeline: PostgreSQL tracks what has
been consumed, and pg_logical_slot_get_changes both returns and releases
pending changes in the same call. A record handed out by
consume_pending_changes() is never delivered again.
"""

import logging
from typing import List

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from replicator.exceptions import SlotError
from replicator.logging_utils import cdc_logger, log_with_context

logger = logging.getLogger(__name__)

SLOT_EXISTS_SQL = text(
    "SELECT EXISTS (SELECT 1 FROM pg_replication_slots WHERE slot_name = :slot_name)"
)
DROP_SLOT_SQL = text("SELECT pg_drop_replication_slot(:slot_name)")
CREATE_SLOT_SQL = text(
    "SELECT slot_name, lsn FROM pg_create_logical_replication_slot(:slot_name, :plugin)"
)
# wal2json format-version 2 emits one JSON document per row change
GET_CHANGES_SQL = text(
    "SELECT data FROM pg_logical_slot_get_changes(:slot_name, NULL, NULL, "
    "'format-version', '2', "
    "'include-timestamp', 'true', "
    "'include-transaction', 'false')"
)


class SlotManager:
    """
    Owns one named logical replication slot on the source.

    The engine never resumes from a previous slot position: ensure_slot()
    drops any slot with the same name and creates a fresh one. Running two
    replicators against the same slot name is unsupported; the second start
    drops the slot out from under the first.
    """

    def __init__(self, source_engine: Engine, slot_name: str, plugin: str = 'wal2json'):
        self.source_engine = source_engine
        self.slot_name = slot_name
        self.plugin = plugin

    def slot_exists(self) -> bool:
        try:
            with self.source_engine.connect() as conn:
                return bool(conn.execute(SLOT_EXISTS_SQL, {'slot_name': self.slot_name}).scalar())
        except SQLAlchemyError as e:
            raise SlotError(f"Could not check if slot exists: {e}", self.slot_name) from e

    def drop_slot(self) -> None:
        try:
            with self.source_engine.begin() as conn:
                conn.execute(DROP_SLOT_SQL, {'slot_name': self.slot_name})
        except SQLAlchemyError as e:
            raise SlotError(f"Could not drop existing slot: {e}", self.slot_name) from e

        log_with_context(cdc_logger, 'INFO', f"Dropped replication slot: {self.slot_name}",
                         slot_name=self.slot_name, operation='slot_drop')

    def create_slot(self) -> None:
        try:
            with self.source_engine.begin() as conn:
                row = conn.execute(
                    CREATE_SLOT_SQL, {'slot_name': self.slot_name, 'plugin': self.plugin}
                ).fetchone()
        except SQLAlchemyError as e:
            raise SlotError(f"Could not create replication slot: {e}", self.slot_name) from e

        lsn = row[1] if row is not None else None
        log_with_context(cdc_logger, 'INFO',
                         f"Created replication slot: {self.slot_name} ({self.plugin}, lsn={lsn})",
                         slot_name=self.slot_name, operation='slot_create', lsn=lsn)

    def ensure_slot(self) -> None:
        """
        Drop-and-recreate the slot.

        Raises:
            SlotError: on any failure; callers treat it as fatal since no
                change stream exists without a slot
        """
        if self.slot_exists():
            logger.info(f"[{self.slot_name}] Slot already exists, dropping it before recreation")
            self.drop_slot()
        self.create_slot()

    def consume_pending_changes(self) -> List[str]:
        """
        Return every pending change record and release it from the slot.

        Records come back in source commit order. The read is destructive:
        once this returns, the slot will not hand the same records out again.

        Raises:
            SlotError: if the source call fails (nothing is consumed then)
        """
        try:
            with self.source_engine.begin() as conn:
                rows = conn.execute(GET_CHANGES_SQL, {'slot_name': self.slot_name}).fetchall()
        except SQLAlchemyError as e:
            raise SlotError(f"Failed to get changes: {e}", self.slot_name) from e

        return [row[0] for row in rows]
