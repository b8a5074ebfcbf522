"""
Applies decoded change events to the target table, keyed by primary key.

Every event is one statement in its own transaction:
- INSERT: upsert, overwriting non-key columns on primary-key conflict, so a
  re-delivered insert converges instead of failing
- UPDATE: located by the old key in `identity`, set from `columns`
- DELETE: located by the old key in `identity`; deleting a missing row is a
  successful no-op
"""

import json
import logging
from typing import Any, Dict

from sqlalchemy import Table
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from replicator.exceptions import ApplyError
from replicator.utils.database_utils import DatabaseOperationError, get_insert_construct
from replicator.utils.table_creator import PRIMARY_KEY
from .events import ChangeAction, ChangeEvent

logger = logging.getLogger(__name__)


class ApplyEngine:
    def __init__(self, target_engine: Engine, target_table: Table, primary_key: str = PRIMARY_KEY):
        """
        Args:
            target_engine: SQLAlchemy engine for the target database
            target_table: table definition of the replicated table
            primary_key: name of the key column locating rows
        """
        self.target_engine = target_engine
        self.target_table = target_table
        self.primary_key = primary_key
        self.target_columns = {col.name for col in target_table.columns}

        self.stats = {
            'inserts': 0,
            'updates': 0,
            'deletes': 0,
            'missing_rows': 0,
            'errors': 0,
        }

    def apply(self, event: ChangeEvent) -> None:
        """
        Apply one change event.

        Raises:
            ApplyError: the event carries no primary key, or the target
                rejected the statement
        """
        try:
            if event.action is ChangeAction.INSERT:
                self.apply_insert(event)
            elif event.action is ChangeAction.UPDATE:
                self.apply_update(event)
            elif event.action is ChangeAction.DELETE:
                self.apply_delete(event)
            else:
                raise ApplyError(f"Unknown action {event.action!r}", event=event)
        except ApplyError:
            self.stats['errors'] += 1
            raise

    # -------------------------
    # Apply operations
    # -------------------------
    def apply_insert(self, event: ChangeEvent) -> None:
        values = self._map_columns(event.column_values())
        key = self._require_key(values.get(self.primary_key), event)

        insert = self._insert_construct(event)
        stmt = insert(self.target_table).values(**values)

        update_dict = {
            col: stmt.excluded[col]
            for col in values.keys()
            if col != self.primary_key
        }
        if update_dict:
            stmt = stmt.on_conflict_do_update(index_elements=[self.primary_key], set_=update_dict)
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=[self.primary_key])

        self._execute(stmt, event)
        self.stats['inserts'] += 1
        logger.debug(f"INSERT {self.target_table.name} id={key}")

    def apply_update(self, event: ChangeEvent) -> None:
        values = self._map_columns(event.column_values())
        # Old key from identity; new key (if the id itself changed) from columns
        located_key = self._require_key(event.key_value(self.primary_key), event)
        if not values:
            raise ApplyError(f"UPDATE on {event.qualified_table} carries no new values", event=event)

        stmt = (
            self.target_table.update()
            .where(self.target_table.c[self.primary_key] == located_key)
            .values(**values)
        )

        rowcount = self._execute(stmt, event)
        self.stats['updates'] += 1

        if rowcount == 0:
            self.stats['missing_rows'] += 1
            logger.warning(
                f"UPDATE matched no row in {self.target_table.name} for id={located_key}; "
                f"the row was never replicated or has been deleted"
            )
        else:
            logger.debug(f"UPDATE {self.target_table.name} id={located_key}")

    def apply_delete(self, event: ChangeEvent) -> None:
        located_key = self._require_key(event.key_value(self.primary_key), event)

        stmt = self.target_table.delete().where(self.target_table.c[self.primary_key] == located_key)

        rowcount = self._execute(stmt, event)
        self.stats['deletes'] += 1

        if rowcount == 0:
            logger.debug(f"DELETE {self.target_table.name} id={located_key}: row already absent")
        else:
            logger.debug(f"DELETE {self.target_table.name} id={located_key}")

    # -------------------------
    # Helpers
    # -------------------------
    def _map_columns(self, row_data: Dict[str, Any]) -> Dict[str, Any]:
        """Keep only columns the target table knows, matched by name."""
        mapped = {}
        skipped = []
        for name, value in row_data.items():
            if name in self.target_columns:
                mapped[name] = value
            else:
                skipped.append(name)

        if skipped:
            logger.debug(f"Skipping columns not in {self.target_table.name}: {skipped}")
        return mapped

    def _require_key(self, key: Any, event: ChangeEvent) -> Any:
        if key is None:
            raise ApplyError(
                f"{event.action.name} on {event.qualified_table} carries no "
                f"'{self.primary_key}' value",
                event=event,
            )
        return key

    def _insert_construct(self, event: ChangeEvent):
        try:
            return get_insert_construct(self.target_engine)
        except DatabaseOperationError as e:
            raise ApplyError(str(e), event=event) from e

    def _execute(self, stmt, event: ChangeEvent) -> int:
        try:
            with self.target_engine.begin() as conn:
                result = conn.execute(stmt)
                return result.rowcount
        except SQLAlchemyError as e:
            raise ApplyError(
                f"{event.action.name} failed on {self.target_table.name}: {e}",
                event=event,
            ) from e

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)


def describe_event(event: ChangeEvent) -> str:
    """Short JSON rendering of an event for log lines."""
    return json.dumps({
        'action': event.action.value,
        'table': event.qualified_table,
        'key': event.key_value(PRIMARY_KEY),
    }, default=str)
