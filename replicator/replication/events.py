"""
Typed change events decoded from the wal2json stream.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ChangeAction(Enum):
    """Row-level actions emitted by wal2json format-version 2."""
    INSERT = 'I'
    UPDATE = 'U'
    DELETE = 'D'

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Column:
    """One column of a change record.

    `type` is the source type tag as emitted by the decoding plugin
    (e.g. ``integer``, ``character varying(100)``); `value` has already
    been coerced to the matching Python scalar.
    """
    name: str
    type: str
    value: Any = None


@dataclass
class ChangeEvent:
    action: ChangeAction
    schema: str
    table: str
    columns: List[Column] = field(default_factory=list)
    identity: List[Column] = field(default_factory=list)
    timestamp: Optional[datetime] = None

    def column_values(self) -> Dict[str, Any]:
        """New-value data keyed by column name."""
        return {col.name: col.value for col in self.columns}

    def identity_values(self) -> Dict[str, Any]:
        """Old-key data keyed by column name."""
        return {col.name: col.value for col in self.identity}

    def key_value(self, name: str) -> Any:
        """Value of key column `name` that locates the existing row.

        `identity` carries the pre-change key for UPDATE and DELETE. When it
        lacks `name` (INSERT, REPLICA IDENTITY NOTHING, or an identity index
        on another column) the value comes from `columns`.
        """
        value = self.identity_values().get(name)
        if value is None:
            value = self.column_values().get(name)
        return value

    @property
    def qualified_table(self) -> str:
        return f"{self.schema}.{self.table}" if self.schema else self.table
