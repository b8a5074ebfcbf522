"""
Decoder for wal2json (format-version 2) change records.

Each record returned by pg_logical_slot_get_changes is one JSON document:

    {"action": "I", "timestamp": "...", "schema": "public", "table": "person",
     "columns": [{"name": "id", "type": "integer", "value": 1}, ...],
     "identity": [{"name": "id", "type": "integer", "value": 1}]}

Column values are coerced from their JSON representation into Python scalars
according to the source type tag, so the apply engine binds real ints, UUIDs
and datetimes rather than strings.
"""

import json
import logging
import re
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Union

from replicator.exceptions import DecodeError
from .events import ChangeAction, ChangeEvent, Column

logger = logging.getLogger(__name__)

INTEGER_TYPES = {
    'smallint', 'integer', 'bigint', 'int2', 'int4', 'int8',
    'smallserial', 'serial', 'bigserial',
}
TEXT_TYPES = {
    'text', 'character varying', 'varchar', 'character', 'char', 'bpchar',
    'name', 'citext',
}
FLOAT_TYPES = {'real', 'double precision', 'float4', 'float8'}
NUMERIC_TYPES = {'numeric', 'decimal'}
BOOLEAN_TYPES = {'boolean', 'bool'}
UUID_TYPES = {'uuid'}
TIMESTAMP_TYPES = {
    'timestamp', 'timestamp without time zone',
    'timestamptz', 'timestamp with time zone',
}
DATE_TYPES = {'date'}

_TYPE_MODIFIER = re.compile(r'\(.*?\)')
# PostgreSQL renders UTC offsets as "+00"; fromisoformat wants "+00:00"
_SHORT_OFFSET = re.compile(r'\d{2}:\d{2}(:\d{2}(\.\d+)?)?[+-]\d{2}$')
_FRACTION = re.compile(r'\.(\d+)')

RawRecord = Union[bytes, bytearray, memoryview, str]


def decode(raw: RawRecord) -> ChangeEvent:
    """
    Parse one wal2json change record into a ChangeEvent.

    Args:
        raw: the `data` column of pg_logical_slot_get_changes (text or bytes)

    Returns:
        ChangeEvent

    Raises:
        DecodeError: invalid JSON, missing/unsupported action, missing
            schema/table, malformed column entries or uncoercible values
    """
    if isinstance(raw, (bytes, bytearray, memoryview)):
        try:
            raw = bytes(raw).decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodeError(f"Change record is not valid UTF-8: {e}", raw=raw) from e

    try:
        document = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Invalid JSON in change record: {e}", raw=raw) from e

    if not isinstance(document, dict):
        raise DecodeError(f"Change record must be a JSON object, got {type(document).__name__}", raw=raw)

    action_code = document.get('action')
    if action_code is None:
        raise DecodeError("Change record has no 'action'", raw=raw)
    try:
        action = ChangeAction(action_code)
    except ValueError:
        raise DecodeError(f"Unsupported change action {action_code!r}", raw=raw) from None

    schema = document.get('schema')
    table = document.get('table')
    if not isinstance(schema, str) or not isinstance(table, str) or not table:
        raise DecodeError("Change record must name its 'schema' and 'table'", raw=raw)

    return ChangeEvent(
        action=action,
        schema=schema,
        table=table,
        columns=_decode_columns(document.get('columns'), 'columns', raw),
        identity=_decode_columns(document.get('identity'), 'identity', raw),
        timestamp=_decode_commit_timestamp(document.get('timestamp')),
    )


def _decode_columns(entries: Any, field_name: str, raw: RawRecord) -> List[Column]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise DecodeError(f"'{field_name}' must be a list", raw=raw)

    columns = []
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise DecodeError(f"'{field_name}[{position}]' must be an object", raw=raw)

        name = entry.get('name')
        type_name = entry.get('type')
        if not isinstance(name, str) or not name or not isinstance(type_name, str):
            raise DecodeError(f"'{field_name}[{position}]' needs string 'name' and 'type'", raw=raw)

        try:
            value = coerce_value(type_name, entry.get('value'))
        except (TypeError, ValueError, ArithmeticError) as e:
            raise DecodeError(
                f"Cannot convert {field_name}.{name}={entry.get('value')!r} to {type_name}: {e}",
                raw=raw,
            ) from e

        columns.append(Column(name=name, type=type_name, value=value))

    return columns


def base_type(type_name: str) -> str:
    """'character varying(100)' -> 'character varying'"""
    stripped = _TYPE_MODIFIER.sub('', type_name or '')
    return ' '.join(stripped.lower().split())


def coerce_value(type_name: str, value: Any) -> Any:
    """
    Convert a JSON scalar into the Python value for its source type.

    Unknown types pass through unchanged. Raises ValueError/TypeError when a
    value does not fit its declared type.
    """
    if value is None:
        return None

    kind = base_type(type_name)

    if kind in INTEGER_TYPES:
        if isinstance(value, bool):
            raise TypeError("boolean is not an integer")
        if isinstance(value, float) and not value.is_integer():
            raise ValueError("fractional value for integer column")
        return int(value)

    if kind in TEXT_TYPES:
        return value if isinstance(value, str) else str(value)

    if kind in UUID_TYPES:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))

    if kind in TIMESTAMP_TYPES:
        return parse_timestamp(value)

    if kind in DATE_TYPES:
        return value if isinstance(value, date) else date.fromisoformat(str(value))

    if kind in BOOLEAN_TYPES:
        if isinstance(value, bool):
            return value
        if str(value).lower() in ('t', 'true'):
            return True
        if str(value).lower() in ('f', 'false'):
            return False
        raise ValueError(f"not a boolean: {value!r}")

    if kind in FLOAT_TYPES:
        return float(value)

    if kind in NUMERIC_TYPES:
        try:
            return Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"not a number: {value!r}") from e

    return value


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    text_value = str(value).strip()
    if _SHORT_OFFSET.search(text_value):
        text_value += ':00'
    # PostgreSQL trims trailing zeros from fractional seconds
    text_value = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text_value, count=1)
    return datetime.fromisoformat(text_value)


def _decode_commit_timestamp(value: Any) -> Optional[datetime]:
    # Observability only: a bad commit timestamp does not reject the record
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparseable commit timestamp {value!r}")
        return None
