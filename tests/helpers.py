"""
Builders for person rows and wal2json change records used across tests.
"""
import json
import uuid
from datetime import datetime

from sqlalchemy import select


def person_row(person_id, name=None, score=None, uid=None):
    return {
        'id': person_id,
        'name': name or f'person-{person_id}',
        'uid': uid or uuid.UUID(int=person_id),
        'score': person_id * 10 if score is None else score,
        'created_at': datetime(2024, 1, 1, 12, 0, 0),
    }


def wal2json_columns(row):
    """Render a person row the way wal2json format-version 2 does."""
    return [
        {'name': 'id', 'type': 'integer', 'value': row['id']},
        {'name': 'name', 'type': 'text', 'value': row['name']},
        {'name': 'uid', 'type': 'uuid', 'value': str(row['uid'])},
        {'name': 'score', 'type': 'integer', 'value': row['score']},
        {'name': 'created_at', 'type': 'timestamp without time zone',
         'value': row['created_at'].strftime('%Y-%m-%d %H:%M:%S')},
    ]


def change_record(action, row=None, identity_id=None, table='person', schema='public'):
    """Serialize one change record as the slot returns it."""
    record = {
        'action': action,
        'timestamp': '2024-01-01 12:00:00.123+00',
        'schema': schema,
        'table': table,
    }
    if row is not None:
        record['columns'] = wal2json_columns(row)
    if identity_id is not None:
        record['identity'] = [{'name': 'id', 'type': 'integer', 'value': identity_id}]
    return json.dumps(record)


def fetch_rows(engine, table):
    with engine.connect() as conn:
        result = conn.execute(select(table).order_by(table.c.id))
        return [dict(row._mapping) for row in result]
