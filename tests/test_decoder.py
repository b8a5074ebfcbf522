"""
Tests for decoding wal2json format-version 2 records into ChangeEvents.
"""
import json
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from replicator.exceptions import DecodeError
from replicator.replication.decoder import base_type, coerce_value, decode, parse_timestamp
from replicator.replication.events import ChangeAction
from tests.helpers import change_record, person_row


class TestDecode:
    """Happy-path decoding"""

    def test_decode_insert(self):
        row = person_row(7, name='Ada', score=99)
        event = decode(change_record('I', row))

        assert event.action is ChangeAction.INSERT
        assert event.schema == 'public'
        assert event.table == 'person'
        assert event.qualified_table == 'public.person'
        assert event.identity == []
        assert event.column_values() == {
            'id': 7,
            'name': 'Ada',
            'uid': uuid.UUID(int=7),
            'score': 99,
            'created_at': datetime(2024, 1, 1, 12, 0, 0),
        }

    def test_decode_update_carries_identity(self):
        event = decode(change_record('U', person_row(8), identity_id=3))

        assert event.action is ChangeAction.UPDATE
        assert event.identity_values() == {'id': 3}
        assert event.key_value('id') == 3
        assert event.column_values()['id'] == 8

    def test_decode_delete_identity_only(self):
        event = decode(change_record('D', identity_id=5))

        assert event.action is ChangeAction.DELETE
        assert event.columns == []
        assert event.key_value('id') == 5

    def test_key_value_falls_back_to_columns(self):
        event = decode(change_record('U', person_row(4)))
        assert event.key_value('id') == 4

    def test_key_value_falls_back_when_identity_lacks_the_key(self):
        record = json.loads(change_record('U', person_row(4)))
        record['identity'] = [{'name': 'uid', 'type': 'uuid', 'value': str(uuid.UUID(int=4))}]

        event = decode(json.dumps(record))

        assert event.key_value('id') == 4
        assert event.key_value('uid') == uuid.UUID(int=4)

    def test_decode_accepts_bytes(self):
        raw = change_record('I', person_row(1)).encode('utf-8')
        assert decode(raw).column_values()['id'] == 1

    def test_commit_timestamp_is_parsed(self):
        event = decode(change_record('I', person_row(1)))
        assert event.timestamp == datetime(2024, 1, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)

    def test_bad_commit_timestamp_does_not_reject_record(self):
        record = json.loads(change_record('I', person_row(1)))
        record['timestamp'] = 'yesterday'

        event = decode(json.dumps(record))

        assert event.timestamp is None
        assert event.column_values()['id'] == 1

    def test_columns_looked_up_by_name_not_position(self):
        record = json.loads(change_record('I', person_row(2)))
        record['columns'].reverse()

        event = decode(json.dumps(record))

        assert event.column_values()['id'] == 2
        assert event.column_values()['name'] == 'person-2'

    def test_unknown_type_passes_value_through(self):
        record = {
            'action': 'I', 'schema': 'public', 'table': 'person',
            'columns': [{'name': 'tags', 'type': 'jsonb', 'value': '{"a": 1}'}],
        }
        assert decode(json.dumps(record)).column_values() == {'tags': '{"a": 1}'}

    def test_null_values_stay_none(self):
        record = {
            'action': 'I', 'schema': 'public', 'table': 'person',
            'columns': [{'name': 'created_at', 'type': 'timestamp', 'value': None}],
        }
        assert decode(json.dumps(record)).column_values() == {'created_at': None}


class TestDecodeRejections:
    """Every malformed record raises DecodeError, never anything else"""

    @pytest.mark.parametrize('raw', [
        '{not json',
        '',
        '[1, 2, 3]',
        '"just a string"',
    ])
    def test_rejects_invalid_documents(self, raw):
        with pytest.raises(DecodeError):
            decode(raw)

    def test_rejects_invalid_utf8(self):
        with pytest.raises(DecodeError):
            decode(b'\xff\xfe{"action": "I"}')

    def test_rejects_missing_action(self):
        with pytest.raises(DecodeError, match="no 'action'"):
            decode(json.dumps({'schema': 'public', 'table': 'person'}))

    @pytest.mark.parametrize('action', ['B', 'C', 'M', 'T', 'X'])
    def test_rejects_unsupported_actions(self, action):
        with pytest.raises(DecodeError, match='Unsupported change action'):
            decode(json.dumps({'action': action, 'schema': 'public', 'table': 'person'}))

    def test_rejects_missing_table(self):
        with pytest.raises(DecodeError):
            decode(json.dumps({'action': 'I', 'schema': 'public'}))

    def test_rejects_non_list_columns(self):
        with pytest.raises(DecodeError, match="'columns' must be a list"):
            decode(json.dumps({'action': 'I', 'schema': 'public', 'table': 'person', 'columns': {}}))

    def test_rejects_column_without_name(self):
        record = {'action': 'I', 'schema': 'public', 'table': 'person',
                  'columns': [{'type': 'integer', 'value': 1}]}
        with pytest.raises(DecodeError):
            decode(json.dumps(record))

    def test_rejects_uncoercible_value(self):
        record = {'action': 'I', 'schema': 'public', 'table': 'person',
                  'columns': [{'name': 'id', 'type': 'integer', 'value': 'seven'}]}
        with pytest.raises(DecodeError, match='Cannot convert columns.id'):
            decode(json.dumps(record))

    def test_error_keeps_raw_record(self):
        with pytest.raises(DecodeError) as exc_info:
            decode('{broken')
        assert exc_info.value.raw == '{broken'


class TestCoercion:
    def test_base_type_strips_modifiers(self):
        assert base_type('character varying(100)') == 'character varying'
        assert base_type('NUMERIC(10, 2)') == 'numeric'
        assert base_type('timestamp(3) with time zone') == 'timestamp with time zone'

    @pytest.mark.parametrize('type_name, value, expected', [
        ('integer', 5, 5),
        ('bigint', 5.0, 5),
        ('text', 12, '12'),
        ('character varying(100)', 'abc', 'abc'),
        ('boolean', True, True),
        ('boolean', 'f', False),
        ('double precision', 1, 1.0),
        ('numeric(10,2)', '12.50', Decimal('12.50')),
        ('date', '2024-02-29', date(2024, 2, 29)),
        ('uuid', '00000000-0000-0000-0000-000000000001', uuid.UUID(int=1)),
    ])
    def test_coerce_value(self, type_name, value, expected):
        assert coerce_value(type_name, value) == expected

    def test_integer_rejects_fraction(self):
        with pytest.raises(ValueError):
            coerce_value('integer', 1.5)

    def test_integer_rejects_boolean(self):
        with pytest.raises(TypeError):
            coerce_value('integer', True)

    def test_parse_timestamp_short_offset_and_trimmed_fraction(self):
        parsed = parse_timestamp('2024-03-01 08:30:15.5-05')
        assert parsed == datetime(2024, 3, 1, 8, 30, 15, 500000,
                                  tzinfo=timezone(timedelta(hours=-5)))

    def test_parse_timestamp_without_offset(self):
        assert parse_timestamp('2024-03-01 08:30:15') == datetime(2024, 3, 1, 8, 30, 15)
