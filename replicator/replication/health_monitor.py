"""
Health monitoring for the replication pipeline.

Compares source and target row counts and checks that the slot is still
present. Every check is best-effort: a failing count query is logged and
reported as None, never raised.
"""

import logging
from typing import Any, Dict, Optional

from celery import shared_task
from django.utils import timezone
from sqlalchemy.engine import Engine

from replicator import metrics
from replicator.exceptions import ReplicationError
from replicator.utils.config import get_replicator_config
from replicator.utils.database_utils import effective_schema, get_database_engine, get_row_count
from .slot_manager import SlotManager

logger = logging.getLogger(__name__)


def check_replication_health(
    source_engine: Engine,
    target_engine: Engine,
    table_name: str,
    slot_manager: Optional[SlotManager] = None,
    source_schema: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Check both stores once.

    `source_schema` qualifies the source table; the target table resolves
    through the target's search_path.

    Returns:
        Dict with source_rows, target_rows, row_difference, in_sync,
        slot_present (None when a check failed or was not requested) and
        checked_at
    """
    status = {
        'table_name': table_name,
        'source_rows': _safe_count(source_engine, table_name, 'source', source_schema),
        'target_rows': _safe_count(target_engine, table_name, 'target'),
        'slot_present': None,
        'checked_at': timezone.now().isoformat(),
    }

    if slot_manager is not None:
        try:
            status['slot_present'] = slot_manager.slot_exists()
        except ReplicationError as e:
            logger.warning(f"[{slot_manager.slot_name}] Could not check slot: {e}")

    if status['source_rows'] is not None and status['target_rows'] is not None:
        status['row_difference'] = status['source_rows'] - status['target_rows']
        status['in_sync'] = status['row_difference'] == 0
    else:
        status['row_difference'] = None
        status['in_sync'] = None

    return status


def _safe_count(engine: Engine, table_name: str, side: str, schema: Optional[str] = None) -> Optional[int]:
    try:
        count = get_row_count(engine, table_name, schema=schema)
    except ReplicationError as e:
        logger.warning(f"Could not count {side} rows for {table_name}: {e}")
        return None

    metrics.table_row_count.labels(table_name=table_name, side=side).set(count)
    return count


@shared_task(name='replicator.replication.monitor_replication_health')
def monitor_replication_health():
    """
    Periodic (Celery Beat) report of replication health.

    Source rows grow continuously under write load, so a small positive
    row_difference between ticks is expected; a slot that has disappeared
    is not.
    """
    config = get_replicator_config()
    table_name = config['TABLE_NAME']

    source_engine = get_database_engine(config['SOURCE'], pool_size=1)
    target_engine = get_database_engine(config['TARGET'], pool_size=1)
    try:
        status = check_replication_health(
            source_engine,
            target_engine,
            table_name,
            SlotManager(source_engine, config['SLOT_NAME'], config['DECODING_PLUGIN']),
            source_schema=effective_schema(source_engine, config.get('SCHEMA_NAME')),
        )
    finally:
        source_engine.dispose()
        target_engine.dispose()

    if status['slot_present'] is False:
        logger.error(f"[{config['SLOT_NAME']}] Replication slot is missing on the source")
    elif status['in_sync'] is False:
        logger.info(
            f"[{config['SLOT_NAME']}] {table_name}: source={status['source_rows']} "
            f"target={status['target_rows']} (difference {status['row_difference']})"
        )
    else:
        logger.info(f"[{config['SLOT_NAME']}] Health: {status}")

    return status
