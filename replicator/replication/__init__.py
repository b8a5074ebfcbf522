"""
Replication module - manual CDC from a PostgreSQL logical replication slot.

- SlotManager: drop-and-recreate the wal2json slot, drain pending changes
- BulkLoader: initial snapshot copy, skip on primary-key conflict
- decode: wal2json format-version 2 record -> ChangeEvent
- ApplyEngine: idempotent insert/update/delete against the target
- Poller: fixed-interval drain -> decode -> filter -> apply loop
- ReplicationOrchestrator: startup sequence and lifecycle
"""

from .events import ChangeAction, ChangeEvent, Column
from .decoder import decode
from .slot_manager import SlotManager
from .bulk_loader import BulkLoader
from .apply_engine import ApplyEngine
from .dead_letter import DeadLetterLedger
from .poller import Poller, TickStats
from .health_monitor import check_replication_health, monitor_replication_health
from .orchestrator import ReplicationOrchestrator

__all__ = [
    'ChangeAction',
    'ChangeEvent',
    'Column',
    'decode',
    'SlotManager',
    'BulkLoader',
    'ApplyEngine',
    'DeadLetterLedger',
    'Poller',
    'TickStats',
    'check_replication_health',
    'monitor_replication_health',
    'ReplicationOrchestrator',
]
