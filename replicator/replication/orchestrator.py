"""
Replication Orchestrator - Main entry point for a replication run.

Startup sequence, each step fatal on failure:
1. Connect to source and target
2. Ensure the target table (and dead-letter ledger, if configured)
3. Drop-and-recreate the replication slot
4. Bulk load existing rows
Then hand control to the poller until stopped.

The slot is created before the snapshot read, so a change committed between
the two is both copied by the bulk load and delivered by the slot; idempotent
apply absorbs the duplicate. The reverse order would lose it.
"""

import logging
from typing import Any, Dict, Optional

from django.utils import timezone
from sqlalchemy import MetaData
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from replicator.exceptions import ReplicationError
from replicator.logging_utils import cdc_logger, log_operation
from replicator.utils.config import get_replicator_config
from replicator.utils.database_utils import (
    DatabaseConnectionError,
    check_database_connection,
    effective_schema,
    get_database_engine,
)
from replicator.utils.table_creator import build_person_table, ensure_table_exists
from .apply_engine import ApplyEngine
from .bulk_loader import BulkLoader
from .dead_letter import DeadLetterLedger
from .health_monitor import check_replication_health
from .poller import Poller
from .slot_manager import SlotManager

logger = logging.getLogger(__name__)


class ReplicationOrchestrator:
    """
    Wires slot manager, bulk loader, apply engine and poller together for
    one source table.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        source_engine: Optional[Engine] = None,
        target_engine: Optional[Engine] = None,
    ):
        """
        Args:
            config: replicator configuration (defaults to settings.REPLICATOR_CONFIG)
            source_engine: pre-built source engine; built from config when omitted
            target_engine: pre-built target engine; built from config when omitted
        """
        self.config = config or get_replicator_config()
        self.slot_name = self.config['SLOT_NAME']
        self.table_name = self.config['TABLE_NAME']

        self.source_engine = source_engine
        self.target_engine = target_engine
        self._owned_engines = []

        self.schema_name = self.config.get('SCHEMA_NAME')

        # Source table is schema-qualified once the source engine is known
        self.source_table = None
        self.target_table = build_person_table(MetaData(), self.table_name)

        self.slot_manager: Optional[SlotManager] = None
        self.bulk_loader: Optional[BulkLoader] = None
        self.apply_engine: Optional[ApplyEngine] = None
        self.dead_letters: Optional[DeadLetterLedger] = None
        self.poller: Optional[Poller] = None

        self.started_at = None
        self.rows_bulk_loaded = None

    # ==========================================
    # Main Operations
    # ==========================================

    def start(self, skip_bulk_load: bool = False, max_ticks: Optional[int] = None) -> None:
        """
        Run the full startup sequence, then poll.

        Args:
            skip_bulk_load: go straight to polling after creating the slot
            max_ticks: stop after this many ticks (None: run until stopped)

        Raises:
            ReplicationError: on any fatal startup failure
        """
        self._log_info("=" * 60)
        self._log_info("STARTING CDC REPLICATION")
        self._log_info("=" * 60)
        self.started_at = timezone.now()

        try:
            self._log_info("STEP 1/4: Connecting to source and target databases...")
            self.connect()

            self._log_info("STEP 2/4: Ensuring target table exists...")
            self.prepare_target()
            self.build_components()

            self._log_info(f"STEP 3/4: Setting up replication slot ({self.config['DECODING_PLUGIN']})...")
            self.slot_manager.ensure_slot()

            if skip_bulk_load:
                self._log_info("STEP 4/4: Bulk load skipped")
            else:
                self._log_info("STEP 4/4: Starting bulk copy of existing data...")
                self.run_bulk_load()

        except ReplicationError as e:
            self._log_error(f"Replication aborted: {e}")
            raise

        self._log_info("Starting CDC (Change Data Capture)...")
        try:
            self.poller.run(max_ticks=max_ticks)
        except KeyboardInterrupt:
            self._log_info("Replication interrupted by user")

    def connect(self) -> None:
        """
        Build engines (unless injected) and verify both stores answer.

        Raises:
            DatabaseConnectionError: if either store is unreachable
        """
        timeout_ms = self.config.get('STATEMENT_TIMEOUT_MS')

        if self.source_engine is None:
            self.source_engine = get_database_engine(self.config['SOURCE'], statement_timeout_ms=timeout_ms)
            self._owned_engines.append(self.source_engine)
        if self.target_engine is None:
            self.target_engine = get_database_engine(self.config['TARGET'], statement_timeout_ms=timeout_ms)
            self._owned_engines.append(self.target_engine)

        for label, engine in (('source', self.source_engine), ('target', self.target_engine)):
            ok, error = check_database_connection(engine, label)
            if not ok:
                raise DatabaseConnectionError(f"Failed to connect to {label} database: {error}")

        self._log_info("✓ Connected to both databases")

    def prepare_target(self) -> None:
        """
        Raises:
            DatabaseOperationError: if the target table or ledger cannot be created
        """
        ensure_table_exists(self.target_engine, self.target_table)

        ledger_table = self.config.get('DEAD_LETTER_TABLE')
        if ledger_table:
            self.dead_letters = DeadLetterLedger(self.target_engine, ledger_table, self.slot_name)
            self.dead_letters.ensure()
            self._log_info(f"✓ Dead-letter ledger: {ledger_table}")

    def build_components(self) -> None:
        self.source_table = build_person_table(
            MetaData(), self.table_name, schema=effective_schema(self.source_engine, self.schema_name)
        )
        self.slot_manager = SlotManager(
            self.source_engine, self.slot_name, self.config['DECODING_PLUGIN']
        )
        self.bulk_loader = BulkLoader(
            self.source_engine,
            self.target_engine,
            self.source_table,
            self.target_table,
            batch_size=self.config['BULK_BATCH_SIZE'],
        )
        self.apply_engine = ApplyEngine(self.target_engine, self.target_table)
        self.poller = Poller(
            self.slot_manager,
            self.apply_engine,
            table_name=self.table_name,
            schema_name=self.schema_name,
            interval=self.config['TICK_INTERVAL_SECONDS'],
            dead_letters=self.dead_letters,
        )

    def run_bulk_load(self) -> int:
        with log_operation(cdc_logger, 'bulk_load', slot_name=self.slot_name, table_name=self.table_name):
            self.rows_bulk_loaded = self.bulk_loader.load_all()
        return self.rows_bulk_loaded

    def stop(self) -> None:
        if self.poller is not None:
            self.poller.stop()

    def replay_dead_letters(self) -> Dict[str, int]:
        """
        Re-apply records held in the dead-letter ledger.

        Raises:
            ReplicationError: if no ledger is configured
        """
        if not self.config.get('DEAD_LETTER_TABLE'):
            raise ReplicationError("No DEAD_LETTER_TABLE configured")

        if self.apply_engine is None:
            self.connect()
            self.prepare_target()
            self.build_components()

        return self.dead_letters.replay(self.apply_engine)

    def close(self) -> None:
        """Dispose engines this orchestrator created."""
        for engine in self._owned_engines:
            engine.dispose()
        self._owned_engines = []

    # ==========================================
    # Status
    # ==========================================

    def get_status(self) -> Dict[str, Any]:
        status = {
            'slot_name': self.slot_name,
            'table_name': self.table_name,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'rows_bulk_loaded': self.rows_bulk_loaded,
            'poller': self.poller.get_status() if self.poller else None,
            'apply': self.apply_engine.get_stats() if self.apply_engine else None,
            'dead_letters': None,
            'health': None,
        }

        if self.dead_letters is not None:
            try:
                status['dead_letters'] = self.dead_letters.count()
            except SQLAlchemyError as e:
                self._log_warning(f"Could not count dead letters: {e}")

        if self.source_engine is not None and self.target_engine is not None:
            status['health'] = check_replication_health(
                self.source_engine, self.target_engine, self.table_name, self.slot_manager,
                source_schema=effective_schema(self.source_engine, self.schema_name),
            )

        return status

    # ==========================================
    # Logging
    # ==========================================

    def _log_info(self, message: str):
        logger.info(f"[{self.slot_name}] {message}")

    def _log_warning(self, message: str):
        logger.warning(f"[{self.slot_name}] {message}")

    def _log_error(self, message: str):
        logger.error(f"[{self.slot_name}] {message}")
