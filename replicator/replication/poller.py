"""
Steady-state replication loop.

Every tick drains the slot (destructive read), then decodes, filters and
applies each record in the order the source emitted them. Ticks never run
concurrently: a tick that outlasts the interval delays the next one.

Failures inside a tick never escape it. A record that fails to decode or
apply is logged, counted and dropped (or written to the dead-letter ledger
when one is configured); the slot has already released it, so without a
ledger it is lost.

SIGINT and SIGTERM are turned into stop(): the tick in progress finishes
applying the batch it has already consumed before the loop exits.
"""

import logging
import signal
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from django.utils import timezone

from replicator import metrics
from replicator.exceptions import ApplyError, DecodeError, SlotError
from replicator.logging_utils import log_replication_event, log_tick_summary
from .apply_engine import ApplyEngine, describe_event
from .dead_letter import DeadLetterLedger
from .decoder import decode
from .events import ChangeEvent
from .slot_manager import SlotManager

logger = logging.getLogger(__name__)


@dataclass
class TickStats:
    received: int = 0
    applied: int = 0
    skipped: int = 0
    decode_errors: int = 0
    apply_errors: int = 0
    consume_failed: bool = False
    duration: float = 0.0
    started_at: Optional[datetime] = field(default=None)


class Poller:
    DEFAULT_INTERVAL_SECONDS = 2.0

    def __init__(
        self,
        slot_manager: SlotManager,
        apply_engine: ApplyEngine,
        table_name: str,
        schema_name: Optional[str] = None,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        dead_letters: Optional[DeadLetterLedger] = None,
    ):
        """
        Args:
            slot_manager: owner of the slot to drain
            apply_engine: applies events for `table_name`
            table_name: only events for this table are applied
            schema_name: when set, events must also come from this schema
            interval: seconds between tick starts
            dead_letters: optional ledger for records that fail
        """
        self.slot_manager = slot_manager
        self.apply_engine = apply_engine
        self.table_name = table_name
        self.schema_name = schema_name
        self.interval = interval
        self.dead_letters = dead_letters

        self.should_stop = False
        self.is_running = False
        self.last_tick: Optional[TickStats] = None

        self.stats = {
            'started_at': None,
            'ticks': 0,
            'changes_received': 0,
            'events_applied': 0,
            'events_skipped': 0,
            'decode_errors': 0,
            'apply_errors': 0,
            'tick_failures': 0,
            'last_change_at': None,
        }

    @property
    def slot_name(self) -> str:
        return self.slot_manager.slot_name

    def tick(self) -> TickStats:
        """Run one drain-decode-apply pass and return its statistics."""
        tick_stats = TickStats(started_at=timezone.now())
        started = time.monotonic()

        try:
            records = self.slot_manager.consume_pending_changes()
        except SlotError as e:
            tick_stats.consume_failed = True
            tick_stats.duration = time.monotonic() - started
            self.stats['tick_failures'] += 1
            metrics.tick_failures_total.labels(slot_name=self.slot_name).inc()
            logger.error(f"[{self.slot_name}] {e}")
            self._finish_tick(tick_stats)
            return tick_stats

        metrics.changes_received_total.labels(slot_name=self.slot_name).inc(len(records))

        for raw in records:
            tick_stats.received += 1
            self._process_record(raw, tick_stats)

        tick_stats.duration = time.monotonic() - started
        self._finish_tick(tick_stats)
        return tick_stats

    def _process_record(self, raw, tick_stats: TickStats) -> None:
        try:
            event = decode(raw)
        except DecodeError as e:
            tick_stats.decode_errors += 1
            metrics.decode_errors_total.labels(slot_name=self.slot_name).inc()
            logger.warning(f"[{self.slot_name}] Failed to parse change JSON: {e}")
            self._dead_letter(raw, DeadLetterLedger.STAGE_DECODE, e)
            return

        if not self._is_replicated_table(event):
            tick_stats.skipped += 1
            logger.debug(f"[{self.slot_name}] Skipping change for {event.qualified_table}")
            return

        try:
            self.apply_engine.apply(event)
        except ApplyError as e:
            tick_stats.apply_errors += 1
            metrics.apply_errors_total.labels(
                table_name=self.table_name, operation=event.action.label
            ).inc()
            logger.error(f"[{self.slot_name}] Failed to apply {describe_event(event)}: {e}")
            self._dead_letter(raw, DeadLetterLedger.STAGE_APPLY, e)
            return

        tick_stats.applied += 1
        metrics.events_applied_total.labels(
            table_name=self.table_name, operation=event.action.label
        ).inc()
        log_replication_event(
            self.slot_name, event.qualified_table, event.action.label,
            primary_key=event.key_value(self.apply_engine.primary_key),
        )

    def _is_replicated_table(self, event: ChangeEvent) -> bool:
        if event.table != self.table_name:
            return False
        return self.schema_name is None or event.schema == self.schema_name

    def _dead_letter(self, raw, stage: str, error: Exception) -> None:
        if self.dead_letters is None:
            return
        self.dead_letters.record(raw, stage, error)

    def _finish_tick(self, tick_stats: TickStats) -> None:
        self.last_tick = tick_stats
        self.stats['ticks'] += 1
        self.stats['changes_received'] += tick_stats.received
        self.stats['events_applied'] += tick_stats.applied
        self.stats['events_skipped'] += tick_stats.skipped
        self.stats['decode_errors'] += tick_stats.decode_errors
        self.stats['apply_errors'] += tick_stats.apply_errors
        if tick_stats.received:
            self.stats['last_change_at'] = tick_stats.started_at

        metrics.tick_duration.labels(slot_name=self.slot_name).observe(tick_stats.duration)
        log_tick_summary(self.slot_name, tick_stats)

    def run(self, max_ticks: Optional[int] = None) -> None:
        """
        Tick every `interval` seconds until stop() is called or `max_ticks`
        ticks have run.
        """
        self.is_running = True
        self.should_stop = False
        self.stats['started_at'] = timezone.now()
        ticks = 0

        logger.info(f"[{self.slot_name}] Starting CDC polling every {self.interval}s")

        previous_handlers = self._install_signal_handlers()
        try:
            while not self.should_stop:
                next_tick_at = time.monotonic() + self.interval
                self.tick()
                ticks += 1

                if max_ticks is not None and ticks >= max_ticks:
                    break

                delay = next_tick_at - time.monotonic()
                if delay > 0:
                    time.sleep(delay)
        finally:
            self._restore_signal_handlers(previous_handlers)
            self.is_running = False
            logger.info(f"[{self.slot_name}] Polling stopped after {ticks} ticks")

    def stop(self, signum=None, frame=None) -> None:
        """Ask the loop to exit after the current tick (also the SIGINT/SIGTERM handler)."""
        logger.info(f"[{self.slot_name}] Stop signal received")
        self.should_stop = True

    def _install_signal_handlers(self):
        # signal.signal only works in the main thread
        if threading.current_thread() is not threading.main_thread():
            return {}

        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.getsignal(signum)
            signal.signal(signum, self.stop)
        return previous

    def _restore_signal_handlers(self, previous):
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)

    def get_status(self):
        started_at = self.stats['started_at']
        last_change_at = self.stats['last_change_at']
        return {
            'is_running': self.is_running,
            'slot_name': self.slot_name,
            'table_name': self.table_name,
            'stats': {
                **self.stats,
                'started_at': started_at.isoformat() if started_at else None,
                'last_change_at': last_change_at.isoformat() if last_change_at else None,
            },
        }
