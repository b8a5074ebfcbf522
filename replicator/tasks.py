"""
Celery tasks for CDC replication
"""
import logging
import time

from celery import shared_task

from replicator.exceptions import ReplicationError
from replicator.logging_utils import (
    log_celery_task_complete,
    log_celery_task_error,
    log_celery_task_start,
)
from replicator.replication import ReplicationOrchestrator, monitor_replication_health

logger = logging.getLogger(__name__)

__all__ = ['run_replication', 'replay_dead_letters', 'monitor_replication_health']


@shared_task(bind=True, name='replicator.tasks.run_replication')
def run_replication(self, skip_bulk_load=False, max_ticks=None, overrides=None):
    """
    Task: run the full replication (slot setup, bulk load, poll loop)

    Runs until the worker is stopped unless `max_ticks` is given. Routed to
    the dedicated 'replication' queue since it occupies a worker process.
    """
    task_id = self.request.id
    start_time = time.time()
    log_celery_task_start('run_replication', task_id)

    orchestrator = ReplicationOrchestrator(_build_config(overrides))
    try:
        orchestrator.start(skip_bulk_load=skip_bulk_load, max_ticks=max_ticks)
        status = orchestrator.get_status()
    except ReplicationError as e:
        log_celery_task_error('run_replication', task_id, e, time.time() - start_time)
        return {'success': False, 'error': str(e)}
    finally:
        orchestrator.close()

    log_celery_task_complete('run_replication', task_id, time.time() - start_time)
    return {
        'success': True,
        'rows_bulk_loaded': status['rows_bulk_loaded'],
        'poller': status['poller'],
    }


@shared_task(bind=True, name='replicator.tasks.replay_dead_letters')
def replay_dead_letters(self, overrides=None):
    """Task: re-apply records held in the dead-letter ledger"""
    task_id = self.request.id
    start_time = time.time()
    log_celery_task_start('replay_dead_letters', task_id)

    orchestrator = ReplicationOrchestrator(_build_config(overrides))
    try:
        summary = orchestrator.replay_dead_letters()
    except ReplicationError as e:
        log_celery_task_error('replay_dead_letters', task_id, e, time.time() - start_time)
        return {'success': False, 'error': str(e)}
    finally:
        orchestrator.close()

    log_celery_task_complete('replay_dead_letters', task_id, time.time() - start_time, **summary)
    return {'success': True, **summary}


def _build_config(overrides):
    from replicator.utils import get_replicator_config
    return get_replicator_config(overrides)
