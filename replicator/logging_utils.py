"""
Logging utility functions for structured logging
"""
import logging
import time
from contextlib import contextmanager

# Get loggers for different parts of the application
cdc_logger = logging.getLogger('replicator.cdc')
db_logger = logging.getLogger('replicator.database')


def log_with_context(logger, level, message, **context):
    """
    Log a message with additional context fields

    Args:
        logger: The logger instance to use
        level: Log level (INFO, ERROR, WARNING, etc.)
        message: The log message
        **context: Additional context fields (slot_name, table_name, etc.)

    Example:
        log_with_context(
            cdc_logger,
            'INFO',
            'Replication slot created',
            slot_name='migration_slot',
            duration=0.2
        )
    """
    # Create a LogRecord with extra fields
    extra = {k: v for k, v in context.items() if v is not None}
    logger.log(getattr(logging, level.upper()), message, extra=extra)


@contextmanager
def log_operation(logger, operation_name, **context):
    """
    Context manager to log the start, end, and duration of an operation

    Example:
        with log_operation(cdc_logger, 'bulk_load', table_name='person'):
            loader.load_all()
    """
    start_time = time.time()

    log_with_context(
        logger,
        'INFO',
        f'{operation_name} started',
        operation=operation_name,
        **context
    )

    try:
        yield

        duration = time.time() - start_time
        log_with_context(
            logger,
            'INFO',
            f'{operation_name} completed successfully',
            operation=operation_name,
            duration=duration,
            status='success',
            **context
        )

    except Exception as e:
        duration = time.time() - start_time
        log_with_context(
            logger,
            'ERROR',
            f'{operation_name} failed: {str(e)}',
            operation=operation_name,
            duration=duration,
            status='failed',
            error_type=type(e).__name__,
            error_message=str(e),
            **context
        )
        raise


# ====================================
# CDC-SPECIFIC LOGGING FUNCTIONS
# ====================================

def log_replication_event(slot_name, table_name, operation, primary_key=None):
    """Log an applied change event"""
    log_with_context(
        cdc_logger,
        'DEBUG',
        f'Applied {operation} event (id={primary_key})',
        slot_name=slot_name,
        table_name=table_name,
        operation=operation,
        primary_key=primary_key,
    )


def log_tick_summary(slot_name, stats):
    """Log the outcome of one poll tick; quiet ticks go to DEBUG"""
    level = 'INFO' if stats.received else 'DEBUG'
    if stats.decode_errors or stats.apply_errors or stats.consume_failed:
        level = 'WARNING'

    log_with_context(
        cdc_logger,
        level,
        f'Tick processed {stats.applied}/{stats.received} changes '
        f'(skipped={stats.skipped}, decode_errors={stats.decode_errors}, '
        f'apply_errors={stats.apply_errors})',
        slot_name=slot_name,
        operation='poll_tick',
        duration=stats.duration,
        event_count=stats.received,
    )


def log_database_connection(database_type, label, status, duration=None, error=None):
    """Log database connection attempts"""
    level = 'INFO' if status == 'success' else 'ERROR'
    message = f'Database connection {status} ({label})'

    context = {
        'database_type': database_type,
        'database_label': label,
        'operation': 'db_connection_test',
        'status': status,
        'duration': duration
    }

    if error:
        context['error_type'] = type(error).__name__
        context['error_message'] = str(error)

    log_with_context(db_logger, level, message, **context)


# ====================================
# CELERY TASK LOGGING
# ====================================

def log_celery_task_start(task_name, task_id, **kwargs):
    """Log Celery task start"""
    log_with_context(
        logging.getLogger('celery'),
        'INFO',
        f'Celery task started: {task_name}',
        task_name=task_name,
        task_id=task_id,
        operation='task_start',
        **kwargs
    )


def log_celery_task_complete(task_name, task_id, duration, **kwargs):
    """Log Celery task completion"""
    log_with_context(
        logging.getLogger('celery'),
        'INFO',
        f'Celery task completed: {task_name}',
        task_name=task_name,
        task_id=task_id,
        operation='task_complete',
        duration=duration,
        status='success',
        **kwargs
    )


def log_celery_task_error(task_name, task_id, error, duration, **kwargs):
    """Log Celery task error"""
    log_with_context(
        logging.getLogger('celery'),
        'ERROR',
        f'Celery task failed: {task_name}',
        task_name=task_name,
        task_id=task_id,
        operation='task_error',
        duration=duration,
        status='failed',
        error_type=type(error).__name__,
        error_message=str(error),
        **kwargs
    )
