"""
Prometheus metrics for CDC replication monitoring
"""
from prometheus_client import Counter, Histogram, Gauge

# ====================================
# CHANGE STREAM METRICS
# ====================================
changes_received_total = Counter(
    'replicator_changes_received_total',
    'Raw change records consumed from the replication slot',
    ['slot_name']
)

events_applied_total = Counter(
    'replicator_events_applied_total',
    'Change events applied to the target table',
    ['table_name', 'operation']  # operation: insert/update/delete
)

decode_errors_total = Counter(
    'replicator_decode_errors_total',
    'Change records that could not be decoded',
    ['slot_name']
)

apply_errors_total = Counter(
    'replicator_apply_errors_total',
    'Change events that failed to apply',
    ['table_name', 'operation']
)

dead_letters_total = Counter(
    'replicator_dead_letters_total',
    'Records written to the dead-letter ledger',
    ['stage']  # stage: decode/apply
)

tick_duration = Histogram(
    'replicator_tick_duration_seconds',
    'Time taken by one poll tick',
    ['slot_name'],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf"))
)

tick_failures_total = Counter(
    'replicator_tick_failures_total',
    'Ticks whose slot consumption call failed',
    ['slot_name']
)

# ====================================
# BULK LOAD METRICS
# ====================================
bulk_rows_loaded_total = Counter(
    'replicator_bulk_rows_loaded_total',
    'Rows read from the source during bulk load',
    ['table_name']
)

bulk_batch_failures_total = Counter(
    'replicator_bulk_batch_failures_total',
    'Bulk load batches that failed to write',
    ['table_name']
)

# ====================================
# HEALTH METRICS
# ====================================
table_row_count = Gauge(
    'replicator_table_row_count',
    'Row count observed by the health monitor',
    ['table_name', 'side']  # side: source/target
)
