"""
Celery configuration for the replicator project
"""
import os
from celery import Celery
from celery.schedules import crontab

# Set default Django settings
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'pgreplicator.settings')

app = Celery('pgreplicator')

# Load config from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks from all installed apps
app.autodiscover_tasks()

app.conf.beat_schedule = {
    # Source/target row counts and slot presence
    'monitor-replication-health': {
        'task': 'replicator.replication.monitor_replication_health',
        'schedule': crontab(minute='*/1'),
    },
}

app.conf.task_routes = {
    # The replication loop never returns; keep it off the default queue
    'replicator.tasks.run_replication': {'queue': 'replication'},
    'replicator.*': {'queue': 'celery'},
}
