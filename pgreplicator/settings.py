"""
Django settings for the pgreplicator project.

The replicator has no Django models; settings carry the connection
parameters for the source and target stores, logging and Celery.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'pgreplicator-insecure-dev-key')

DEBUG = os.environ.get('DJANGO_DEBUG', 'false').lower() == 'true'

ALLOWED_HOSTS = []

INSTALLED_APPS = [
    'replicator',
]

# The replicator talks to its stores through SQLAlchemy, not the Django ORM
DATABASES = {}

USE_TZ = True
TIME_ZONE = 'UTC'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value not in (None, '') else default


# ====================================
# REPLICATOR CONFIGURATION
# ====================================
REPLICATOR_CONFIG = {
    'SOURCE': {
        'DB_TYPE': os.environ.get('SOURCE_DB_TYPE', 'postgresql'),
        'HOST': os.environ.get('SOURCE_DB_HOST', 'localhost'),
        'PORT': _env_int('SOURCE_DB_PORT', 5429),
        'USER': os.environ.get('SOURCE_DB_USER', 'postgres'),
        'PASSWORD': os.environ.get('SOURCE_DB_PASSWORD', 'postgres'),
        'NAME': os.environ.get('SOURCE_DB_NAME', 'testdb'),
    },
    'TARGET': {
        'DB_TYPE': os.environ.get('TARGET_DB_TYPE', 'postgresql'),
        'HOST': os.environ.get('TARGET_DB_HOST', 'localhost'),
        'PORT': _env_int('TARGET_DB_PORT', 5431),
        'USER': os.environ.get('TARGET_DB_USER', 'postgres'),
        'PASSWORD': os.environ.get('TARGET_DB_PASSWORD', 'postgres'),
        'NAME': os.environ.get('TARGET_DB_NAME', 'testdb'),
    },
    'SLOT_NAME': os.environ.get('REPLICATOR_SLOT_NAME', 'migration_slot'),
    'DECODING_PLUGIN': os.environ.get('REPLICATOR_DECODING_PLUGIN', 'wal2json'),
    'SCHEMA_NAME': os.environ.get('REPLICATOR_SCHEMA_NAME', 'public'),
    'TABLE_NAME': os.environ.get('REPLICATOR_TABLE_NAME', 'person'),
    'TICK_INTERVAL_SECONDS': float(os.environ.get('REPLICATOR_TICK_INTERVAL', '2')),
    'BULK_BATCH_SIZE': _env_int('REPLICATOR_BULK_BATCH_SIZE', 100),
    'STATEMENT_TIMEOUT_MS': _env_int('REPLICATOR_STATEMENT_TIMEOUT_MS', 30000),
    # Name of a target-side table recording records that failed decode/apply
    'DEAD_LETTER_TABLE': os.environ.get('REPLICATOR_DEAD_LETTER_TABLE') or None,
}


# ====================================
# CELERY
# ====================================
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True


# ====================================
# LOGGING
# ====================================
LOG_LEVEL = os.environ.get('REPLICATOR_LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} [{levelname}] {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'replicator': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': True,
        },
        'celery': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'sqlalchemy.engine': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False,
        },
    },
}
