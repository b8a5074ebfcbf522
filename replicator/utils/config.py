"""
Access to the REPLICATOR_CONFIG settings dict with defaults filled in
"""

import copy
from typing import Any, Dict

from django.conf import settings

DEFAULT_DB_CONFIG = {
    'DB_TYPE': 'postgresql',
    'HOST': 'localhost',
    'PORT': 5432,
    'USER': 'postgres',
    'PASSWORD': 'postgres',
    'NAME': 'testdb',
}

DEFAULT_REPLICATOR_CONFIG = {
    'SLOT_NAME': 'migration_slot',
    'DECODING_PLUGIN': 'wal2json',
    'SCHEMA_NAME': 'public',
    'TABLE_NAME': 'person',
    'TICK_INTERVAL_SECONDS': 2.0,
    'BULK_BATCH_SIZE': 100,
    'STATEMENT_TIMEOUT_MS': 30000,
    'DEAD_LETTER_TABLE': None,
}


def get_replicator_config(overrides: Dict[str, Any] = None) -> Dict[str, Any]:
    """
    Build the effective replicator configuration.

    Values come from settings.REPLICATOR_CONFIG, then `overrides`, on top of
    the defaults above. SOURCE and TARGET are merged key by key so a partial
    override (e.g. only HOST) keeps the remaining connection parameters.

    Args:
        overrides: Optional dict applied last

    Returns:
        Dict: complete configuration
    """
    config = copy.deepcopy(DEFAULT_REPLICATOR_CONFIG)
    config['SOURCE'] = dict(DEFAULT_DB_CONFIG)
    config['TARGET'] = dict(DEFAULT_DB_CONFIG)

    for layer in (getattr(settings, 'REPLICATOR_CONFIG', None) or {}, overrides or {}):
        for key, value in layer.items():
            if key in ('SOURCE', 'TARGET'):
                config[key].update(value or {})
            else:
                config[key] = value

    return config
