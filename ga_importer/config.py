"""
Configuration for the Google Analytics importer.

Defaults are updated from an optional JSON file (GA_IMPORTER_CONFIG_PATH)
and then from environment variables.
"""
import os
import json
import socket
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/ga_importer.json'

# env var -> (config key, type)
ENV_OVERRIDES = {
    'DATABASE_URL': ('database_url', str),
    'GA_CREDENTIALS_JSON': ('credentials_json', str),
    'GA_IMPORTER_LOG_DIR': ('log_dir', str),
    'GA_IMPORTER_HOSTNAME': ('hostname', str),
    'GA_IMPORTER_PAGE_SIZE': ('page_size', int),
    'GA_IMPORTER_MAX_RETRIES': ('max_retries', int),
    'GA_IMPORTER_MAX_ROWS_REFERRERS': ('datatable_archiving_maximum_rows_referrers', int),
    'GA_IMPORTER_MAX_ROWS_SUBTABLE_REFERRERS': ('datatable_archiving_maximum_rows_subtable_referrers', int),
}

_config: Optional[Dict[str, Any]] = None


def default_config() -> Dict[str, Any]:
    return {
        'database_url': None,
        'credentials_json': None,
        'datatable_archiving_maximum_rows_referrers': 1000,
        'datatable_archiving_maximum_rows_subtable_referrers': 50,
        'log_dir': 'logs',
        'hostname': socket.gethostname(),
        'page_size': 10000,
        'max_retries': 3,
    }


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load importer configuration from file and environment.

    Args:
        config_path: JSON file to read. Defaults to GA_IMPORTER_CONFIG_PATH
                     or config/ga_importer.json.
    Returns:
        Configuration dict.
    """
    config = default_config()

    config_path = config_path or os.environ.get('GA_IMPORTER_CONFIG_PATH', DEFAULT_CONFIG_PATH)
    try:
        if os.path.exists(config_path):
            with open(config_path, 'r') as f:
                config.update(json.load(f))
    except (OSError, ValueError) as e:
        logger.warning(f"Error loading config from {config_path}: {e}")

    for env_name, (key, cast) in ENV_OVERRIDES.items():
        if env_name not in os.environ:
            continue
        try:
            config[key] = cast(os.environ[env_name])
        except ValueError:
            logger.warning(f"Ignoring invalid value for {env_name}: {os.environ[env_name]!r}")

    return config


def get_config() -> Dict[str, Any]:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config():
    global _config
    _config = None


def get_referrer_row_limits(config: Dict[str, Any]):
    """
    Row limits for referrer reports as (level zero, subtable).

    Pre-2.0 installs spelled the settings 'referers'; those still win when set.
    """
    max_rows = config.get('datatable_archiving_maximum_rows_referers')
    max_rows_subtable = config.get('datatable_archiving_maximum_rows_subtable_referers')
    if not max_rows:
        max_rows = config['datatable_archiving_maximum_rows_referrers']
        max_rows_subtable = config['datatable_archiving_maximum_rows_subtable_referrers']
    return int(max_rows), int(max_rows_subtable)


def get_import_log_file(id_site: int, config: Optional[Dict[str, Any]] = None) -> str:
    """Path of the per-site import log: <log_dir>/gaimportlog.<idSite>.<hostname>.log"""
    config = config or get_config()
    return os.path.join(config['log_dir'], f"gaimportlog.{id_site}.{config['hostname']}.log")
