"""
Runtime configuration for the POS sync engine.

Values come from the environment, optionally seeded from a local .env file.

Env vars:
  POS_API_BASE                   Remote POS API base URL (default: https://api.loyverse.com/v1.0)
  POS_API_TOKEN                  Bearer token sent to the remote POS API
  POS_DB_PATH                    SQLite DB path (default: pos_sync.db)
  POS_PAGE_LIMIT                 records per remote page, 1..250 (default: 250)
  POS_REQUEST_TIMEOUT            seconds per remote request (default: 30)
  SYNC_BATCH_SIZE                records written concurrently per batch (default: 50)
  SYNC_TICK_SECONDS              scheduler check period (default: 60)
  SYNC_DEFAULT_INTERVAL_MINUTES  interval used until settings are saved (default: 30)
  POS_LOG_LEVEL                  logging level name (default: INFO)
"""
import logging
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_string(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return trimmed string-valued env vars, normalizing empty strings to None."""
    raw = os.getenv(name, default)
    if raw is None:
        return default
    if isinstance(raw, str):
        clean = raw.strip()
        return clean if clean else default
    return raw


def _env_int(name: str, default: int) -> int:
    raw = _env_string(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env_string(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


POS_API_BASE = _env_string('POS_API_BASE', 'https://api.loyverse.com/v1.0')
POS_API_TOKEN = _env_string('POS_API_TOKEN')
POS_DB_PATH = _env_string('POS_DB_PATH', 'pos_sync.db')
POS_PAGE_LIMIT = _env_int('POS_PAGE_LIMIT', 250)
POS_REQUEST_TIMEOUT = _env_float('POS_REQUEST_TIMEOUT', 30.0)

SYNC_BATCH_SIZE = _env_int('SYNC_BATCH_SIZE', 50)
SYNC_TICK_SECONDS = _env_float('SYNC_TICK_SECONDS', 60.0)
SYNC_DEFAULT_INTERVAL_MINUTES = _env_int('SYNC_DEFAULT_INTERVAL_MINUTES', 30)

LOG_LEVEL_NAME = (_env_string('POS_LOG_LEVEL', 'INFO') or 'INFO').upper()
LOG_FORMAT = '[sync] %(asctime)s %(levelname)s %(name)s %(message)s'


def log_level() -> int:
    return getattr(logging, LOG_LEVEL_NAME, logging.INFO)


def configure_logging(level: Optional[int] = None) -> None:
    """Configure root logging for entrypoints (CLI, worker, server)."""
    logging.basicConfig(level=level if level is not None else log_level(), format=LOG_FORMAT)
    logging.getLogger('werkzeug').setLevel(level if level is not None else log_level())
