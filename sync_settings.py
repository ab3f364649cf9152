# Scheduled-sync settings: one singleton document per deployment
import logging
from typing import Any, Dict

from sync_config import SYNC_DEFAULT_INTERVAL_MINUTES
from sync_store import DocumentStore, iso_now

logger = logging.getLogger(__name__)

SETTINGS_COLLECTION = "settings"
SETTINGS_DOC_ID = "sync_settings"

MIN_INTERVAL_MINUTES = 1
MAX_INTERVAL_MINUTES = 24 * 60


class SettingsError(ValueError):
    """Operator supplied settings that cannot be saved."""


def default_settings() -> Dict[str, Any]:
    return {
        "scheduled_sync_enabled": False,
        "interval_minutes": SYNC_DEFAULT_INTERVAL_MINUTES,
        "updated_at": None,
    }


def _coerce_enabled(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value in (1, "1", "true", "True", "yes", "on"):
        return True
    if value in (0, "0", "false", "False", "no", "off", None):
        return False
    raise SettingsError(f"scheduled_sync_enabled must be a boolean, got {value!r}")


def _coerce_interval(value: Any) -> int:
    if isinstance(value, bool):
        raise SettingsError("interval_minutes must be a whole number of minutes")
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        raise SettingsError(f"interval_minutes must be a whole number of minutes, got {value!r}")
    if minutes != float(value):
        raise SettingsError("interval_minutes must be a whole number of minutes")
    if not MIN_INTERVAL_MINUTES <= minutes <= MAX_INTERVAL_MINUTES:
        raise SettingsError(
            f"interval_minutes must be between {MIN_INTERVAL_MINUTES} and {MAX_INTERVAL_MINUTES}"
        )
    return minutes


async def load_settings(store: DocumentStore) -> Dict[str, Any]:
    """Stored settings merged over defaults; a missing document means scheduled sync is off."""
    settings = default_settings()
    stored = await store.get(SETTINGS_COLLECTION, SETTINGS_DOC_ID)
    if stored:
        if "scheduled_sync_enabled" in stored:
            settings["scheduled_sync_enabled"] = bool(stored["scheduled_sync_enabled"])
        if stored.get("interval_minutes"):
            settings["interval_minutes"] = int(stored["interval_minutes"])
        settings["updated_at"] = stored.get("updated_at")
    return settings


async def save_settings(store: DocumentStore, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and persist a partial update. Raises SettingsError on bad input."""
    current = await load_settings(store)
    if "scheduled_sync_enabled" in changes:
        current["scheduled_sync_enabled"] = _coerce_enabled(changes["scheduled_sync_enabled"])
    if "interval_minutes" in changes:
        current["interval_minutes"] = _coerce_interval(changes["interval_minutes"])
    current["updated_at"] = iso_now()
    await store.put(SETTINGS_COLLECTION, SETTINGS_DOC_ID, current)
    logger.info(
        "Saved sync settings (enabled=%s, interval=%s min)",
        current["scheduled_sync_enabled"], current["interval_minutes"],
    )
    return current
