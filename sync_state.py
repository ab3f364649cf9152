# Per-entity sync state: the only guard against overlapping runs of one entity type
from typing import Any, Dict, Optional

from pos_client import CATEGORIES, CUSTOMERS, ITEMS, RECEIPTS


STOCK = "stock"
SYNC_ENTITIES = (CATEGORIES, ITEMS, CUSTOMERS, RECEIPTS, STOCK)

IDLE = "idle"
FETCHING = "fetching"
WRITING = "writing"
_STATES = (IDLE, FETCHING, WRITING)


def _blank_progress() -> Dict[str, Any]:
    return {"current": 0, "total": 0, "percentage": 0, "status": ""}


class SyncStateStore:
    """Holds Idle/Fetching/Writing per entity type plus the latest progress.

    Mutated only from the event-loop thread; other threads only read
    snapshots.
    """

    def __init__(self, entities=SYNC_ENTITIES):
        self._states: Dict[str, str] = {name: IDLE for name in entities}
        self._progress: Dict[str, Dict[str, Any]] = {name: _blank_progress() for name in entities}
        self._last_results: Dict[str, Dict[str, Any]] = {}

    def state(self, entity: str) -> str:
        return self._states.get(entity, IDLE)

    def is_busy(self, entity: str) -> bool:
        return self.state(entity) != IDLE

    def any_busy(self) -> bool:
        return any(st != IDLE for st in self._states.values())

    def try_begin(self, entity: str) -> bool:
        """Move an idle entity to FETCHING. Returns False when it is already mid-sync."""
        if self.is_busy(entity):
            return False
        self._states[entity] = FETCHING
        self._progress[entity] = _blank_progress()
        return True

    def set_state(self, entity: str, state: str):
        if state not in _STATES:
            raise ValueError(f"unknown sync state {state!r}")
        self._states[entity] = state

    def finish(self, entity: str, result: Optional[Dict[str, Any]] = None):
        self._states[entity] = IDLE
        if result is not None:
            self._last_results[entity] = result

    def set_progress(self, entity: str, current: int = 0, total: int = 0, percentage: int = 0, status: str = ""):
        self._progress[entity] = {
            "current": current,
            "total": total,
            "percentage": max(0, min(100, int(percentage))),
            "status": status,
        }

    def progress(self, entity: str) -> Dict[str, Any]:
        return dict(self._progress.get(entity) or _blank_progress())

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        out = {}
        for name, state in list(self._states.items()):
            out[name] = {
                "state": state,
                "progress": self.progress(name),
                "last_result": self._last_results.get(name),
            }
        return out
