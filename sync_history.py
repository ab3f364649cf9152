"""
Sync history ledger, latest-receipt marker and stock adjustment log.

History entries are append-only: one document per sync attempt per entity
type, keyed `{type}-{epoch_millis}` and never rewritten. The scheduler reads
them to find the last successful sync.
"""
import logging
import time
from typing import Any, Dict, List, Optional

from sync_store import DocumentStore, iso_now

logger = logging.getLogger(__name__)

HISTORY_COLLECTION = "sync_history"
MARKERS_COLLECTION = "sync_markers"
LATEST_RECEIPT_SYNC_ID = "latest_receipt_sync"
STOCK_HISTORY_COLLECTION = "stock_history"

STOCK_SYNC_REASON = "Stock sync from POS"


def _newest_first(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(entries, key=lambda e: (e.get("timestamp") or "", e.get("key") or ""), reverse=True)


class HistoryLedger:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def record(
        self,
        entity_type: str,
        success: bool,
        count: int = 0,
        error: Optional[str] = None,
        is_scheduled: bool = False,
        timestamp: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Append one history entry; never overwrites an existing key."""
        entry = {
            "type": entity_type,
            "success": bool(success),
            "count": int(count or 0),
            "error": error or None,
            "timestamp": timestamp or iso_now(),
            "is_scheduled": bool(is_scheduled),
        }
        millis = int(time.time() * 1000)
        key = f"{entity_type}-{millis}"
        suffix = 0
        while True:
            entry["key"] = key
            if await self.store.add(HISTORY_COLLECTION, key, entry):
                break
            suffix += 1
            key = f"{entity_type}-{millis}-{suffix}"
        logger.debug("History %s: success=%s count=%s", key, entry["success"], entry["count"])
        return entry

    async def recent(self, limit: Optional[int] = 20, entity_type: Optional[str] = None) -> List[Dict[str, Any]]:
        entries = await self.store.get_all(HISTORY_COLLECTION)
        if entity_type:
            entries = [e for e in entries if e.get("type") == entity_type]
        entries = _newest_first(entries)
        return entries[:limit] if limit else entries

    async def last_success(self, entity_type: Optional[str] = None) -> Optional[Dict[str, Any]]:
        for entry in await self.recent(limit=None, entity_type=entity_type):
            if entry.get("success"):
                return entry
        return None

    async def last_by_type(self, entity_types) -> Dict[str, Optional[Dict[str, Any]]]:
        entries = await self.recent(limit=None)
        out: Dict[str, Optional[Dict[str, Any]]] = {name: None for name in entity_types}
        for entry in entries:
            name = entry.get("type")
            if name in out and out[name] is None:
                out[name] = entry
        return out

    async def latest_receipt_sync(self) -> Optional[Dict[str, Any]]:
        return await self.store.get(MARKERS_COLLECTION, LATEST_RECEIPT_SYNC_ID)

    async def set_latest_receipt_sync(self, marker: Dict[str, Any]):
        await self.store.put(MARKERS_COLLECTION, LATEST_RECEIPT_SYNC_ID, marker)

    async def log_stock_adjustment(
        self,
        product: Dict[str, Any],
        previous_stock: float,
        new_stock: float,
        reason: str = STOCK_SYNC_REASON,
        reference_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        now = iso_now()
        millis = int(time.time() * 1000)
        entry = {
            "product_id": product.get("id"),
            "product_name": product.get("name") or "",
            "product_sku": product.get("sku") or "",
            "type": "adjustment",
            "quantity": new_stock - previous_stock,
            "previous_stock": previous_stock,
            "new_stock": new_stock,
            "reason": reason,
            "reference_id": reference_id or f"pos-sync-{millis}",
            "user_id": "system",
            "user_name": "Auto Sync",
            "created_at": now,
        }
        key = f"{entry['product_id']}-{millis}"
        suffix = 0
        while not await self.store.add(STOCK_HISTORY_COLLECTION, key, entry):
            suffix += 1
            key = f"{entry['product_id']}-{millis}-{suffix}"
        return entry

    async def stock_history(self, product_id: Optional[str] = None, limit: Optional[int] = 50) -> List[Dict[str, Any]]:
        entries = await self.store.get_all(STOCK_HISTORY_COLLECTION)
        if product_id:
            entries = [e for e in entries if e.get("product_id") == product_id]
        entries.sort(key=lambda e: e.get("created_at") or "", reverse=True)
        return entries[:limit] if limit else entries
