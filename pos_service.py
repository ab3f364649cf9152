#!/usr/bin/env python3
# POS sync service: batch writer + per-entity orchestration + CLI
import argparse
import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from pos_client import CATEGORIES, CUSTOMERS, INVENTORY, ITEMS, RECEIPTS, PosApiClient
from sync_config import POS_DB_PATH, SYNC_BATCH_SIZE, configure_logging
from sync_history import STOCK_SYNC_REASON, HistoryLedger
from sync_rules import INSERT, SKIP, classify_change, preserve_stock, significant_fields_for
from sync_state import STOCK, WRITING, SyncStateStore
from sync_store import DocumentStore, iso_now
from sync_transform import transform_all

logger = logging.getLogger(__name__)

# Local collection per synced entity type
COLLECTIONS = {
    CATEGORIES: "categories",
    ITEMS: "products",
    CUSTOMERS: "customers",
    RECEIPTS: "receipts",
}
ID_FIELDS = {
    RECEIPTS: "receipt_number",
}
# Synced by the scheduler and by "sync all"; receipts are left out for volume
CATALOG_CHAIN = (CATEGORIES, ITEMS, CUSTOMERS)

ProgressCallback = Callable[[str, Dict[str, Any]], None]


@dataclass
class SyncStats:
    new_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    total: int = 0


@dataclass
class SyncResult:
    entity: str
    success: bool
    count: int = 0
    new_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    total: int = 0
    error: Optional[str] = None
    timestamp: str = field(default_factory=iso_now)
    sync_type: str = "full"
    is_scheduled: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StockSyncResult(SyncResult):
    adjusted_count: int = 0
    unchanged_count: int = 0
    not_found_count: int = 0
    adjustments: List[Dict[str, Any]] = field(default_factory=list)


# ---------- BATCH WRITER ----------
def _dedupe(records: Iterable[Dict[str, Any]], id_field: str) -> List[Dict[str, Any]]:
    """Collapse repeated identifiers (last one wins), keeping first-seen order."""
    by_id: Dict[Any, Dict[str, Any]] = {}
    missing: List[Dict[str, Any]] = []
    for rec in records:
        key = rec.get(id_field)
        if key in (None, ""):
            missing.append(rec)
            continue
        if key in by_id:
            logger.warning("Duplicate %s=%s in incoming records; keeping the last one", id_field, key)
        by_id[key] = rec
    return list(by_id.values()) + missing


async def smart_sync(
    store: DocumentStore,
    collection: str,
    records: List[Dict[str, Any]],
    id_field: str = "id",
    preserve: bool = False,
    significant_fields: Optional[Iterable[str]] = None,
    batch_size: int = SYNC_BATCH_SIZE,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> SyncStats:
    """Write only new or changed records into `collection`.

    The local collection is read once into memory. Incoming records are written
    in batches: records of one batch run concurrently, batches run in order. A
    failed record is logged and left out of the new/updated/skipped counts.
    """
    incoming = _dedupe(records, id_field)
    stats = SyncStats(total=len(incoming))

    existing_docs = await store.get_all(collection)
    existing_map = {doc.get(id_field): doc for doc in existing_docs if doc.get(id_field) is not None}
    logger.debug("Loaded %d existing %s documents for comparison", len(existing_map), collection)

    async def _sync_one(doc: Dict[str, Any]) -> str:
        doc_id = doc.get(id_field)
        if doc_id in (None, ""):
            raise ValueError(f"record without {id_field}")
        existing = existing_map.get(doc_id)
        outcome = classify_change(existing, doc, significant_fields)
        if outcome == SKIP:
            return SKIP
        to_save = preserve_stock(existing, doc) if preserve else dict(doc)
        await store.put(collection, doc_id, to_save)
        return outcome

    size = max(1, int(batch_size or 1))
    for start in range(0, len(incoming), size):
        batch = incoming[start:start + size]
        outcomes = await asyncio.gather(*(_sync_one(doc) for doc in batch), return_exceptions=True)
        for doc, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                stats.failed_count += 1
                logger.error("Error syncing %s document %s: %s", collection, doc.get(id_field), outcome)
            elif outcome == INSERT:
                stats.new_count += 1
            elif outcome == SKIP:
                stats.skipped_count += 1
            else:
                stats.updated_count += 1
        done = min(start + size, len(incoming))
        logger.debug(
            "Processed batch %d of %s: new=%d updated=%d skipped=%d failed=%d",
            start // size + 1, collection, stats.new_count, stats.updated_count,
            stats.skipped_count, stats.failed_count,
        )
        if on_progress:
            on_progress(done, len(incoming))
    return stats


def aggregate_stock(levels: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Sum in_stock per variant across every store."""
    totals: Dict[str, float] = {}
    for level in levels:
        variant_id = level.get("variant_id")
        if not variant_id:
            continue
        totals[variant_id] = totals.get(variant_id, 0.0) + float(level.get("in_stock") or 0)
    return {vid: _tidy_quantity(qty) for vid, qty in totals.items()}


def _tidy_quantity(qty: float):
    return int(qty) if float(qty).is_integer() else round(qty, 3)


# ---------- ORCHESTRATION ----------
class SyncEngine:
    """One sync procedure per entity type, sharing fetch -> transform -> write -> history."""

    def __init__(
        self,
        client: PosApiClient,
        store: DocumentStore,
        state: Optional[SyncStateStore] = None,
        history: Optional[HistoryLedger] = None,
        batch_size: int = SYNC_BATCH_SIZE,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.client = client
        self.store = store
        self.state = state or SyncStateStore()
        self.history = history or HistoryLedger(store)
        self.batch_size = batch_size
        self.on_progress = on_progress

    def _progress(self, entity: str, current: int = 0, total: int = 0, percentage: float = 0, status: str = ""):
        self.state.set_progress(entity, current, total, int(round(percentage)), status)
        if self.on_progress:
            try:
                self.on_progress(entity, self.state.progress(entity))
            except Exception:
                logger.exception("Progress callback failed for %s", entity)

    async def _guarded(self, entity: str, runner: Callable[[], Any]) -> Optional[SyncResult]:
        if not self.state.try_begin(entity):
            logger.info("Skipping %s sync: already in progress", entity)
            return None
        result: Optional[SyncResult] = None
        try:
            result = await runner()
            return result
        finally:
            self.state.finish(entity, result.as_dict() if result else None)

    async def _record_history(self, result: SyncResult):
        # Stamped when the run ends; the scheduler measures its interval from here
        result.timestamp = iso_now()
        try:
            await self.history.record(
                result.entity,
                result.success,
                result.count,
                error=result.error,
                is_scheduled=result.is_scheduled,
                timestamp=result.timestamp,
            )
        except Exception:
            logger.exception("Error saving %s sync history", result.entity)

    async def _fail(self, result: SyncResult, exc: Exception) -> SyncResult:
        result.success = False
        result.error = str(exc) or exc.__class__.__name__
        result.count = 0
        if result.is_scheduled:
            logger.warning("Scheduled %s sync failed: %s", result.entity, result.error)
        else:
            logger.error("%s sync failed: %s", result.entity.capitalize(), result.error)
        await self._record_history(result)
        self._progress(result.entity, status=f"Sync failed: {result.error}")
        return result

    async def _sync_collection(
        self,
        entity: str,
        filters: Optional[Dict[str, Any]] = None,
        is_scheduled: bool = False,
        sync_type: str = "full",
    ) -> SyncResult:
        result = SyncResult(entity=entity, success=True, sync_type=sync_type, is_scheduled=is_scheduled)
        try:
            self._progress(entity, percentage=10, status="Fetching from POS...")
            raw = await self.client.fetch_all(
                entity,
                filters=filters,
                on_page=lambda n: self._progress(entity, n, n, 10, f"Fetching {entity}: {n} fetched..."),
            )
            total = len(raw)
            self._progress(entity, 0, total, 30, f"Transforming {total} {entity}...")
            records = transform_all(entity, raw)

            self.state.set_state(entity, WRITING)
            self._progress(entity, 0, total, 40, f"Syncing {total} {entity}...")
            stats = await smart_sync(
                self.store,
                COLLECTIONS[entity],
                records,
                id_field=ID_FIELDS.get(entity, "id"),
                preserve=(entity == ITEMS),
                significant_fields=significant_fields_for(entity),
                batch_size=self.batch_size,
                on_progress=lambda cur, tot: self._progress(
                    entity, cur, tot, 40 + (60 * cur / tot if tot else 60), f"Syncing {entity}: {cur}/{tot}"
                ),
            )
        except Exception as exc:
            return await self._fail(result, exc)

        result.new_count = stats.new_count
        result.updated_count = stats.updated_count
        result.skipped_count = stats.skipped_count
        result.failed_count = stats.failed_count
        result.total = stats.total
        result.count = stats.new_count + stats.updated_count
        logger.info(
            "%s sync complete: %d new, %d updated, %d skipped, %d failed",
            entity.capitalize(), stats.new_count, stats.updated_count, stats.skipped_count, stats.failed_count,
        )
        await self._record_history(result)
        self._progress(entity, stats.total, stats.total, 100, "Sync complete!")
        return result

    async def sync_categories(self, is_scheduled: bool = False) -> Optional[SyncResult]:
        return await self._guarded(
            CATEGORIES, lambda: self._sync_collection(CATEGORIES, {"show_deleted": False}, is_scheduled)
        )

    async def sync_items(self, is_scheduled: bool = False) -> Optional[SyncResult]:
        return await self._guarded(
            ITEMS, lambda: self._sync_collection(ITEMS, {"show_deleted": False}, is_scheduled)
        )

    async def sync_customers(self, is_scheduled: bool = False) -> Optional[SyncResult]:
        return await self._guarded(CUSTOMERS, lambda: self._sync_collection(CUSTOMERS, None, is_scheduled))

    async def sync_receipts(self, quick_sync: bool = False) -> Optional[SyncResult]:
        return await self._guarded(RECEIPTS, lambda: self._sync_receipts(quick_sync))

    async def _sync_receipts(self, quick_sync: bool) -> SyncResult:
        # Taken before the fetch so receipts created mid-run are picked up next time
        started_at = iso_now()
        filters: Dict[str, Any] = {}
        if quick_sync:
            marker = None
            try:
                marker = await self.history.latest_receipt_sync()
            except Exception:
                logger.exception("Could not read the latest receipt sync marker")
            if marker and marker.get("timestamp"):
                filters["created_at_min"] = marker["timestamp"]
                logger.info("Quick sync: fetching receipts created after %s", marker["timestamp"])
            else:
                logger.info("No previous receipt sync found, doing full sync")
                quick_sync = False
        sync_type = "quick" if quick_sync else "full"
        result = await self._sync_collection(RECEIPTS, filters or None, False, sync_type)
        if result.success:
            try:
                await self.history.set_latest_receipt_sync({
                    "timestamp": started_at,
                    "count": result.total,
                    "new_count": result.new_count,
                    "updated_count": result.updated_count,
                    "skipped_count": result.skipped_count,
                    "sync_type": sync_type,
                })
            except Exception:
                logger.exception("Error saving latest receipt sync marker")
        return result

    async def sync_stock(self, is_scheduled: bool = False) -> Optional[SyncResult]:
        return await self._guarded(STOCK, lambda: self._sync_stock(is_scheduled))

    async def _sync_stock(self, is_scheduled: bool) -> StockSyncResult:
        result = StockSyncResult(entity=STOCK, success=True, is_scheduled=is_scheduled)
        products_collection = COLLECTIONS[ITEMS]
        try:
            self._progress(STOCK, percentage=10, status="Fetching inventory from POS...")
            raw = await self.client.fetch_all(INVENTORY)
            levels = transform_all(INVENTORY, raw)
            self._progress(STOCK, 0, len(levels), 20, "Loading local products...")
            products = await self.store.get_all(products_collection)
        except Exception as exc:
            return await self._fail(result, exc)

        by_variant = {p["variant_id"]: p for p in products if p.get("variant_id")}
        totals = aggregate_stock(levels)
        total = len(totals)
        result.total = total
        logger.info("Processing %d unique variants (%d inventory levels)", total, len(levels))

        self.state.set_state(STOCK, WRITING)
        reference_id = f"pos-sync-{result.timestamp}"
        for index, (variant_id, remote_stock) in enumerate(totals.items(), start=1):
            self._progress(
                STOCK, index, total, 30 + (index / total) * 60, f"Processing {index}/{total} variants..."
            )
            product = by_variant.get(variant_id)
            if product is None:
                logger.warning("Product not found for variant_id %s (stock: %s)", variant_id, remote_stock)
                result.not_found_count += 1
                continue
            local_stock = product.get("stock") or 0
            if remote_stock == local_stock:
                result.unchanged_count += 1
                continue
            try:
                await self.store.update_fields(products_collection, product["id"], {
                    "stock": remote_stock,
                    "in_stock": remote_stock,
                    "last_inventory_sync": iso_now(),
                })
                await self.history.log_stock_adjustment(
                    product, local_stock, remote_stock, reason=STOCK_SYNC_REASON, reference_id=reference_id
                )
            except Exception:
                logger.exception("Error adjusting stock for product %s", product.get("id"))
                result.failed_count += 1
                continue
            result.adjustments.append({
                "id": product["id"],
                "name": product.get("name"),
                "sku": product.get("sku"),
                "old_stock": local_stock,
                "new_stock": remote_stock,
                "difference": remote_stock - local_stock,
            })
            result.adjusted_count += 1

        result.count = result.adjusted_count
        result.updated_count = result.adjusted_count
        result.skipped_count = result.unchanged_count
        logger.info(
            "Stock sync complete: %d adjusted, %d unchanged, %d not found",
            result.adjusted_count, result.unchanged_count, result.not_found_count,
        )
        await self._record_history(result)
        self._progress(STOCK, total, total, 100, "Stock sync complete!")
        return result

    async def sync_entity(self, entity: str, is_scheduled: bool = False, quick: bool = False) -> Optional[SyncResult]:
        if entity == CATEGORIES:
            return await self.sync_categories(is_scheduled)
        if entity == ITEMS:
            return await self.sync_items(is_scheduled)
        if entity == CUSTOMERS:
            return await self.sync_customers(is_scheduled)
        if entity == RECEIPTS:
            return await self.sync_receipts(quick_sync=quick)
        if entity == STOCK:
            return await self.sync_stock(is_scheduled)
        raise ValueError(f"unknown sync entity {entity!r}")

    async def sync_all(self) -> Dict[str, Optional[SyncResult]]:
        """Manual catalog sync: categories, items, customers in order."""
        results: Dict[str, Optional[SyncResult]] = {}
        for entity in CATALOG_CHAIN:
            try:
                results[entity] = await self.sync_entity(entity)
            except Exception:
                logger.exception("%s sync raised", entity.capitalize())
                results[entity] = None
        return results

    async def test_connection(self) -> Dict[str, Any]:
        return await self.client.test_connection()

    async def get_payment_types(self) -> List[Dict[str, Any]]:
        return await self.client.get_payment_types()


# ---------- CLI ----------
async def _run_cli(args) -> int:
    store = DocumentStore.open(args.db)
    try:
        engine = SyncEngine(PosApiClient(), store)
        if args.history:
            for entry in await engine.history.recent(limit=args.limit):
                print(json.dumps(entry))
            return 0
        if args.sync == "all":
            results = await engine.sync_all()
            ok = all(r is not None and r.success for r in results.values())
            for r in results.values():
                if r is not None:
                    print(json.dumps(r.as_dict()))
            return 0 if ok else 1
        if args.sync:
            result = await engine.sync_entity(args.sync, quick=args.quick)
            if result is None:
                print(f"{args.sync} sync already in progress")
                return 1
            print(json.dumps(result.as_dict()))
            return 0 if result.success else 1
        return 0
    finally:
        store.close()


def main():
    ap = argparse.ArgumentParser(description="POS sync engine")
    ap.add_argument("--sync", choices=list(COLLECTIONS) + [STOCK, "all"], help="Run one sync now")
    ap.add_argument("--quick", action="store_true", help="Receipts only: fetch receipts created since the last sync")
    ap.add_argument("--history", action="store_true", help="Print recent sync history")
    ap.add_argument("--limit", type=int, default=20, help="History entries to print")
    ap.add_argument("--db", default=POS_DB_PATH, help="Path to SQLite DB")
    args = ap.parse_args()
    configure_logging()
    raise SystemExit(asyncio.run(_run_cli(args)))


if __name__ == "__main__":
    main()
