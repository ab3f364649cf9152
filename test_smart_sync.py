import asyncio
import unittest

import pos_service as ps
from sync_store import DocumentStore


def _categories(*names):
    return [
        {"id": f"c{i}", "name": name, "color": "#fff", "updated_at": "2024-05-01T10:00:00.000Z"}
        for i, name in enumerate(names, start=1)
    ]


class SlowStore(DocumentStore):
    """Store whose puts yield to the loop and can fail chosen ids."""

    def __init__(self, conn, fail_ids=()):
        super().__init__(conn)
        self.fail_ids = set(fail_ids)
        self.put_order = []
        self._pending = 0

    async def put(self, collection, doc_id, record):
        if doc_id in self.fail_ids:
            raise RuntimeError(f"write rejected for {doc_id}")
        self._pending += 1
        await asyncio.sleep(0.001 * self._pending)
        self.put_order.append(doc_id)
        await super().put(collection, doc_id, record)


class SmartSyncTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = DocumentStore.open(":memory:")

    def tearDown(self):
        self.store.close()

    async def test_second_run_is_idempotent(self):
        records = _categories("Drinks", "Food", "Merch")
        first = await ps.smart_sync(self.store, "categories", records)
        self.assertEqual((first.new_count, first.updated_count, first.skipped_count), (3, 0, 0))
        second = await ps.smart_sync(self.store, "categories", _categories("Drinks", "Food", "Merch"))
        self.assertEqual((second.new_count, second.updated_count, second.skipped_count), (0, 0, 3))
        self.assertEqual(second.total, 3)
        self.assertEqual(await self.store.count("categories"), 3)

    async def test_changed_record_is_updated(self):
        await ps.smart_sync(self.store, "categories", _categories("Drinks"), significant_fields=("name",))
        stats = await ps.smart_sync(
            self.store, "categories", _categories("Beverages"), significant_fields=("name",)
        )
        self.assertEqual(stats.updated_count, 1)
        doc = await self.store.get("categories", "c1")
        self.assertEqual(doc["name"], "Beverages")

    async def test_duplicate_ids_collapse_to_one_record(self):
        records = _categories("Drinks", "Food")
        records.append(dict(records[0], name="Drinks (late)"))
        stats = await ps.smart_sync(self.store, "categories", records)
        self.assertEqual(stats.total, 2)
        self.assertEqual(await self.store.count("categories"), 2)
        self.assertEqual((await self.store.get("categories", "c1"))["name"], "Drinks (late)")

    async def test_record_failure_does_not_stop_batch(self):
        store = SlowStore(self.store.conn, fail_ids={"c2"})
        records = _categories("Drinks", "Food", "Merch")
        records.append({"name": "No id"})
        stats = await ps.smart_sync(store, "categories", records)
        self.assertEqual(stats.new_count, 2)
        self.assertEqual(stats.failed_count, 2)
        self.assertEqual(stats.updated_count + stats.skipped_count, 0)
        self.assertIsNone(await self.store.get("categories", "c2"))
        self.assertIsNotNone(await self.store.get("categories", "c3"))

    async def test_batches_run_in_order(self):
        store = SlowStore(self.store.conn)
        progress = []
        records = _categories("a", "b", "c", "d", "e")
        stats = await ps.smart_sync(
            store, "categories", records, batch_size=2, on_progress=lambda cur, tot: progress.append((cur, tot))
        )
        self.assertEqual(stats.new_count, 5)
        self.assertEqual(progress, [(2, 5), (4, 5), (5, 5)])
        self.assertEqual(set(store.put_order[:2]), {"c1", "c2"})
        self.assertEqual(set(store.put_order[2:4]), {"c3", "c4"})
        self.assertEqual(store.put_order[4], "c5")

    async def test_preserve_keeps_reconciled_stock(self):
        await self.store.put("products", "i1", {
            "id": "i1", "name": "Tea", "price": 2.0, "stock": 40, "last_inventory_sync": "T0", "updated_at": "T1",
        })
        incoming = [{"id": "i1", "name": "Green Tea", "price": 2.0, "updated_at": "T2"}]
        stats = await ps.smart_sync(self.store, "products", incoming, preserve=True)
        self.assertEqual(stats.updated_count, 1)
        doc = await self.store.get("products", "i1")
        self.assertEqual(doc["name"], "Green Tea")
        self.assertEqual(doc["stock"], 40)

    async def test_custom_id_field(self):
        receipts = [{"receipt_number": "1-001", "total_money": 5.0, "updated_at": "T"}]
        stats = await ps.smart_sync(self.store, "receipts", receipts, id_field="receipt_number")
        self.assertEqual(stats.new_count, 1)
        self.assertIsNotNone(await self.store.get("receipts", "1-001"))


if __name__ == "__main__":
    unittest.main()
