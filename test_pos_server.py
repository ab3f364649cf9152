import unittest
from unittest import mock

import pos_client as pc
import pos_server
from sync_store import DocumentStore
from test_pos_service import CATEGORIES, FakePosClient, remote_item


class PosServerTest(unittest.TestCase):
    def setUp(self):
        self.client = FakePosClient({
            pc.CATEGORIES: CATEGORIES,
            pc.ITEMS: [remote_item("i1", "A", name="Tea", stock=6)],
            pc.INVENTORY: [{"variant_id": "A", "store_id": "s1", "in_stock": 9}],
            pc.PAYMENT_TYPES: [{"id": "p1", "name": "Cash", "type": "CASH"}],
        })
        self.runtime = pos_server.SyncRuntime(client=self.client, store=DocumentStore.open(":memory:"))
        pos_server.init_runtime(self.runtime)
        self.app = pos_server.app.test_client()

    def tearDown(self):
        self.runtime.stop()
        pos_server._RUNTIME = None

    def test_health(self):
        resp = self.app.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["status"], "success")

    def test_sync_entity(self):
        resp = self.app.post("/api/sync/categories")
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual(body["status"], "success")
        self.assertEqual(body["result"]["new_count"], 2)

        history = self.app.get("/api/sync/history?limit=5").get_json()["history"]
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]["type"], pc.CATEGORIES)

        last = self.app.get("/api/sync/last").get_json()["last"]
        self.assertEqual(last[pc.CATEGORIES]["count"], 2)
        self.assertIsNone(last[pc.RECEIPTS])

    def test_unknown_entity(self):
        resp = self.app.post("/api/sync/vouchers")
        self.assertEqual(resp.status_code, 404)

    def test_busy_entity_returns_conflict(self):
        self.runtime.engine.state.try_begin(pc.CATEGORIES)
        try:
            resp = self.app.post("/api/sync/categories")
        finally:
            self.runtime.engine.state.finish(pc.CATEGORIES)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(self.client.calls, [])

    def test_failed_sync_returns_bad_gateway(self):
        self.client.errors[pc.CUSTOMERS] = pc.PosApiError("API Error: 503 Unavailable", status=503)
        resp = self.app.post("/api/sync/customers")
        self.assertEqual(resp.status_code, 502)
        body = resp.get_json()
        self.assertEqual(body["status"], "error")
        self.assertIn("503", body["message"])
        self.assertFalse(body["result"]["success"])

    def test_quick_receipts_flag(self):
        resp = self.app.post("/api/sync/receipts", json={"quick": True})
        self.assertEqual(resp.status_code, 200)
        # no marker yet, so the quick request falls back to a full sync
        self.assertEqual(resp.get_json()["result"]["sync_type"], "full")
        resp = self.app.post("/api/sync/receipts", json={"quick": True})
        self.assertEqual(resp.get_json()["result"]["sync_type"], "quick")
        self.assertIn("created_at_min", self.client.calls[-1][1])

    def test_sync_all(self):
        resp = self.app.post("/api/sync/all")
        self.assertEqual(resp.status_code, 200)
        results = resp.get_json()["results"]
        self.assertEqual(set(results), {pc.CATEGORIES, pc.ITEMS, pc.CUSTOMERS})
        self.assertTrue(all(r["success"] for r in results.values()))

    def test_sync_all_with_failed_step(self):
        self.client.errors[pc.ITEMS] = pc.PosApiError("API Error: 500", status=500)
        resp = self.app.post("/api/sync/all")
        self.assertEqual(resp.status_code, 502)
        body = resp.get_json()
        self.assertEqual(body["status"], "error")
        self.assertIn(pc.ITEMS, body["message"])
        self.assertTrue(body["results"][pc.CATEGORIES]["success"])
        self.assertFalse(body["results"][pc.ITEMS]["success"])
        self.assertTrue(body["results"][pc.CUSTOMERS]["success"])

    def test_stock_sync_and_history(self):
        self.app.post("/api/sync/items")
        resp = self.app.post("/api/sync/stock")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["result"]["adjusted_count"], 1)
        log = self.app.get("/api/stock/history?product_id=i1").get_json()["history"]
        self.assertEqual(len(log), 1)
        self.assertEqual(log[0]["new_stock"], 9)

    def test_status(self):
        body = self.app.get("/api/sync/status").get_json()
        self.assertEqual(body["status"], "success")
        self.assertEqual(body["entities"][pc.ITEMS]["state"], "idle")
        self.assertEqual(body["scheduler"]["phase"], "idle")
        self.assertFalse(body["scheduler"]["enabled"])

    def test_history_rejects_bad_limit(self):
        self.assertEqual(self.app.get("/api/sync/history?limit=abc").status_code, 400)
        self.assertEqual(self.app.get("/api/sync/history?limit=0").status_code, 400)

    def test_settings_round_trip(self):
        body = self.app.get("/api/sync/settings").get_json()
        self.assertFalse(body["settings"]["scheduled_sync_enabled"])
        resp = self.app.put("/api/sync/settings", json={"scheduled_sync_enabled": True, "interval_minutes": 45})
        self.assertEqual(resp.status_code, 200)
        body = self.app.get("/api/sync/settings").get_json()
        self.assertTrue(body["settings"]["scheduled_sync_enabled"])
        self.assertEqual(body["settings"]["interval_minutes"], 45)

    def test_settings_validation(self):
        self.assertEqual(self.app.put("/api/sync/settings", json={"interval_minutes": 0}).status_code, 400)
        self.assertEqual(self.app.put("/api/sync/settings", json=[1, 2]).status_code, 400)

    def test_settings_save_failure(self):
        with mock.patch("pos_server.save_settings", side_effect=RuntimeError("disk full")):
            resp = self.app.put("/api/sync/settings", json={"interval_minutes": 10})
        self.assertEqual(resp.status_code, 500)
        self.assertIn("disk full", resp.get_json()["message"])

    def test_connection_and_payment_types(self):
        resp = self.app.get("/api/sync/test-connection")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["categories"][0]["id"], "c1")
        types = self.app.get("/api/sync/payment-types").get_json()["payment_types"]
        self.assertEqual(types[0]["name"], "Cash")

        self.client.errors["test_connection"] = pc.PosApiError("API Error: 401 Unauthorized", status=401)
        self.assertEqual(self.app.get("/api/sync/test-connection").status_code, 502)


if __name__ == "__main__":
    unittest.main()
