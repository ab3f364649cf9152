import unittest

import sync_transform as st


def _remote_item(**overrides):
    item = {
        "id": "item-1",
        "handle": "flat-white",
        "item_name": "Flat White",
        "category_id": "cat-1",
        "track_stock": True,
        "variants": [
            {
                "variant_id": "var-1",
                "sku": "10001",
                "barcode": "501234",
                "default_price": "3.5",
                "cost": 1.2,
                "stores": [{"store_id": "s1", "stock_quantity": 7, "available_for_sale": True}],
            },
            {"variant_id": "var-2", "sku": "10002", "default_price": 4},
        ],
        "updated_at": "2024-05-01T10:00:00.000Z",
    }
    item.update(overrides)
    return item


class TransformItemTest(unittest.TestCase):
    def test_first_variant_supplies_price_and_codes(self):
        doc = st.transform_item(_remote_item())
        self.assertEqual(doc["id"], "item-1")
        self.assertEqual(doc["name"], "Flat White")
        self.assertEqual(doc["variant_id"], "var-1")
        self.assertEqual(doc["sku"], "10001")
        self.assertEqual(doc["barcode"], "501234")
        self.assertEqual(doc["price"], 3.5)
        self.assertEqual(doc["cost"], 1.2)
        self.assertEqual(doc["pricing_type"], "FIXED")
        self.assertEqual(len(doc["variants"]), 2)
        self.assertEqual(doc["source"], st.SOURCE)

    def test_stock_only_when_tracked_and_reported(self):
        self.assertEqual(st.transform_item(_remote_item())["stock"], 7.0)
        self.assertNotIn("stock", st.transform_item(_remote_item(track_stock=False)))
        untracked = _remote_item()
        untracked["variants"][0]["stores"] = [{"store_id": "s1"}]
        self.assertNotIn("stock", st.transform_item(untracked))

    def test_item_without_variants_gets_defaults(self):
        doc = st.transform_item({"id": "bare", "item_name": "Bare"})
        self.assertIsNone(doc["variant_id"])
        self.assertEqual(doc["price"], 0.0)
        self.assertEqual(doc["sku"], "")
        self.assertTrue(doc["available_for_sale"])
        self.assertEqual(doc["tax_ids"], [])


class TransformOtherEntitiesTest(unittest.TestCase):
    def test_category_default_color(self):
        doc = st.transform_category({"id": "c1", "name": "Drinks", "updated_at": "T1"})
        self.assertEqual(doc["color"], st.DEFAULT_CATEGORY_COLOR)
        self.assertEqual(doc["updated_at"], "T1")

    def test_customer_contact_fields(self):
        doc = st.transform_customer({
            "id": "cu1",
            "name": " Ada ",
            "phone_number": "+44 1234",
            "region": "Kent",
            "total_visits": "4",
            "total_spent": "19.999",
        })
        self.assertEqual(doc["name"], "Ada")
        self.assertEqual(doc["phone"], "+44 1234")
        self.assertEqual(doc["province"], "Kent")
        self.assertEqual(doc["total_visits"], 4)
        self.assertEqual(doc["total_spent"], 20.0)
        self.assertEqual(doc["email"], "")

    def test_receipt_keyed_by_number(self):
        doc = st.transform_receipt({
            "receipt_number": "2-1001",
            "total_money": 12,
            "line_items": [{"item_id": "item-1", "quantity": 2}],
            "payments": "not-a-list",
        })
        self.assertEqual(doc["receipt_number"], "2-1001")
        self.assertNotIn("id", doc)
        self.assertEqual(doc["receipt_type"], "SALE")
        self.assertEqual(doc["total_money"], 12.0)
        self.assertEqual(len(doc["line_items"]), 1)
        self.assertEqual(doc["payments"], [])

    def test_inventory_level_quantity(self):
        self.assertEqual(st.transform_inventory_level({"variant_id": "v", "in_stock": "3"})["in_stock"], 3.0)
        self.assertEqual(st.transform_inventory_level({"variant_id": "v", "in_stock": None})["in_stock"], 0.0)

    def test_transform_all_uses_entity_transformer(self):
        docs = st.transform_all("categories", [{"id": "a", "name": "A"}, {"id": "b", "name": "B"}])
        self.assertEqual([d["id"] for d in docs], ["a", "b"])
        with self.assertRaises(KeyError):
            st.transform_all("unknown", [])


if __name__ == "__main__":
    unittest.main()
