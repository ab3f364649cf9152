import unittest

import sync_settings as ss
from sync_store import DocumentStore


class SyncSettingsTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = DocumentStore.open(":memory:")

    def tearDown(self):
        self.store.close()

    async def test_defaults_when_nothing_saved(self):
        settings = await ss.load_settings(self.store)
        self.assertFalse(settings["scheduled_sync_enabled"])
        self.assertEqual(settings["interval_minutes"], ss.SYNC_DEFAULT_INTERVAL_MINUTES)
        self.assertIsNone(settings["updated_at"])

    async def test_partial_update_persists(self):
        await ss.save_settings(self.store, {"scheduled_sync_enabled": True})
        saved = await ss.save_settings(self.store, {"interval_minutes": "15"})
        self.assertTrue(saved["scheduled_sync_enabled"])
        self.assertEqual(saved["interval_minutes"], 15)
        self.assertTrue(saved["updated_at"])
        reloaded = await ss.load_settings(self.store)
        self.assertEqual(reloaded, saved)

    async def test_enabled_accepts_common_spellings(self):
        saved = await ss.save_settings(self.store, {"scheduled_sync_enabled": "yes"})
        self.assertTrue(saved["scheduled_sync_enabled"])
        saved = await ss.save_settings(self.store, {"scheduled_sync_enabled": "off"})
        self.assertFalse(saved["scheduled_sync_enabled"])

    async def test_invalid_values_rejected_without_saving(self):
        for bad in ({"interval_minutes": 0}, {"interval_minutes": 5000}, {"interval_minutes": "soon"},
                    {"interval_minutes": 2.5}, {"interval_minutes": True}, {"scheduled_sync_enabled": "maybe"}):
            with self.assertRaises(ss.SettingsError):
                await ss.save_settings(self.store, bad)
        self.assertIsNone(await self.store.get(ss.SETTINGS_COLLECTION, ss.SETTINGS_DOC_ID))


if __name__ == "__main__":
    unittest.main()
