#!/usr/bin/env python3
"""
POS Sync Worker

Checks on a short fixed tick whether a scheduled sync is due and, if so, runs
categories -> items -> customers one after another. Receipts are never synced
automatically because of their volume.

Whether scheduled sync is enabled, and its interval, come from the stored sync
settings (see sync_settings.py), so they can change while the worker runs.

Env vars:
  POS_DB_PATH        SQLite DB path (default: pos_sync.db)
  SYNC_TICK_SECONDS  seconds between due-checks (default: 60)

Run:
  python sync_worker.py
"""
import asyncio
import datetime as dt
import logging
from typing import Callable, Optional

from pos_client import PosApiClient
from pos_service import CATALOG_CHAIN, SyncEngine
from sync_config import POS_DB_PATH, SYNC_TICK_SECONDS, configure_logging
from sync_settings import load_settings
from sync_store import DocumentStore, parse_iso

logger = logging.getLogger(__name__)

IDLE = "idle"
CHECKING = "checking"
SYNCING = "syncing"


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class SyncScheduler:
    def __init__(
        self,
        engine: SyncEngine,
        tick_seconds: float = SYNC_TICK_SECONDS,
        clock: Callable[[], dt.datetime] = _utc_now,
    ):
        self.engine = engine
        self.tick_seconds = tick_seconds
        self.clock = clock
        self.phase = IDLE
        self.last_check: Optional[str] = None
        self._running = False

    async def is_due(self, now: dt.datetime) -> bool:
        """True when no history exists yet, or the last success is at least one interval old."""
        settings = await load_settings(self.engine.store)
        history = await self.engine.history.recent(limit=1)
        if not history:
            logger.info("No sync history found, running first scheduled sync")
            return True
        last_success = await self.engine.history.last_success()
        if not last_success:
            logger.info("No successful sync found in history")
            return False
        last_time = parse_iso(last_success.get("timestamp"))
        if last_time is None:
            logger.warning("Unreadable timestamp on history entry %s", last_success.get("key"))
            return False
        minutes_since = (now - last_time).total_seconds() / 60.0
        interval = settings["interval_minutes"]
        logger.debug("Time since last sync: %.1f minutes (interval: %s minutes)", minutes_since, interval)
        return minutes_since >= interval

    async def check_once(self, now: Optional[dt.datetime] = None) -> bool:
        """One tick. Returns True when a scheduled sync chain ran."""
        settings = await load_settings(self.engine.store)
        if not settings["scheduled_sync_enabled"]:
            return False
        if self.engine.state.any_busy():
            logger.info("Skipping scheduled sync: sync already in progress")
            return False
        now = now or self.clock()
        self.phase = CHECKING
        self.last_check = now.isoformat()
        try:
            due = await self.is_due(now)
        except Exception:
            logger.exception("Scheduled sync due-check failed")
            due = False
        if not due:
            self.phase = IDLE
            return False
        await self.run_chain()
        return True

    async def run_chain(self):
        self.phase = SYNCING
        logger.info("Scheduled sync triggered")
        try:
            for entity in CATALOG_CHAIN:
                try:
                    result = await self.engine.sync_entity(entity, is_scheduled=True)
                except Exception:
                    logger.exception("Scheduled %s sync raised", entity)
                    continue
                if result is not None and not result.success:
                    logger.warning("Scheduled %s sync failed: %s", entity, result.error)
            logger.info("Scheduled sync completed")
        finally:
            self.phase = IDLE

    async def run_forever(self):
        self._running = True
        logger.info("Sync scheduler started (tick=%ss)", self.tick_seconds)
        while self._running:
            try:
                await self.check_once()
            except Exception:
                logger.exception("Scheduled sync check failed")
            await asyncio.sleep(self.tick_seconds)
        logger.info("Sync scheduler stopped")

    def stop(self):
        self._running = False


async def _run_worker(db_path: str):
    store = DocumentStore.open(db_path)
    try:
        scheduler = SyncScheduler(SyncEngine(PosApiClient(), store))
        await scheduler.run_forever()
    finally:
        store.close()


def main():
    configure_logging()
    logger.info("Starting worker, tick=%ss, db=%s", SYNC_TICK_SECONDS, POS_DB_PATH)
    try:
        asyncio.run(_run_worker(POS_DB_PATH))
    except KeyboardInterrupt:
        logger.info("Exiting on Ctrl+C")


if __name__ == "__main__":
    main()
