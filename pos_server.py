from flask import Flask, request, jsonify
import asyncio
import threading
import logging
from typing import Any, Dict, Optional

from pos_client import PosApiClient, PosApiError
from pos_service import SyncEngine
from sync_config import POS_DB_PATH, LOG_LEVEL_NAME
from sync_settings import SettingsError, load_settings, save_settings
from sync_state import SYNC_ENTITIES
from sync_store import DocumentStore, iso_now
from sync_worker import SyncScheduler

app = Flask(__name__)

try:
    app.logger.setLevel(getattr(logging, LOG_LEVEL_NAME, logging.INFO))
except Exception:
    app.logger.setLevel(logging.INFO)
try:
    logging.getLogger('werkzeug').setLevel(getattr(logging, LOG_LEVEL_NAME, logging.INFO))
except Exception:
    pass

HISTORY_DEFAULT_LIMIT = 20
HISTORY_MAX_LIMIT = 500


class SyncRuntime:
    """Owns the sync event loop thread; request threads hand coroutines to it."""

    def __init__(self, db_path: str = POS_DB_PATH, client: Optional[PosApiClient] = None,
                 store: Optional[DocumentStore] = None):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name='sync-loop', daemon=True)
        self._thread.start()
        self.store = store or DocumentStore.open(db_path)
        self.engine = SyncEngine(client or PosApiClient(), self.store)
        self.scheduler = SyncScheduler(self.engine)
        self._scheduler_future = None

    def _run_loop(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def run(self, coro, timeout: Optional[float] = None):
        """Run `coro` on the sync loop and block the caller until it finishes."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    def start_scheduler(self):
        if self._scheduler_future and not self._scheduler_future.done():
            return
        self._scheduler_future = asyncio.run_coroutine_threadsafe(self.scheduler.run_forever(), self.loop)
        app.logger.info("Sync scheduler started (tick=%ss)", self.scheduler.tick_seconds)

    def stop(self):
        self.scheduler.stop()
        if self._scheduler_future and not self._scheduler_future.done():
            self._scheduler_future.cancel()
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)
        self.store.close()


_RUNTIME: Optional[SyncRuntime] = None
_RUNTIME_LOCK = threading.Lock()


def init_runtime(runtime: Optional[SyncRuntime] = None) -> SyncRuntime:
    global _RUNTIME
    with _RUNTIME_LOCK:
        if runtime is not None:
            _RUNTIME = runtime
        elif _RUNTIME is None:
            _RUNTIME = SyncRuntime()
        return _RUNTIME


def _get_runtime() -> SyncRuntime:
    return _RUNTIME or init_runtime()


def _error(message: str, code: int, **extra):
    body: Dict[str, Any] = {'status': 'error', 'message': message}
    body.update(extra)
    return jsonify(body), code


def _limit_arg(default: int) -> int:
    raw = request.args.get('limit')
    if raw is None or raw == '':
        return default
    limit = int(raw)
    if limit < 1:
        raise ValueError('limit must be positive')
    return min(limit, HISTORY_MAX_LIMIT)


@app.route('/health')
def health():
    return jsonify({'status': 'success', 'time': iso_now()})


@app.route('/api/sync/all', methods=['POST'])
def api_sync_all():
    rt = _get_runtime()
    results = rt.run(rt.engine.sync_all())
    payload = {name: (res.as_dict() if res else None) for name, res in results.items()}
    if not all(res is not None and res.success for res in results.values()):
        failed = [name for name, res in results.items() if res is None or not res.success]
        return _error(f"Sync failed for: {', '.join(failed)}", 502, results=payload)
    return jsonify({'status': 'success', 'results': payload})


@app.route('/api/sync/<entity>', methods=['POST'])
def api_sync_entity(entity):
    if entity not in SYNC_ENTITIES:
        return _error(f'Unknown sync type: {entity}', 404)
    rt = _get_runtime()
    data = request.get_json(silent=True) or {}
    quick = bool(data.get('quick')) if isinstance(data, dict) else False
    if rt.engine.state.is_busy(entity):
        return _error(f'{entity} sync already in progress', 409)
    result = rt.run(rt.engine.sync_entity(entity, quick=quick))
    if result is None:
        return _error(f'{entity} sync already in progress', 409)
    if not result.success:
        return _error(result.error or f'{entity} sync failed', 502, result=result.as_dict())
    return jsonify({'status': 'success', 'result': result.as_dict()})


@app.route('/api/sync/test-connection')
def api_test_connection():
    rt = _get_runtime()
    try:
        data = rt.run(rt.engine.test_connection())
    except PosApiError as exc:
        app.logger.warning("POS connection test failed: %s", exc)
        return _error(str(exc), 502)
    return jsonify({'status': 'success', 'categories': data.get('categories') or []})


@app.route('/api/sync/payment-types')
def api_payment_types():
    rt = _get_runtime()
    try:
        types = rt.run(rt.engine.get_payment_types())
    except PosApiError as exc:
        app.logger.warning("Fetching payment types failed: %s", exc)
        return _error(str(exc), 502)
    return jsonify({'status': 'success', 'payment_types': types})


@app.route('/api/sync/status')
def api_sync_status():
    rt = _get_runtime()
    settings = rt.run(load_settings(rt.store))
    return jsonify({
        'status': 'success',
        'entities': rt.engine.state.snapshot(),
        'scheduler': {
            'phase': rt.scheduler.phase,
            'last_check': rt.scheduler.last_check,
            'enabled': settings['scheduled_sync_enabled'],
            'interval_minutes': settings['interval_minutes'],
        },
    })


@app.route('/api/sync/history')
def api_sync_history():
    try:
        limit = _limit_arg(HISTORY_DEFAULT_LIMIT)
    except ValueError:
        return _error('limit must be a positive integer', 400)
    rt = _get_runtime()
    entries = rt.run(rt.engine.history.recent(limit=limit, entity_type=request.args.get('type') or None))
    return jsonify({'status': 'success', 'history': entries})


@app.route('/api/sync/last')
def api_sync_last():
    rt = _get_runtime()
    last = rt.run(rt.engine.history.last_by_type(SYNC_ENTITIES))
    return jsonify({'status': 'success', 'last': last})


@app.route('/api/stock/history')
def api_stock_history():
    try:
        limit = _limit_arg(50)
    except ValueError:
        return _error('limit must be a positive integer', 400)
    rt = _get_runtime()
    entries = rt.run(rt.engine.history.stock_history(request.args.get('product_id') or None, limit=limit))
    return jsonify({'status': 'success', 'history': entries})


@app.route('/api/sync/settings', methods=['GET'])
def api_get_settings():
    rt = _get_runtime()
    return jsonify({'status': 'success', 'settings': rt.run(load_settings(rt.store))})


@app.route('/api/sync/settings', methods=['PUT'])
def api_put_settings():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _error('Expected a JSON object', 400)
    rt = _get_runtime()
    try:
        settings = rt.run(save_settings(rt.store, payload))
    except SettingsError as exc:
        return _error(str(exc), 400)
    except Exception as exc:
        app.logger.exception("Failed to save sync settings")
        return _error(f'Failed to save settings: {exc}', 500)
    return jsonify({'status': 'success', 'settings': settings})
