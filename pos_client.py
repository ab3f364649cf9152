"""
Remote POS API reader.

Fetches whole collections (categories, items, customers, receipts, inventory)
from the remote POS system, following pagination cursors until the remote side
stops returning one. Requests go through `requests`; each blocking call runs in
a worker thread so awaiting a page never blocks the event loop.
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import requests

from sync_config import POS_API_BASE, POS_API_TOKEN, POS_PAGE_LIMIT, POS_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

CATEGORIES = "categories"
ITEMS = "items"
CUSTOMERS = "customers"
RECEIPTS = "receipts"
INVENTORY = "inventory"
PAYMENT_TYPES = "payment_types"

# Response key holding the records of one page, when it differs from the endpoint
_RESPONSE_KEYS = {
    INVENTORY: "inventory_levels",
}

MAX_PAGE_LIMIT = 250


class PosApiError(Exception):
    """A remote request failed; the collection being fetched is unusable."""

    def __init__(self, message: str, status: Optional[int] = None, endpoint: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.endpoint = endpoint


def clamp_limit(limit: Optional[int]) -> int:
    if not limit:
        return MAX_PAGE_LIMIT
    return min(max(int(limit), 1), MAX_PAGE_LIMIT)


def records_key(entity_type: str) -> str:
    return _RESPONSE_KEYS.get(entity_type, entity_type)


def _clean_cursor(cursor: Any) -> Optional[str]:
    if cursor is None:
        return None
    text = str(cursor).strip()
    if not text or text in ("null", "undefined"):
        return None
    return text


def _describe_http_error(resp: requests.Response) -> str:
    """Return a short description/body snippet for logging HTTP errors."""
    detail = ""
    try:
        body = resp.json()
        if isinstance(body, dict):
            detail = str(body.get("message") or body.get("errors") or "")
    except ValueError:
        detail = (resp.text or "").strip()
    if not detail:
        detail = resp.reason or ""
    if len(detail) > 400:
        detail = detail[:400] + "…"
    return detail


class PosApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        page_limit: Optional[int] = None,
    ):
        self.base_url = (base_url or POS_API_BASE or "").rstrip("/")
        self.token = token if token is not None else POS_API_TOKEN
        self.session = session or requests.Session()
        self.timeout = timeout or POS_REQUEST_TIMEOUT
        self.page_limit = clamp_limit(page_limit or POS_PAGE_LIMIT)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def get_json(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Blocking GET helper. Raises PosApiError on any transport, HTTP or payload failure."""
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            resp = self.session.get(url, params=params or {}, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise PosApiError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc
        if resp.status_code >= 400:
            detail = _describe_http_error(resp)
            raise PosApiError(
                f"API Error: {resp.status_code} {detail}".strip(), status=resp.status_code, endpoint=endpoint
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise PosApiError(f"Bad JSON response from {endpoint}", status=resp.status_code, endpoint=endpoint) from exc
        if not isinstance(data, dict):
            raise PosApiError(f"Unexpected payload from {endpoint}", status=resp.status_code, endpoint=endpoint)
        if data.get("error"):
            raise PosApiError(data.get("message") or "API request failed", status=resp.status_code, endpoint=endpoint)
        return data

    async def fetch_page(
        self, entity_type: str, cursor: Optional[str] = None, filters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        for key, value in (filters or {}).items():
            if value is None:
                continue
            params[key] = json.dumps(value) if isinstance(value, bool) else value
        params["limit"] = self.page_limit
        if cursor:
            params["cursor"] = cursor
        return await asyncio.to_thread(self.get_json, f"/{entity_type}", params)

    async def iter_pages(
        self, entity_type: str, filters: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """Yield the records of each page in order.

        Every call starts again from an empty cursor, so an abandoned iteration
        can simply be re-run from scratch.
        """
        cursor = None
        while True:
            data = await self.fetch_page(entity_type, cursor=cursor, filters=filters)
            yield list(data.get(records_key(entity_type)) or [])
            cursor = _clean_cursor(data.get("cursor"))
            if not cursor:
                break

    async def fetch_all(
        self,
        entity_type: str,
        filters: Optional[Dict[str, Any]] = None,
        on_page: Optional[Callable[[int], None]] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch a whole collection; any page failure aborts with PosApiError."""
        records: List[Dict[str, Any]] = []
        pages = 0
        async for page in self.iter_pages(entity_type, filters=filters):
            records.extend(page)
            pages += 1
            if on_page:
                on_page(len(records))
        logger.info("Fetched %d %s in %d page(s)", len(records), entity_type, pages)
        return records

    async def test_connection(self) -> Dict[str, Any]:
        """Fetch a single category to prove the credentials and base URL work."""
        return await asyncio.to_thread(self.get_json, f"/{CATEGORIES}", {"limit": 1})

    async def get_payment_types(self) -> List[Dict[str, Any]]:
        data = await asyncio.to_thread(self.get_json, f"/{PAYMENT_TYPES}", {"show_deleted": "false"})
        return list(data.get(PAYMENT_TYPES) or [])
