"""
Change detection and the stock-preservation merge rule.

The remote `updated_at` is a fast path only: the remote system sometimes edits
records without bumping it, so a few significant fields are compared as well.
"""
from typing import Any, Dict, Iterable, Optional, Sequence

from pos_client import CATEGORIES, CUSTOMERS, ITEMS, RECEIPTS

INSERT = "insert"
UPDATE = "update"
SKIP = "skip"

TIMESTAMP_FIELD = "updated_at"

DEFAULT_SIGNIFICANT_FIELDS: Sequence[str] = ("price", "name", "category_id")

# Per entity type; fields missing from the incoming record are not compared
SIGNIFICANT_FIELDS: Dict[str, Sequence[str]] = {
    CATEGORIES: ("name", "color"),
    ITEMS: ("price", "name", "category_id"),
    CUSTOMERS: ("name", "email", "phone"),
    RECEIPTS: ("total_money", "cancelled_at"),
}

STOCK_FIELDS = ("stock", "in_stock", "inventory_levels", "last_inventory_sync")


def significant_fields_for(entity_type: Optional[str]) -> Sequence[str]:
    return SIGNIFICANT_FIELDS.get(entity_type or "", DEFAULT_SIGNIFICANT_FIELDS)


def classify_change(
    existing: Optional[Dict[str, Any]],
    incoming: Dict[str, Any],
    significant_fields: Optional[Iterable[str]] = None,
) -> str:
    """Return INSERT, UPDATE or SKIP for an incoming record."""
    if existing is None:
        return INSERT
    if existing.get(TIMESTAMP_FIELD) != incoming.get(TIMESTAMP_FIELD):
        return UPDATE
    fields = DEFAULT_SIGNIFICANT_FIELDS if significant_fields is None else significant_fields
    for field in fields:
        if field in incoming and existing.get(field) != incoming[field]:
            return UPDATE
    return SKIP


def needs_write(
    existing: Optional[Dict[str, Any]],
    incoming: Dict[str, Any],
    significant_fields: Optional[Iterable[str]] = None,
) -> bool:
    return classify_change(existing, incoming, significant_fields) != SKIP


def should_preserve_stock(existing: Optional[Dict[str, Any]], incoming: Dict[str, Any]) -> bool:
    if not existing:
        return False
    if existing.get("last_inventory_sync"):
        return True
    return existing.get("stock") is not None and incoming.get("stock") is None


def preserve_stock(existing: Optional[Dict[str, Any]], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Return the record to save: incoming fields, with locally-owned stock fields kept.

    Stock is kept when the existing record was reconciled by a stock sync
    (`last_inventory_sync`), or when it has a stock value and the incoming
    payload carries none.
    """
    merged = dict(incoming)
    if not should_preserve_stock(existing, incoming):
        return merged
    for field in STOCK_FIELDS:
        value = existing.get(field)
        if value is not None:
            merged[field] = value
    return merged
