"""
Remote POS payloads -> local record shapes.

Every function here is pure: one remote dict in, one local dict out. Missing
optional fields get defaults and numeric strings are coerced, money rounded to
two decimals. A missing identifier is carried through as None; the writer
rejects that record on its own.
"""
from typing import Any, Callable, Dict, List, Optional

from pos_client import CATEGORIES, CUSTOMERS, INVENTORY, ITEMS, RECEIPTS

SOURCE = "pos"
DEFAULT_CATEGORY_COLOR = "#808080"


def _money(value: Any, places: int = 2) -> float:
    try:
        return round(float(value or 0), places)
    except (TypeError, ValueError):
        return 0.0


def _quantity(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _count(value: Any) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    return []


def transform_category(cat: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": cat.get("id"),
        "name": cat.get("name") or "",
        "color": cat.get("color") or DEFAULT_CATEGORY_COLOR,
        "created_at": cat.get("created_at"),
        "updated_at": cat.get("updated_at"),
        "deleted_at": cat.get("deleted_at"),
        "source": SOURCE,
    }


def transform_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten an item; price/sku/stock come from its first variant and first store."""
    variants = _list(item.get("variants"))
    primary = variants[0] if variants and isinstance(variants[0], dict) else {}
    stores = _list(primary.get("stores"))
    first_store = stores[0] if stores and isinstance(stores[0], dict) else {}
    track_stock = bool(item.get("track_stock"))

    doc = {
        "id": item.get("id"),
        "handle": item.get("handle") or "",
        "name": item.get("item_name") or "",
        "description": item.get("description") or "",
        "reference_id": item.get("reference_id") or "",
        "category_id": item.get("category_id") or None,
        "track_stock": track_stock,
        "sold_by_weight": bool(item.get("sold_by_weight")),
        "is_composite": bool(item.get("is_composite")),
        "use_production": bool(item.get("use_production")),
        "form": item.get("form") or None,
        "color": item.get("color") or None,
        "image_url": item.get("image_url") or None,
        "option1_name": item.get("option1_name") or None,
        "option2_name": item.get("option2_name") or None,
        "option3_name": item.get("option3_name") or None,
        "variant_id": primary.get("variant_id") or None,
        "sku": primary.get("sku") or "",
        "barcode": primary.get("barcode") or "",
        "price": _money(primary.get("default_price")),
        "cost": _money(primary.get("cost")),
        "purchase_cost": _money(primary.get("purchase_cost")),
        "pricing_type": primary.get("default_pricing_type") or "FIXED",
        "available_for_sale": first_store.get("available_for_sale") is not False,
        "variants": variants,
        "primary_supplier_id": item.get("primary_supplier_id") or None,
        "tax_ids": _list(item.get("tax_ids")),
        "modifier_ids": _list(item.get("modifiers_ids")),
        "components": _list(item.get("components")),
        "created_at": item.get("created_at"),
        "updated_at": item.get("updated_at"),
        "deleted_at": item.get("deleted_at") or None,
        "source": SOURCE,
    }
    # Only carry stock when the remote actually reported it, so a payload
    # without inventory never reads as zero stock.
    stock = _quantity(first_store.get("stock_quantity"))
    if track_stock and stock is not None:
        doc["stock"] = stock
    return doc


def transform_customer(cust: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": cust.get("id"),
        "name": _text(cust.get("name")),
        "customer_code": _text(cust.get("customer_code")),
        "email": _text(cust.get("email")),
        "phone": _text(cust.get("phone_number")),
        "address": _text(cust.get("address")),
        "city": _text(cust.get("city")),
        "province": _text(cust.get("region")),
        "postal_code": _text(cust.get("postal_code")),
        "country_code": _text(cust.get("country_code")),
        "note": _text(cust.get("note")),
        "first_visit": cust.get("first_visit") or None,
        "last_visit": cust.get("last_visit") or None,
        "total_visits": _count(cust.get("total_visits")),
        "total_spent": _money(cust.get("total_spent")),
        "total_points": _money(cust.get("total_points")),
        "created_at": cust.get("created_at"),
        "updated_at": cust.get("updated_at"),
        "deleted_at": cust.get("deleted_at") or None,
        "permanent_deletion_at": cust.get("permanent_deletion_at") or None,
        "source": SOURCE,
    }


def transform_receipt(receipt: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "receipt_number": receipt.get("receipt_number"),
        "receipt_type": receipt.get("receipt_type") or "SALE",
        "refund_for": receipt.get("refund_for") or None,
        "order": receipt.get("order") or None,
        "created_at": receipt.get("created_at"),
        "receipt_date": receipt.get("receipt_date"),
        "updated_at": receipt.get("updated_at"),
        "cancelled_at": receipt.get("cancelled_at") or None,
        "source": receipt.get("source") or SOURCE,
        "store_id": receipt.get("store_id"),
        "pos_device_id": receipt.get("pos_device_id") or None,
        "dining_option": receipt.get("dining_option") or None,
        "total_money": _money(receipt.get("total_money")),
        "total_tax": _money(receipt.get("total_tax")),
        "total_discount": _money(receipt.get("total_discount")),
        "tip": _money(receipt.get("tip")),
        "surcharge": _money(receipt.get("surcharge")),
        "customer_id": receipt.get("customer_id") or None,
        "employee_id": receipt.get("employee_id") or None,
        "points_earned": _money(receipt.get("points_earned")),
        "points_deducted": _money(receipt.get("points_deducted")),
        "points_balance": _money(receipt.get("points_balance")),
        "note": receipt.get("note") or None,
        "line_items": _list(receipt.get("line_items")),
        "payments": _list(receipt.get("payments")),
        "total_discounts": _list(receipt.get("total_discounts")),
        "total_taxes": _list(receipt.get("total_taxes")),
    }


def transform_inventory_level(level: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "variant_id": level.get("variant_id"),
        "store_id": level.get("store_id"),
        "in_stock": _quantity(level.get("in_stock")) or 0.0,
        "updated_at": level.get("updated_at"),
    }


TRANSFORMERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    CATEGORIES: transform_category,
    ITEMS: transform_item,
    CUSTOMERS: transform_customer,
    RECEIPTS: transform_receipt,
    INVENTORY: transform_inventory_level,
}


def transform_all(entity_type: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    transform = TRANSFORMERS[entity_type]
    return [transform(rec) for rec in records]
