# presta_migrate/presta/fields.py
# Pure helpers for PrestaShop's multilingual / XML-ish field encodings and
# the handful of response wrappers the webservice (and gateways in front of it)
# produce. Nothing in here raises on odd input.
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

# Priority order matters: first hit wins.
CONTENT_KEYS = ("value", "#", "__value", "content", "$")


def _is_meta_key(key: Any) -> bool:
    return isinstance(key, str) and key.startswith("@")


def _scalar(v: Any) -> Optional[str]:
    if v is None:
        return ""
    if isinstance(v, bool):
        return "1" if v else "0"
    if isinstance(v, (str, int, float, Decimal)):
        return str(v)
    return None


def first_localized_value(field: Any) -> str:
    """
    Resolve a multilingual field to one string.

    Accepted shapes: a scalar; {"language": ...}; {lang_id: scalar};
    [{"id": .., "value": ..}, ...]; a single {"#": ..} object. Metadata keys
    such as "@attributes" are skipped. Returns "" when nothing resolves.
    """
    s = _scalar(field)
    if s is not None:
        return s

    if isinstance(field, dict):
        if "language" in field:
            return first_localized_value(field["language"])
        for key in CONTENT_KEYS:
            if key in field:
                return first_localized_value(field[key])
        for key, val in field.items():
            if _is_meta_key(key):
                continue
            return first_localized_value(val)
        return ""

    if isinstance(field, (list, tuple)):
        if not field:
            return ""
        return first_localized_value(field[0])

    return ""


def product_id_scalar(product: Any) -> str:
    if not isinstance(product, dict):
        return ""
    return first_localized_value(product.get("id")).strip()


def has_product_data(product: Any) -> bool:
    """An ID-only stub (no name, no price) doesn't count as a found product."""
    if not isinstance(product, dict):
        return False
    name = first_localized_value(product.get("name")).strip()
    price = first_localized_value(product.get("price")).strip()
    return bool(name or price)


def _unwrap_prestashop(data: Any) -> Any:
    if isinstance(data, dict) and isinstance(data.get("prestashop"), dict):
        return data["prestashop"]
    return data


def _as_list(node: Any) -> List[Dict[str, Any]]:
    if isinstance(node, list):
        return [x for x in node if isinstance(x, dict)]
    if isinstance(node, dict):
        if not node:
            return []
        # {"0": {...}, "1": {...}}
        if all(str(k).isdigit() for k in node.keys()):
            return [v for v in node.values() if isinstance(v, dict)]
        return [node]
    return []


def parse_list(data: Any, resource: str = "products", item: str = "product") -> List[Dict[str, Any]]:
    """
    Collapse the webservice's list wrappers into a plain list:
    {resource: {item: [...]}}, {resource: [...]}, {item: {...}}, a bare
    single object, or a bare list.
    """
    data = _unwrap_prestashop(data)
    if isinstance(data, list):
        return _as_list(data)
    if not isinstance(data, dict):
        return []

    if resource in data:
        node = data[resource]
        if isinstance(node, dict) and item in node:
            node = node[item]
        return _as_list(node)
    if item in data:
        return _as_list(data[item])
    if "id" in data:
        return [data]
    return []


def parse_products_to_list(data: Any) -> List[Dict[str, Any]]:
    return parse_list(data, "products", "product")


def parse_single(data: Any, item: str) -> Optional[Dict[str, Any]]:
    """Single-resource GET: {item: {...}}, {prestashop: {item: ...}}, or the bare object."""
    data = _unwrap_prestashop(data)
    if not isinstance(data, dict):
        return None
    node = data.get(item, data)
    if isinstance(node, list):
        node = node[0] if node else None
    return node if isinstance(node, dict) and node else None


def association_list(associations: Any, name: str, item: Optional[str] = None) -> List[Dict[str, Any]]:
    """associations.images may be a list, or {"image": [...]} / {"image": {...}} in XML-derived JSON."""
    if not isinstance(associations, dict):
        return []
    node = associations.get(name)
    if isinstance(node, dict) and item and item in node:
        node = node[item]
    return _as_list(node)


def to_decimal(value: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    raw = first_localized_value(value).strip().replace(",", ".")
    if not raw:
        return default
    try:
        d = Decimal(raw)
    except InvalidOperation:
        return default
    return d if d.is_finite() else default


def to_int(value: Any, default: int = 0) -> int:
    raw = first_localized_value(value).strip()
    try:
        return int(Decimal(raw))
    except (InvalidOperation, ValueError, OverflowError):
        return default


def to_bool(value: Any) -> bool:
    return first_localized_value(value).strip().lower() in {"1", "true", "yes", "on"}


def optional_text(value: Any) -> Optional[str]:
    s = first_localized_value(value).strip()
    return s or None


def variant_sku(sku: Any, reference: str, variant_id: str) -> str:
    s = first_localized_value(sku).strip()
    if s:
        return s
    return f"{(reference or '').strip()}-{variant_id}"
