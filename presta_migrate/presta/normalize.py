# presta_migrate/presta/normalize.py
# Raw webservice product payload → CanonicalProduct.
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from presta_migrate.presta.fields import (
    association_list,
    first_localized_value,
    optional_text,
    product_id_scalar,
    to_bool,
    to_decimal,
    to_int,
    variant_sku,
)
from presta_migrate.presta.models import (
    CanonicalProduct,
    Identifiers,
    ImageRef,
    Manufacturer,
    Variant,
    VariantAttribute,
)


def logo_candidates(base_url: str, manufacturer_id: int) -> List[str]:
    if not base_url or manufacturer_id <= 0:
        return []
    return [f"{base_url}/img/m/{manufacturer_id}.jpg", f"{base_url}/img/m/{manufacturer_id}.png"]


def unwrap_associations(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten associations.images.image → associations.images and fill a
    missing root `quantity` from the first stock_availables entry.
    Returns a shallow copy; the caller's payload is untouched.
    """
    product = dict(raw)
    assoc = product.get("associations")
    if not isinstance(assoc, dict):
        return product
    assoc = dict(assoc)
    product["associations"] = assoc

    imgs = assoc.get("images")
    if isinstance(imgs, dict) and "image" in imgs:
        assoc["images"] = imgs["image"]

    qty = product.get("quantity")
    if (qty is None or qty == "") and assoc.get("stock_availables"):
        stocks = assoc["stock_availables"]
        stock_list = stocks.get("stock_available", stocks) if isinstance(stocks, dict) else stocks
        if isinstance(stock_list, dict):
            stock_list = [stock_list]
        first = stock_list[0] if isinstance(stock_list, list) and stock_list else None
        if isinstance(first, dict) and "quantity" in first:
            product["quantity"] = first["quantity"]
        elif isinstance(stocks, dict) and "quantity" in stocks:
            product["quantity"] = stocks["quantity"]
    return product


def _image_refs(product: Dict[str, Any]) -> List[ImageRef]:
    ids: List[str] = []
    default_id = first_localized_value(product.get("id_default_image")).strip()
    if default_id and default_id != "0":
        ids.append(default_id)
    for img in association_list(product.get("associations"), "images", "image"):
        iid = product_id_scalar(img)
        if iid and iid not in ids:
            ids.append(iid)
    return [ImageRef(source_image_id=i) for i in ids]


def _category_ids(product: Dict[str, Any]) -> List[str]:
    ids = [product_id_scalar(c) for c in association_list(product.get("associations"), "categories", "category")]
    default_cat = first_localized_value(product.get("id_category_default")).strip()
    if default_cat:
        ids.append(default_cat)
    return ids


def legacy_variants(raw_variations: Any, base_price: Decimal, reference: str) -> List[Variant]:
    """
    Older exports carry `variations`: [{attributes: {pa_slug: value}, price, reference, quantity}]
    with absolute prices. Convert to deltas against the base price.
    """
    if not isinstance(raw_variations, list):
        return []
    out: List[Variant] = []
    for idx, v in enumerate(raw_variations, start=1):
        if not isinstance(v, dict):
            continue
        vid = first_localized_value(v.get("id")).strip() or str(idx)
        attrs = []
        raw_attrs = v.get("attributes") if isinstance(v.get("attributes"), dict) else {}
        for slug, value in raw_attrs.items():
            group = str(slug)
            if group.startswith("pa_"):
                group = group[3:]
            value_name = first_localized_value(value).strip()
            if group and value_name:
                attrs.append(VariantAttribute(group_name=group, value_name=value_name))
        price = to_decimal(v.get("price"), None)
        out.append(Variant(
            external_variant_id=vid,
            sku=variant_sku(v.get("reference"), reference, vid),
            price_delta=(price - base_price) if price is not None else Decimal("0"),
            quantity=to_int(v.get("quantity")),
            attributes=attrs,
        ))
    return out


def canonical_from_api(
    raw: Dict[str, Any],
    *,
    base_url: str = "",
    variants: Optional[List[Variant]] = None,
    fetch_strategy: Optional[str] = None,
) -> CanonicalProduct:
    product = unwrap_associations(raw)
    defaulted: List[str] = []

    price = to_decimal(product.get("price"), None)
    if price is None:
        defaulted.append("price")
        price = Decimal("0")

    if first_localized_value(product.get("quantity")).strip() == "":
        defaulted.append("quantity")
    quantity = to_int(product.get("quantity"))

    name = first_localized_value(product.get("name")).strip()
    if not name:
        defaulted.append("name")

    reference = first_localized_value(product.get("reference")).strip()
    active_raw = product.get("active")
    if active_raw is None:
        defaulted.append("active")

    man_id = to_int(product.get("id_manufacturer"))
    manufacturer = Manufacturer(
        id=man_id,
        name=first_localized_value(product.get("manufacturer_name")).strip(),
        logo_url_candidates=logo_candidates(base_url, man_id),
    )

    if variants is None:
        variants = legacy_variants(product.get("variations"), price, reference)

    return CanonicalProduct(
        source_id=product_id_scalar(product),
        name=name,
        description=first_localized_value(product.get("description")),
        short_description=first_localized_value(product.get("description_short")),
        price=price,
        quantity=quantity,
        active=True if active_raw is None else to_bool(active_raw),
        reference=reference,
        weight=to_decimal(product.get("weight"), None),
        width=to_decimal(product.get("width"), None),
        height=to_decimal(product.get("height"), None),
        depth=to_decimal(product.get("depth"), None),
        identifiers=Identifiers(
            ean13=optional_text(product.get("ean13")),
            upc=optional_text(product.get("upc")),
            isbn=optional_text(product.get("isbn")),
        ),
        category_ids=_category_ids(product),
        manufacturer=manufacturer,
        images=_image_refs(product),
        variants=variants,
        defaulted_fields=defaulted,
        fetch_strategy=fetch_strategy,
    )
