# In-memory stand-ins for the source adapter and the target store.
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from presta_migrate.presta.models import (
    CanonicalProduct,
    CategoryInfo,
    ListPage,
    ProductListItem,
    Variant,
    VariantAttribute,
)
from presta_migrate.presta.source import NotFound, ProductSource
from presta_migrate.sync.components.util import slugify
from presta_migrate.woo.store import (
    EXTERNAL_ID_META,
    DuplicateSkuError,
    ProductSpec,
    StoreError,
    TargetStore,
    TermRef,
    VariationSpec,
)


def make_product(source_id="10", **overrides) -> CanonicalProduct:
    data = dict(
        source_id=source_id,
        name="Linen Shirt",
        description="<p>Soft linen</p>",
        short_description="Linen",
        price=Decimal("19.99"),
        quantity=5,
        active=True,
        reference="SHIRT-1",
    )
    data.update(overrides)
    return CanonicalProduct(**data)


def make_variant(vid, delta="0", qty=3, sku="", **attrs) -> Variant:
    return Variant(
        external_variant_id=str(vid),
        sku=sku,
        price_delta=Decimal(delta),
        quantity=qty,
        attributes=[VariantAttribute(group_name=g, value_name=v) for g, v in attrs.items()],
    )


class FakeSource(ProductSource):
    kind = "fake"

    def __init__(self, products=None, categories=None, lazy_variants=None, images=None):
        self.products: Dict[str, CanonicalProduct] = {p.source_id: p for p in (products or [])}
        self.categories: Dict[str, CategoryInfo] = {c.id: c for c in (categories or [])}
        self.lazy_variants: Dict[str, List[Variant]] = lazy_variants or {}
        self.images: Dict[str, bytes] = images or {}
        self.errors: Dict[str, Exception] = {}
        self.category_calls: List[str] = []
        self.list_calls: List[tuple] = []

    async def test_connection(self):
        return {"success": True, "message": "fake"}

    async def list_page(self, offset, limit):
        self.list_calls.append((offset, limit))
        ids = sorted(self.products, key=int)[offset:offset + limit]
        return ListPage(items=[ProductListItem(id=i, name=self.products[i].name) for i in ids],
                        has_more=len(ids) == limit)

    async def fetch_product(self, product_id):
        if product_id in self.errors:
            raise self.errors[product_id]
        if product_id not in self.products:
            raise NotFound("product", product_id)
        return self.products[product_id].model_copy(deep=True)

    async def fetch_category(self, category_id):
        self.category_calls.append(category_id)
        if category_id not in self.categories:
            raise NotFound("category", category_id)
        return self.categories[category_id]

    async def fetch_image_binary(self, product_id, image_id):
        return self.images.get(image_id, b"\x89PNG fake")

    async def fetch_raw(self, product_id):
        return {"strategy": "fake", "product": {"id": product_id}}

    async def has_variants(self, product_id):
        return bool(self.lazy_variants.get(product_id))

    async def fetch_variants_for(self, product_id, reference=""):
        return [v.model_copy(deep=True) for v in self.lazy_variants.get(product_id, [])]


class InMemoryStore(TargetStore):
    def __init__(self, brand_taxonomy: Optional[str] = "product_brand"):
        self.available = True
        self.products: Dict[int, Dict[str, Any]] = {}
        self.categories: Dict[str, Dict[str, Any]] = {}
        self.category_order: List[str] = []
        self.taxonomies: Dict[str, int] = {}
        self.terms: Dict[tuple, TermRef] = {}
        self.fail_taxonomies = False
        self.fail_create = False
        self._brand_taxonomy = brand_taxonomy
        self.brand_terms: Dict[str, int] = {}
        self.thumbnails: Dict[int, int] = {}
        self.brand_assignments: Dict[int, int] = {}
        self.media: List[Dict[str, Any]] = []
        self.sync_calls: List[int] = []
        self._next = 100

    def _id(self) -> int:
        self._next += 1
        return self._next

    # products
    async def is_available(self):
        return self.available

    async def find_by_external_id(self, source_id):
        for pid, p in self.products.items():
            if p["meta"].get(EXTERNAL_ID_META) == str(source_id):
                return pid
        return None

    async def find_by_sku(self, sku):
        for pid, p in self.products.items():
            if sku and p.get("sku") == sku:
                return pid
            for v in p["variations"]:
                if sku and v.get("sku") == sku:
                    return v["id"]
        return None

    async def get_product_type(self, product_id):
        p = self.products.get(product_id)
        return p["type"] if p else None

    def _merge(self, record: Dict[str, Any], spec: ProductSpec) -> None:
        data = spec.model_dump(exclude_none=True)
        meta = data.pop("meta", {})
        record.update(data)
        record["meta"].update(meta)

    async def create_product(self, spec: ProductSpec):
        if self.fail_create:
            raise StoreError("save failed", 500)
        pid = self._id()
        record = {"id": pid, "meta": {}, "variations": [], "type": "simple"}
        self._merge(record, spec)
        self.products[pid] = record
        return pid

    async def update_product(self, product_id, spec):
        if product_id not in self.products:
            raise StoreError("no such product", 404)
        self._merge(self.products[product_id], spec)

    async def delete_variations(self, product_id):
        n = len(self.products[product_id]["variations"])
        self.products[product_id]["variations"] = []
        return n

    async def create_variation(self, product_id, spec: VariationSpec):
        if spec.sku and await self.find_by_sku(spec.sku):
            raise DuplicateSkuError("duplicate sku", 400, "product_invalid_sku")
        vid = self._id()
        self.products[product_id]["variations"].append({"id": vid, **spec.model_dump()})
        return vid

    async def sync_variable_product(self, product_id):
        self.sync_calls.append(product_id)

    async def delete_imported(self):
        doomed = [pid for pid, p in self.products.items() if EXTERNAL_ID_META in p["meta"]]
        for pid in doomed:
            del self.products[pid]
        return len(doomed)

    # taxonomies
    async def resolve_or_create_category(self, name, slug, parent_id=0, description=""):
        if slug not in self.categories:
            self.categories[slug] = {"id": self._id(), "name": name, "parent": parent_id}
            self.category_order.append(slug)
        return self.categories[slug]["id"]

    async def resolve_or_create_attribute_taxonomy(self, name):
        if self.fail_taxonomies:
            raise StoreError("attributes endpoint unavailable", 500)
        slug = slugify(name)
        if slug not in self.taxonomies:
            self.taxonomies[slug] = self._id()
        return self.taxonomies[slug]

    async def resolve_or_create_attribute_term(self, taxonomy_id, value_name):
        key = (taxonomy_id, slugify(value_name))
        if key not in self.terms:
            self.terms[key] = TermRef(taxonomy_id=taxonomy_id, term_id=self._id(),
                                      name=value_name, slug=slugify(value_name))
        return self.terms[key]

    async def brand_taxonomy(self):
        return self._brand_taxonomy

    async def resolve_or_create_brand_term(self, name):
        slug = slugify(name)
        if slug not in self.brand_terms:
            self.brand_terms[slug] = self._id()
        return self.brand_terms[slug]

    async def brand_has_thumbnail(self, term_id):
        return term_id in self.thumbnails

    async def set_brand_thumbnail(self, term_id, media_id):
        self.thumbnails[term_id] = media_id

    async def assign_brand(self, product_id, term_id):
        self.brand_assignments[product_id] = term_id

    async def attach_media(self, data, suggested_name, content_type="image/jpeg"):
        mid = self._id()
        self.media.append({"id": mid, "name": suggested_name, "content_type": content_type, "size": len(data)})
        return mid
