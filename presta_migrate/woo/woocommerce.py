#==========================================================================================
# presta_migrate/woo/woocommerce.py
# WooCommerce / WordPress REST implementation of the target store.
# wc/v3 calls use the consumer key/secret; wp/v2 calls (media, brand terms)
# use the WordPress application password when one is configured.
#==========================================================================================
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from presta_migrate.config import Settings
from presta_migrate.logging_filters import summarize_body
from presta_migrate.migrate_log import MigrationLog
from presta_migrate.sync.components.util import slugify
from presta_migrate.woo.store import (
    EXTERNAL_ID_META,
    AttributeSelection,
    AttributeSpec,
    DuplicateSkuError,
    ProductSpec,
    StoreError,
    TargetStore,
    TermRef,
    VariationSpec,
)

logger = logging.getLogger("uvicorn.error")

PER_PAGE = 100
NATIVE_BRAND_TAXONOMY = "product_brand"


def _attribute_payload(a: AttributeSpec, position: int) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "position": position,
        "visible": a.visible,
        "variation": a.variation,
        "options": list(a.options),
    }
    if a.taxonomy_id:
        out["id"] = a.taxonomy_id
    else:
        out["name"] = a.name
    return out


def _selection_payload(s: AttributeSelection) -> Dict[str, Any]:
    if s.taxonomy_id:
        return {"id": s.taxonomy_id, "option": s.option}
    return {"name": s.name, "option": s.option}


def _meta_payload(meta: Dict[str, str]) -> List[Dict[str, str]]:
    return [{"key": k, "value": v} for k, v in meta.items()]


def product_payload(spec: ProductSpec) -> Dict[str, Any]:
    """ProductSpec → wc/v3 product body; None fields are omitted."""
    simple_keys = (
        "name", "type", "status", "description", "short_description", "sku",
        "regular_price", "manage_stock", "stock_quantity", "stock_status", "weight", "dimensions",
    )
    data = {k: getattr(spec, k) for k in simple_keys if getattr(spec, k) is not None}
    # variable parents: stock_quantity must be explicitly cleared
    if spec.manage_stock is False and spec.stock_quantity is None:
        data["stock_quantity"] = None
    if spec.category_ids is not None:
        data["categories"] = [{"id": c} for c in spec.category_ids]
    if spec.image_ids is not None:
        data["images"] = [{"id": i} for i in spec.image_ids]
    if spec.attributes is not None:
        data["attributes"] = [_attribute_payload(a, i) for i, a in enumerate(spec.attributes)]
    if spec.default_attributes is not None:
        data["default_attributes"] = [_selection_payload(s) for s in spec.default_attributes]
    if spec.meta:
        data["meta_data"] = _meta_payload(spec.meta)
    return data


def variation_payload(spec: VariationSpec) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "regular_price": spec.regular_price,
        "manage_stock": spec.manage_stock,
        "stock_quantity": spec.stock_quantity,
        "stock_status": spec.stock_status,
        "attributes": [_selection_payload(s) for s in spec.attributes],
    }
    if spec.sku:
        data["sku"] = spec.sku
    if spec.image_id:
        data["image"] = {"id": spec.image_id}
    if spec.meta:
        data["meta_data"] = _meta_payload(spec.meta)
    return data


def _meta_value(product: Dict[str, Any], key: str) -> str:
    for m in product.get("meta_data") or []:
        if isinstance(m, dict) and m.get("key") == key:
            return str(m.get("value") or "").strip()
    return ""


class StoreCache:
    """
    Lookups that stay valid across requests against the same store: the
    source id → product index, attribute taxonomies and terms, and the
    resolved brand taxonomy. Kept current by the store's own writes.
    """

    def __init__(self):
        self.external_index: Optional[Dict[str, int]] = None
        self.attributes: Optional[List[Dict[str, Any]]] = None
        self.terms: Dict[int, List[Dict[str, Any]]] = {}
        self.brand_taxonomy: Optional[str] = None
        self.brand_resolved = False


class WooCommerceStore(TargetStore):
    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        *,
        wp_username: str = "",
        wp_password: str = "",
        verify: bool = True,
        timeout: float = 60.0,
        brand_fallback_taxonomy: str = "presa_product_brand",
        log: Optional[MigrationLog] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache: Optional[StoreCache] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self._wc_auth = (consumer_key, consumer_secret)
        self._wp_auth = (wp_username, wp_password) if wp_username and wp_password else self._wc_auth
        self.verify = verify
        self.timeout = timeout
        self.brand_fallback_taxonomy = brand_fallback_taxonomy
        self.log = log or MigrationLog()
        self._transport = transport

        self.cache = cache if cache is not None else StoreCache()

    @classmethod
    def from_settings(cls, cfg: Settings, log: Optional[MigrationLog] = None,
                      cache: Optional[StoreCache] = None) -> "WooCommerceStore":
        cfg.require_store()
        return cls(
            cfg.WC_BASE_URL,
            cfg.WC_API_KEY,
            cfg.WC_API_SECRET,
            wp_username=cfg.WP_USERNAME,
            wp_password=cfg.WP_PASSWORD,
            verify=cfg.WC_VERIFY_SSL,
            timeout=cfg.WC_TIMEOUT,
            brand_fallback_taxonomy=cfg.BRAND_FALLBACK_TAXONOMY,
            log=log,
            cache=cache,
        )

    # ---------------------------
    # HTTP plumbing
    # ---------------------------
    async def _request(
        self,
        method: str,
        path: str,
        *,
        wp: bool = False,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        url = f"{self.base_url}/wp-json/{path.lstrip('/')}"
        auth = self._wp_auth if wp else self._wc_auth
        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify, transport=self._transport) as client:
                resp = await client.request(method, url, params=params, json=json, content=content,
                                            headers=headers, auth=auth)
        except httpx.HTTPError as e:
            raise StoreError(f"[WC] {method} {path} failed: {e}") from e

        body: Any = None
        if resp.content:
            try:
                body = resp.json()
            except ValueError:
                body = None
        if resp.status_code >= 400:
            code = body.get("code", "") if isinstance(body, dict) else ""
            message = (body.get("message") if isinstance(body, dict) else None) or summarize_body(resp.text)
            err_cls = DuplicateSkuError if "sku" in code else StoreError
            raise err_cls(f"[WC] {method} {path} → HTTP {resp.status_code}: {message}", resp.status_code, code, body)
        if body is None and resp.content:
            raise StoreError(f"[WC] {method} {path} returned non-JSON: {summarize_body(resp.text)}", resp.status_code)
        return body

    async def _get_all(self, path: str, params: Optional[Dict[str, Any]] = None, wp: bool = False) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        page = 1
        while True:
            batch = await self._request("GET", path, wp=wp, params={**(params or {}), "per_page": PER_PAGE, "page": page})
            if not isinstance(batch, list) or not batch:
                break
            out.extend(batch)
            if len(batch) < PER_PAGE:
                break
            page += 1
        return out

    @staticmethod
    def _existing_term_id(err: StoreError) -> Optional[int]:
        """WordPress answers duplicate terms with code term_exists and the existing id."""
        if err.code != "term_exists" or not isinstance(err.body, dict):
            return None
        data = err.body.get("data") or {}
        tid = data.get("resource_id") or data.get("term_id")
        return int(tid) if tid else None

    # ---------------------------
    # Products
    # ---------------------------
    async def is_available(self) -> bool:
        try:
            await self._request("GET", "wc/v3/products", params={"per_page": 1})
        except StoreError as e:
            logger.error("[WC] store not reachable: %s", e)
            return False
        return True

    async def _build_external_index(self) -> Dict[str, int]:
        if self.cache.external_index is None:
            index: Dict[str, int] = {}
            for p in await self._get_all("wc/v3/products", {"status": "any"}):
                ext = _meta_value(p, EXTERNAL_ID_META)
                if ext and ext not in index:
                    index[ext] = int(p["id"])
            self.cache.external_index = index
            self.log.info("[WC] indexed %d imported products", len(index))
        return self.cache.external_index

    async def find_by_external_id(self, source_id: str) -> Optional[int]:
        return (await self._build_external_index()).get(str(source_id))

    async def find_by_sku(self, sku: str) -> Optional[int]:
        if not (sku or "").strip():
            return None
        rows = await self._request("GET", "wc/v3/products", params={"sku": sku.strip(), "status": "any"})
        if isinstance(rows, list) and rows:
            return int(rows[0]["id"])
        return None

    async def get_product_type(self, product_id: int) -> Optional[str]:
        try:
            data = await self._request("GET", f"wc/v3/products/{product_id}")
        except StoreError as e:
            if e.status_code == 404:
                return None
            raise
        return (data or {}).get("type")

    async def create_product(self, spec: ProductSpec) -> int:
        data = await self._request("POST", "wc/v3/products", json=product_payload(spec))
        pid = int(data["id"])
        ext = spec.meta.get(EXTERNAL_ID_META)
        if ext and self.cache.external_index is not None:
            self.cache.external_index[ext] = pid
        return pid

    async def update_product(self, product_id: int, spec: ProductSpec) -> None:
        await self._request("PUT", f"wc/v3/products/{product_id}", json=product_payload(spec))
        ext = spec.meta.get(EXTERNAL_ID_META)
        if ext and self.cache.external_index is not None:
            self.cache.external_index[ext] = product_id

    async def delete_variations(self, product_id: int) -> int:
        variations = await self._get_all(f"wc/v3/products/{product_id}/variations")
        for v in variations:
            await self._request("DELETE", f"wc/v3/products/{product_id}/variations/{v['id']}", params={"force": "true"})
        return len(variations)

    async def create_variation(self, product_id: int, spec: VariationSpec) -> int:
        data = await self._request("POST", f"wc/v3/products/{product_id}/variations", json=variation_payload(spec))
        return int(data["id"])

    async def sync_variable_product(self, product_id: int) -> None:
        # saving the parent runs WC_Product_Variable::sync (price range + stock status)
        await self._request("PUT", f"wc/v3/products/{product_id}", json={})

    async def delete_imported(self) -> int:
        self.cache.external_index = None
        index = await self._build_external_index()
        deleted = 0
        for ext, pid in list(index.items()):
            if await self.get_product_type(pid) == "variable":
                await self.delete_variations(pid)
            await self._request("DELETE", f"wc/v3/products/{pid}", params={"force": "true"})
            deleted += 1
            self.log.info("[WC] deleted imported product %s (source %s)", pid, ext)
        self.cache.external_index = {}
        return deleted

    # ---------------------------
    # Categories
    # ---------------------------
    async def resolve_or_create_category(self, name: str, slug: str, parent_id: int = 0,
                                         description: str = "") -> int:
        slug = slug or slugify(name)
        rows = await self._request("GET", "wc/v3/products/categories", params={"slug": slug})
        if isinstance(rows, list) and rows:
            return int(rows[0]["id"])
        payload = {"name": name, "slug": slug, "parent": parent_id or 0}
        if description:
            payload["description"] = description
        try:
            data = await self._request("POST", "wc/v3/products/categories", json=payload)
        except StoreError as e:
            existing = self._existing_term_id(e)
            if existing:
                return existing
            raise
        self.log.info("[CAT] created category %r (slug=%s parent=%s)", name, slug, parent_id)
        return int(data["id"])

    # ---------------------------
    # Attributes
    # ---------------------------
    async def resolve_or_create_attribute_taxonomy(self, name: str) -> int:
        wanted_slug = slugify(name)
        wanted_name = (name or "").strip().lower()
        if self.cache.attributes is None:
            self.cache.attributes = await self._get_all("wc/v3/products/attributes")
        for a in self.cache.attributes:
            a_slug = (a.get("slug") or "").lower()
            if a_slug.startswith("pa_"):
                a_slug = a_slug[3:]
            if a_slug == wanted_slug or (a.get("name") or "").strip().lower() == wanted_name:
                return int(a["id"])
        data = await self._request("POST", "wc/v3/products/attributes", json={
            "name": name,
            "slug": wanted_slug,
            "type": "select",
            "order_by": "menu_order",
            "has_archives": False,
        })
        self.cache.attributes.append(data)
        self.log.info("[WC] created attribute taxonomy pa_%s", wanted_slug)
        return int(data["id"])

    async def resolve_or_create_attribute_term(self, taxonomy_id: int, value_name: str) -> TermRef:
        value_name = (value_name or "").strip()
        slug = slugify(value_name)
        if taxonomy_id not in self.cache.terms:
            self.cache.terms[taxonomy_id] = await self._get_all(f"wc/v3/products/attributes/{taxonomy_id}/terms")
        terms = self.cache.terms[taxonomy_id]
        hit = next((t for t in terms if (t.get("slug") or "").lower() == slug), None)
        if hit is None:
            hit = next((t for t in terms if (t.get("name") or "").strip().lower() == value_name.lower()), None)
        if hit is None:
            try:
                hit = await self._request("POST", f"wc/v3/products/attributes/{taxonomy_id}/terms",
                                          json={"name": value_name, "slug": slug})
            except StoreError as e:
                existing = self._existing_term_id(e)
                if not existing:
                    raise
                hit = {"id": existing, "name": value_name, "slug": slug}
            terms.append(hit)
        return TermRef(taxonomy_id=taxonomy_id, term_id=int(hit["id"]),
                       name=hit.get("name") or value_name, slug=hit.get("slug") or slug)

    # ---------------------------
    # Brands
    # ---------------------------
    async def _taxonomy_responds(self, taxonomy: str) -> bool:
        try:
            await self._request("GET", f"wp/v2/{taxonomy}", wp=True, params={"per_page": 1})
        except StoreError:
            return False
        return True

    async def brand_taxonomy(self) -> Optional[str]:
        if not self.cache.brand_resolved:
            self.cache.brand_resolved = True
            for taxonomy in (NATIVE_BRAND_TAXONOMY, self.brand_fallback_taxonomy):
                if taxonomy and await self._taxonomy_responds(taxonomy):
                    self.cache.brand_taxonomy = taxonomy
                    break
            self.log.brand("brand taxonomy resolved to %s", self.cache.brand_taxonomy)
        return self.cache.brand_taxonomy

    async def _require_brand_taxonomy(self) -> str:
        taxonomy = await self.brand_taxonomy()
        if not taxonomy:
            raise StoreError("no brand taxonomy available on the store")
        return taxonomy

    async def resolve_or_create_brand_term(self, name: str) -> int:
        taxonomy = await self._require_brand_taxonomy()
        slug = slugify(name)
        rows = await self._request("GET", f"wp/v2/{taxonomy}", wp=True, params={"slug": slug})
        if isinstance(rows, list) and rows:
            return int(rows[0]["id"])
        try:
            data = await self._request("POST", f"wp/v2/{taxonomy}", wp=True, json={"name": name, "slug": slug})
        except StoreError as e:
            existing = self._existing_term_id(e)
            if existing:
                return existing
            raise
        return int(data["id"])

    async def brand_has_thumbnail(self, term_id: int) -> bool:
        taxonomy = await self._require_brand_taxonomy()
        if taxonomy == NATIVE_BRAND_TAXONOMY:
            data = await self._request("GET", f"wc/v3/products/brands/{term_id}")
            return bool(((data or {}).get("image") or {}).get("id"))
        data = await self._request("GET", f"wp/v2/{taxonomy}/{term_id}", wp=True)
        return bool(((data or {}).get("meta") or {}).get("thumbnail_id"))

    async def set_brand_thumbnail(self, term_id: int, media_id: int) -> None:
        taxonomy = await self._require_brand_taxonomy()
        if taxonomy == NATIVE_BRAND_TAXONOMY:
            await self._request("PUT", f"wc/v3/products/brands/{term_id}", json={"image": {"id": media_id}})
        else:
            await self._request("POST", f"wp/v2/{taxonomy}/{term_id}", wp=True,
                                json={"meta": {"thumbnail_id": media_id}})

    async def assign_brand(self, product_id: int, term_id: int) -> None:
        taxonomy = await self._require_brand_taxonomy()
        await self._request("POST", f"wp/v2/product/{product_id}", wp=True, json={taxonomy: [term_id]})

    # ---------------------------
    # Media
    # ---------------------------
    async def attach_media(self, data: bytes, suggested_name: str, content_type: str = "image/jpeg") -> int:
        upload_headers = {
            "Content-Disposition": f'attachment; filename="{suggested_name}"',
            "Content-Type": content_type,
        }
        media = await self._request("POST", "wp/v2/media", wp=True, content=data, headers=upload_headers)
        return int(media["id"])
