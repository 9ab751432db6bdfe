#===========================================================================
# presta_migrate/presta/client.py
# PrestaShop webservice adapter (JSON output).
# Lists products page by page and resolves single products through an
# ordered chain of lookup strategies; gateways in front of the
# webservice differ in which query features they honour.
#===========================================================================

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from presta_migrate.config import Settings
from presta_migrate.logging_filters import summarize_body
from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.fields import (
    association_list,
    first_localized_value,
    has_product_data,
    parse_list,
    parse_products_to_list,
    parse_single,
    product_id_scalar,
    to_bool,
    to_decimal,
    to_int,
    variant_sku,
)
from presta_migrate.presta.models import (
    CanonicalProduct,
    CategoryInfo,
    ImageRef,
    ListPage,
    ProductListItem,
    Variant,
    VariantAttribute,
)
from presta_migrate.presta.normalize import canonical_from_api
from presta_migrate.presta.source import NotFound, ProductSource, SourceError, SourceErrorKind

logger = logging.getLogger("uvicorn.error")

LIST_DISPLAY = "[id,name,reference,price,active]"
SORT_ID_ASC = "[id_ASC]"
MAX_LIST_LIMIT = 250

# (strategy name, coroutine(product_id) -> raw product dict or None to continue)
Strategy = Tuple[str, Callable[[str], Awaitable[Optional[Dict[str, Any]]]]]


class PrestaShopClient(ProductSource):
    kind = "api"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        api_mode: str = "api",
        timeout: float = 30.0,
        scan_page_size: int = 250,
        scan_max_pages: int = 40,
        log: Optional[MigrationLog] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.api_mode = "dispatcher" if api_mode == "dispatcher" else "api"
        self.timeout = timeout
        self.scan_page_size = max(1, min(MAX_LIST_LIMIT, scan_page_size))
        self.scan_max_pages = max(1, scan_max_pages)
        self.log = log or MigrationLog()
        self._transport = transport
        # option value / option group lookups are shared by every combination
        self._option_values: Dict[str, Optional[Dict[str, Any]]] = {}
        self._option_groups: Dict[str, Optional[Dict[str, Any]]] = {}

    @classmethod
    def from_settings(cls, cfg: Settings, log: Optional[MigrationLog] = None) -> "PrestaShopClient":
        cfg.require_api()
        return cls(
            cfg.PRESTA_URL,
            cfg.PRESTA_API_KEY,
            api_mode=cfg.PRESTA_API_MODE,
            timeout=cfg.PRESTA_TIMEOUT,
            scan_page_size=cfg.PRESTA_SCAN_PAGE_SIZE,
            scan_max_pages=cfg.PRESTA_SCAN_MAX_PAGES,
            log=log,
        )

    # ---------------------------
    # HTTP plumbing
    # ---------------------------
    def _build_request(self, path: str, params: Optional[Dict[str, Any]]) -> Tuple[str, Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if self.api_mode == "dispatcher":
            url = f"{self.base_url}/webservice/dispatcher.php"
            query["url"] = path
        else:
            url = f"{self.base_url}/api/{path.lstrip('/')}"
        query.update(params or {})
        query["ws_key"] = self.api_key
        query["output_format"] = "JSON"
        return url, query

    async def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        url, query = self._build_request(path, params)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.get(url, params=query)
        except httpx.HTTPError as e:
            raise SourceError(f"PrestaShop request failed ({path}): {e}", SourceErrorKind.TRANSPORT) from e
        if r.status_code >= 400:
            raise SourceError(
                f"PrestaShop HTTP {r.status_code} ({path}): {summarize_body(r.text)}",
                SourceErrorKind.HTTP_STATUS,
                r.status_code,
            )
        return r

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        r = await self._request(path, params)
        if not r.content.strip():
            return {}
        try:
            return r.json()
        except ValueError as e:
            raise SourceError(
                f"PrestaShop returned non-JSON ({path}): {summarize_body(r.text)}",
                SourceErrorKind.DECODE,
                r.status_code,
            ) from e

    # ---------------------------
    # Capability set
    # ---------------------------
    async def test_connection(self) -> Dict[str, Any]:
        try:
            await self._get("products", {"display": "[id]", "limit": "0,1"})
        except SourceError as e:
            return {"success": False, "message": str(e)}
        return {"success": True, "message": f"Connected to {self.base_url} ({self.api_mode} mode)"}

    async def _list_products(self, offset: int, limit: int, *, display: str, sort: bool) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"display": display, "limit": f"{offset},{limit}"}
        if sort:
            params["sort"] = SORT_ID_ASC
        data = await self._get("products", params)
        items = parse_products_to_list(data)
        if not items and sort:
            # some gateways silently drop `sort` and answer empty
            self.log.info("[PS] empty page at offset %s with sort; retrying without sort", offset)
            data = await self._get("products", {"display": display, "limit": f"{offset},{limit}"})
            items = parse_products_to_list(data)
        return items

    async def list_page(self, offset: int, limit: int) -> ListPage:
        limit = max(1, min(MAX_LIST_LIMIT, int(limit)))
        offset = max(0, int(offset))
        raw_items = await self._list_products(offset, limit, display=LIST_DISPLAY, sort=True)
        items = [
            ProductListItem(
                id=product_id_scalar(p),
                name=first_localized_value(p.get("name")),
                reference=first_localized_value(p.get("reference")),
                price=first_localized_value(p.get("price")),
                active=to_bool(p.get("active")) if p.get("active") is not None else True,
            )
            for p in raw_items
            if product_id_scalar(p)
        ]
        return ListPage(items=items, has_more=len(raw_items) >= limit)

    async def fetch_product(self, product_id: str) -> CanonicalProduct:
        pid = str(product_id).strip()
        raw, strategy = await self._resolve_raw(pid)
        variants = None
        if association_list(raw.get("associations"), "combinations", "combination"):
            variants = await self.fetch_variants_for(pid, first_localized_value(raw.get("reference")).strip())
        return canonical_from_api(raw, base_url=self.base_url, variants=variants, fetch_strategy=strategy)

    async def fetch_raw(self, product_id: str) -> Dict[str, Any]:
        raw, strategy = await self._resolve_raw(str(product_id).strip())
        return {"strategy": strategy, "product": raw}

    async def fetch_category(self, category_id: str) -> CategoryInfo:
        cid = str(category_id).strip()
        try:
            data = await self._get(f"categories/{cid}")
        except SourceError as e:
            if e.is_not_found:
                raise NotFound("category", cid) from e
            raise
        cat = parse_single(data, "category")
        if not cat:
            raise NotFound("category", cid)
        return CategoryInfo(
            id=product_id_scalar(cat) or cid,
            parent_id=first_localized_value(cat.get("id_parent")).strip() or "0",
            name=first_localized_value(cat.get("name")).strip(),
            slug_hint=first_localized_value(cat.get("link_rewrite")).strip(),
            description=first_localized_value(cat.get("description")),
        )

    async def fetch_image_binary(self, product_id: str, image_id: str) -> bytes:
        r = await self._request(f"images/products/{product_id}/{image_id}")
        ctype = r.headers.get("content-type", "")
        if not ctype.lower().startswith("image/"):
            raise SourceError(
                f"image {product_id}/{image_id} is not an image (content-type {ctype or 'missing'})",
                SourceErrorKind.DECODE,
                r.status_code,
            )
        return r.content

    # ---------------------------
    # Product lookup strategies
    # ---------------------------
    def _fetch_strategies(self) -> List[Strategy]:
        chain: List[Strategy] = [("direct", self._by_direct_get)]
        if self.api_mode == "dispatcher":
            chain.append(("dispatcher_filter", self._by_dispatcher_filter))
        chain += [
            ("filter", self._by_filter),
            ("position", self._by_position),
            ("sorted_scan", self._by_sorted_scan),
            ("unsorted_scan", self._by_unsorted_scan),
        ]
        return chain

    async def _resolve_raw(self, pid: str) -> Tuple[Dict[str, Any], str]:
        for name, strategy in self._fetch_strategies():
            raw = await strategy(pid)
            if raw is not None:
                self.log.info("[PS] product %s resolved via %s", pid, name)
                return raw, name
        self.log.warning("[PS] product %s not found after all lookup strategies", pid)
        raise NotFound("product", pid)

    @staticmethod
    def _match(items: List[Dict[str, Any]], pid: str) -> Tuple[Optional[Dict[str, Any]], bool]:
        """(usable product, whether an ID-only stub was seen)"""
        stub = False
        for p in items:
            if product_id_scalar(p) != pid:
                continue
            if has_product_data(p):
                return p, stub
            stub = True
        return None, stub

    async def _by_direct_get(self, pid: str) -> Optional[Dict[str, Any]]:
        try:
            data = await self._get(f"products/{pid}")
        except SourceError as e:
            if e.is_not_found:
                self.log.info("[PS] direct GET products/%s → 404, trying fallbacks", pid)
                return None
            raise
        product = parse_single(data, "product")
        if product and has_product_data(product) and product_id_scalar(product) in ("", pid):
            if not product_id_scalar(product):
                product = {**product, "id": pid}
            return product
        return None

    async def _soft_list(self, label: str, pid: str, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            return parse_products_to_list(await self._get(path, params))
        except SourceError as e:
            self.log.info("[PS] %s lookup for %s failed: %s", label, pid, e)
            return []

    async def _by_dispatcher_filter(self, pid: str) -> Optional[Dict[str, Any]]:
        # filter travels inside the dispatcher's `url` parameter
        items = await self._soft_list(
            "dispatcher filter", pid,
            f"products?display=full&filter[id]=[{pid}]&limit=0,1", {},
        )
        found, _ = self._match(items, pid)
        return found

    async def _by_filter(self, pid: str) -> Optional[Dict[str, Any]]:
        items = await self._soft_list(
            "filter", pid, "products",
            {"display": "full", "filter[id]": f"[{pid}]", "limit": "0,1"},
        )
        found, stub = self._match(items, pid)
        if stub:
            self.log.info("[PS] filter lookup for %s returned an ID-only row", pid)
        return found

    async def _by_position(self, pid: str) -> Optional[Dict[str, Any]]:
        if not pid.isdigit() or int(pid) < 1:
            return None
        items = await self._soft_list(
            "position", pid, "products",
            {"display": "full", "sort": SORT_ID_ASC, "limit": f"{int(pid) - 1},1"},
        )
        found, _ = self._match(items, pid)
        return found

    async def _scan_page(self, pid: str, page: int, sort: bool) -> Tuple[Optional[Dict[str, Any]], bool, int]:
        offset = page * self.scan_page_size
        try:
            items = await self._list_products(offset, self.scan_page_size, display="full", sort=sort)
        except SourceError as e:
            self.log.info("[PS] scan page %s (sort=%s) for %s failed: %s", page, sort, pid, e)
            return None, False, -1
        found, stub = self._match(items, pid)
        return found, stub, len(items)

    async def _by_sorted_scan(self, pid: str) -> Optional[Dict[str, Any]]:
        for page in range(self.scan_max_pages):
            found, stub, count = await self._scan_page(pid, page, sort=True)
            if found is not None:
                return found
            if stub:
                self.log.info("[PS] sorted scan saw only an ID stub for %s; will rescan unsorted", pid)
                return None
            if count < self.scan_page_size:
                return None
        return None

    async def _by_unsorted_scan(self, pid: str) -> Optional[Dict[str, Any]]:
        pages = list(range(self.scan_max_pages))
        if pid.isdigit() and int(pid) > 0:
            likely = (int(pid) - 1) // self.scan_page_size
            if likely in pages:
                pages.remove(likely)
                pages.insert(0, likely)
        for idx, page in enumerate(pages):
            found, _, count = await self._scan_page(pid, page, sort=False)
            if found is not None:
                return found
            # past the end of the catalogue (the likely page may overshoot)
            if idx > 0 and 0 <= count < self.scan_page_size:
                return None
        return None

    # ---------------------------
    # Combinations
    # ---------------------------
    async def _lookup(self, cache: Dict[str, Optional[Dict[str, Any]]], resource: str, item: str, ident: str):
        if ident in cache:
            return cache[ident]
        try:
            node = parse_single(await self._get(f"{resource}/{ident}"), item)
        except SourceError as e:
            self.log.warning("[PS] %s/%s lookup failed: %s", resource, ident, e)
            node = None
        cache[ident] = node
        return node

    async def _variant_attributes(self, combo: Dict[str, Any]) -> List[VariantAttribute]:
        rows = []
        for ov in association_list(combo.get("associations"), "product_option_values", "product_option_value"):
            value = await self._lookup(self._option_values, "product_option_values", "product_option_value",
                                       product_id_scalar(ov))
            if not value:
                continue
            gid = first_localized_value(value.get("id_attribute_group")).strip()
            group = await self._lookup(self._option_groups, "product_options", "product_option", gid) if gid else None
            if not group:
                continue
            group_name = (first_localized_value(group.get("public_name")).strip()
                          or first_localized_value(group.get("name")).strip())
            value_name = first_localized_value(value.get("name")).strip()
            if group_name and value_name:
                rows.append((to_int(group.get("position")), to_int(value.get("position")),
                             VariantAttribute(group_name=group_name, value_name=value_name)))
        rows.sort(key=lambda r: (r[0], r[1]))
        return [r[2] for r in rows]

    async def fetch_variants_for(self, product_id: str, reference: str = "") -> List[Variant]:
        pid = str(product_id).strip()
        data = await self._get("combinations", {"display": "full", "filter[id_product]": f"[{pid}]"})
        variants: List[Variant] = []
        for combo in parse_list(data, "combinations", "combination"):
            vid = product_id_scalar(combo)
            if not vid:
                continue
            images = association_list(combo.get("associations"), "images", "image")
            image_id = product_id_scalar(images[0]) if images else ""
            variants.append(Variant(
                external_variant_id=vid,
                sku=variant_sku(combo.get("reference"), reference, vid),
                price_delta=to_decimal(combo.get("price")) or Decimal("0"),
                quantity=to_int(combo.get("quantity")),
                attributes=await self._variant_attributes(combo),
                image=ImageRef(source_image_id=image_id) if image_id else None,
            ))
        self.log.info("[PS] product %s: %d combinations loaded", pid, len(variants))
        return variants
