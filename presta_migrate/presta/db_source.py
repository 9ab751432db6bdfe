#===========================================================================
# presta_migrate/presta/db_source.py
# PrestaShop database adapter. Reads the shop's tables directly (MySQL via
# aiomysql in production). Optional columns and tables are looked up before a
# query references them, so older/newer schemas don't break the import.
#===========================================================================

from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

import httpx
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from presta_migrate.config import ConfigError, Settings
from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.fields import to_decimal, to_int, variant_sku
from presta_migrate.presta.models import (
    CanonicalProduct,
    CategoryInfo,
    Identifiers,
    ImageRef,
    ListPage,
    Manufacturer,
    ProductListItem,
    Variant,
    VariantAttribute,
)
from presta_migrate.presta.normalize import logo_candidates
from presta_migrate.presta.source import NotFound, ProductSource, SourceError, SourceErrorKind

logger = logging.getLogger("uvicorn.error")

_PREFIX_RE = re.compile(r"^[A-Za-z0-9_]*$")
MAX_LIST_LIMIT = 500

PRODUCT_COLUMNS = (
    "id_product", "reference", "price", "active", "weight", "width", "height", "depth",
    "ean13", "upc", "isbn", "id_category_default", "id_manufacturer", "id_shop_default",
)


def image_url(base_url: str, image_id: str) -> str:
    """PrestaShop's folder-per-digit layout: 123 → /img/p/1/2/3/123.jpg"""
    folders = "/".join(str(image_id))
    return f"{base_url}/img/p/{folders}/{image_id}.jpg"


class PrestaShopDb(ProductSource):
    kind = "db"

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        prefix: str = "ps_",
        lang_id: int = 2,
        shop_id: Optional[int] = None,
        base_url: str = "",
        timeout: float = 30.0,
        log: Optional[MigrationLog] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not _PREFIX_RE.match(prefix or ""):
            raise ConfigError(f"invalid table prefix: {prefix!r}")
        self.engine = engine
        self.prefix = prefix or ""
        self.lang_id = lang_id
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.log = log or MigrationLog()
        self._transport = transport
        self._configured_shop = shop_id
        self._shop_resolved = shop_id is not None
        self._shop_id = shop_id
        self._columns: Dict[str, Set[str]] = {}

    @classmethod
    def from_settings(cls, cfg: Settings, log: Optional[MigrationLog] = None) -> "PrestaShopDb":
        from presta_migrate.db import get_engine

        return cls(
            get_engine(cfg),
            prefix=cfg.PRESTA_DB_PREFIX,
            lang_id=cfg.PRESTA_LANG_ID,
            shop_id=cfg.PRESTA_SHOP_ID,
            base_url=cfg.PRESTA_URL,
            timeout=cfg.PRESTA_TIMEOUT,
            log=log,
        )

    # ---------------------------
    # SQL helpers
    # ---------------------------
    def t(self, name: str) -> str:
        return f"`{self.prefix}{name}`"

    async def _rows(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(text(sql), params or {})
                return [dict(r._mapping) for r in result]
        except SQLAlchemyError as e:
            raise SourceError(f"PrestaShop DB query failed: {e}", SourceErrorKind.TRANSPORT) from e

    async def _first(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        rows = await self._rows(sql, params)
        return rows[0] if rows else None

    async def columns(self, table: str) -> Set[str]:
        """Column names of a prefixed table; empty set when the table doesn't exist."""
        if table in self._columns:
            return self._columns[table]
        full = f"{self.prefix}{table}"

        def _read_columns(sync_conn) -> Set[str]:
            insp = inspect(sync_conn)
            if not insp.has_table(full):
                return set()
            return {c["name"] for c in insp.get_columns(full)}

        try:
            async with self.engine.connect() as conn:
                cols = await conn.run_sync(_read_columns)
        except SQLAlchemyError as e:
            raise SourceError(f"PrestaShop DB schema inspection failed: {e}", SourceErrorKind.TRANSPORT) from e
        self._columns[table] = cols
        return cols

    async def table_exists(self, table: str) -> bool:
        return bool(await self.columns(table))

    async def has_column(self, table: str, column: str) -> bool:
        return column in await self.columns(table)

    async def shop_id(self) -> Optional[int]:
        """Configured shop, else the first active shop by lowest id."""
        if self._shop_resolved:
            return self._shop_id
        self._shop_resolved = True
        if await self.has_column("shop", "active"):
            row = await self._first(
                f"SELECT id_shop FROM {self.t('shop')} WHERE active = 1 ORDER BY id_shop LIMIT 1"
            )
            self._shop_id = int(row["id_shop"]) if row else None
        if self._shop_id is not None:
            self.log.info("[DB] using first active shop id_shop=%s", self._shop_id)
        return self._shop_id

    async def _shop_filter(self, table: str, alias: str, params: Dict[str, Any]) -> str:
        if not await self.has_column(table, "id_shop"):
            return ""
        shop = await self.shop_id()
        if shop is None:
            return ""
        params["shop"] = shop
        return f" AND {alias}.id_shop = :shop"

    async def _localized(self, table: str, key: str, ident: int, fields: List[str]) -> Dict[str, Any]:
        """
        Language row for the configured id_lang; falls back to the lowest
        available id_lang for that entity (logged).
        """
        cols = await self.columns(table)
        wanted = [f for f in fields if f in cols]
        if not wanted:
            return {}
        select = ", ".join(f"l.{f}" for f in wanted)
        params: Dict[str, Any] = {"id": ident, "lang": self.lang_id}
        shop_sql = await self._shop_filter(table, "l", params)
        row = await self._first(
            f"SELECT {select} FROM {self.t(table)} l WHERE l.{key} = :id AND l.id_lang = :lang{shop_sql} LIMIT 1",
            params,
        )
        if row:
            return row
        params.pop("lang")
        row = await self._first(
            f"SELECT l.id_lang, {select} FROM {self.t(table)} l WHERE l.{key} = :id{shop_sql} "
            f"ORDER BY l.id_lang LIMIT 1",
            params,
        )
        if not row:
            return {}
        self.log.info(
            "[DB] %s %s: no id_lang=%s row, falling back to id_lang=%s",
            table, ident, self.lang_id, row.get("id_lang"),
        )
        row.pop("id_lang", None)
        return row

    # ---------------------------
    # Capability set
    # ---------------------------
    async def test_connection(self) -> Dict[str, Any]:
        try:
            row = await self._first(f"SELECT COUNT(*) AS n FROM {self.t('product')}")
        except SourceError as e:
            return {"success": False, "message": str(e)}
        return {"success": True, "message": f"Connected; {int(row['n']) if row else 0} products"}

    async def list_page(self, offset: int, limit: int) -> ListPage:
        limit = max(1, min(MAX_LIST_LIMIT, int(limit)))
        offset = max(0, int(offset))
        params: Dict[str, Any] = {"lang": self.lang_id, "lim": limit + 1, "off": offset}
        shop_sql = await self._shop_filter("product_lang", "pl", params)
        rows = await self._rows(
            f"SELECT p.id_product, p.reference, p.price, p.active, pl.name "
            f"FROM {self.t('product')} p "
            f"LEFT JOIN {self.t('product_lang')} pl ON pl.id_product = p.id_product "
            f"AND pl.id_lang = :lang{shop_sql} "
            f"ORDER BY p.id_product LIMIT :lim OFFSET :off",
            params,
        )
        items = [
            ProductListItem(
                id=str(r["id_product"]),
                name=r.get("name") or "",
                reference=r.get("reference") or "",
                price=str(r.get("price") if r.get("price") is not None else ""),
                active=bool(to_int(r.get("active"), 1)),
            )
            for r in rows[:limit]
        ]
        return ListPage(items=items, has_more=len(rows) > limit)

    async def _product_row(self, pid: int) -> Dict[str, Any]:
        cols = await self.columns("product")
        select = ", ".join(f"p.{c}" for c in PRODUCT_COLUMNS if c in cols) or "p.id_product"
        row = await self._first(f"SELECT {select} FROM {self.t('product')} p WHERE p.id_product = :id", {"id": pid})
        if not row:
            raise NotFound("product", pid)
        return row

    async def _quantity(self, pid: int) -> Optional[int]:
        if not await self.table_exists("stock_available"):
            return None
        params: Dict[str, Any] = {"id": pid}
        shop_sql = await self._shop_filter("stock_available", "sa", params)
        sql = (f"SELECT sa.quantity FROM {self.t('stock_available')} sa "
               f"WHERE sa.id_product = :id AND sa.id_product_attribute = 0")
        row = await self._first(sql + shop_sql + " LIMIT 1", params)
        if row is None and shop_sql:
            # shared stock is stored with id_shop = 0
            row = await self._first(sql + " LIMIT 1", {"id": pid})
        return to_int(row["quantity"]) if row else None

    async def _category_ids(self, pid: int, default_cat: Any) -> List[str]:
        ids: List[str] = []
        if await self.table_exists("category_product"):
            order = " ORDER BY cp.position" if await self.has_column("category_product", "position") else ""
            rows = await self._rows(
                f"SELECT cp.id_category FROM {self.t('category_product')} cp WHERE cp.id_product = :id{order}",
                {"id": pid},
            )
            ids = [str(r["id_category"]) for r in rows]
        if default_cat:
            ids.append(str(default_cat))
        return ids

    async def _images(self, pid: int) -> List[ImageRef]:
        if not await self.table_exists("image"):
            return []
        cols = await self.columns("image")
        order = []
        if "cover" in cols:
            order.append("i.cover DESC")
        if "position" in cols:
            order.append("i.position ASC")
        order.append("i.id_image ASC")
        rows = await self._rows(
            f"SELECT i.id_image FROM {self.t('image')} i WHERE i.id_product = :id ORDER BY {', '.join(order)}",
            {"id": pid},
        )
        return [self._image_ref(str(r["id_image"])) for r in rows]

    def _image_ref(self, image_id: str) -> ImageRef:
        url = image_url(self.base_url, image_id) if self.base_url else None
        return ImageRef(url=url, source_image_id=image_id)

    async def _manufacturer(self, man_id: int) -> Manufacturer:
        if man_id <= 0:
            return Manufacturer()
        name = ""
        if await self.table_exists("manufacturer"):
            row = await self._first(
                f"SELECT m.name FROM {self.t('manufacturer')} m WHERE m.id_manufacturer = :id",
                {"id": man_id},
            )
            name = (row or {}).get("name") or ""
        if not name and await self.has_column("manufacturer_lang", "name"):
            name = (await self._localized("manufacturer_lang", "id_manufacturer", man_id, ["name"])).get("name") or ""
        return Manufacturer(id=man_id, name=name, logo_url_candidates=logo_candidates(self.base_url, man_id))

    async def fetch_product(self, product_id: str) -> CanonicalProduct:
        pid = to_int(product_id, -1)
        if pid <= 0:
            raise NotFound("product", product_id)
        row = await self._product_row(pid)
        lang = await self._localized(
            "product_lang", "id_product", pid, ["name", "description", "description_short", "link_rewrite"]
        )
        defaulted: List[str] = []
        if not lang.get("name"):
            defaulted.append("name")

        quantity = await self._quantity(pid)
        if quantity is None:
            defaulted.append("quantity")

        reference = (row.get("reference") or "").strip()
        price = to_decimal(row.get("price"), None)
        if price is None:
            defaulted.append("price")

        variants: List[Variant] = []
        if await self.has_variants(str(pid)):
            variants = await self.fetch_variants_for(str(pid), reference)

        return CanonicalProduct(
            source_id=str(pid),
            name=(lang.get("name") or "").strip(),
            description=lang.get("description") or "",
            short_description=lang.get("description_short") or "",
            price=price if price is not None else Decimal("0"),
            quantity=quantity or 0,
            active=bool(to_int(row.get("active"), 1)),
            reference=reference,
            weight=to_decimal(row.get("weight"), None),
            width=to_decimal(row.get("width"), None),
            height=to_decimal(row.get("height"), None),
            depth=to_decimal(row.get("depth"), None),
            identifiers=Identifiers(
                ean13=(row.get("ean13") or "").strip() or None,
                upc=(row.get("upc") or "").strip() or None,
                isbn=(row.get("isbn") or "").strip() or None,
            ),
            category_ids=await self._category_ids(pid, row.get("id_category_default")),
            manufacturer=await self._manufacturer(to_int(row.get("id_manufacturer"))),
            images=await self._images(pid),
            variants=variants,
            defaulted_fields=defaulted,
            fetch_strategy="db",
        )

    async def fetch_raw(self, product_id: str) -> Dict[str, Any]:
        pid = to_int(product_id, -1)
        row = await self._product_row(pid)
        lang = await self._localized("product_lang", "id_product", pid, ["name", "description_short", "link_rewrite"])
        return {"strategy": "db", "product": row, "lang": lang}

    async def has_variants(self, product_id: str) -> bool:
        if not await self.table_exists("product_attribute"):
            return False
        row = await self._first(
            f"SELECT COUNT(*) AS n FROM {self.t('product_attribute')} WHERE id_product = :id",
            {"id": to_int(product_id)},
        )
        return bool(row and int(row["n"]) > 0)

    async def _variant_stock(self, pid: int) -> Dict[int, int]:
        if not await self.table_exists("stock_available"):
            return {}
        params: Dict[str, Any] = {"id": pid}
        shop_sql = await self._shop_filter("stock_available", "sa", params)
        sql = (f"SELECT sa.id_product_attribute, sa.quantity FROM {self.t('stock_available')} sa "
               f"WHERE sa.id_product = :id AND sa.id_product_attribute > 0")
        rows = await self._rows(sql + shop_sql, params)
        if not rows and shop_sql:
            rows = await self._rows(sql, {"id": pid})
        return {int(r["id_product_attribute"]): to_int(r["quantity"]) for r in rows}

    async def _variant_attributes(self, pid: int) -> Dict[int, List[VariantAttribute]]:
        """
        Group and value names in the configured language; names missing there
        come from the lowest id_lang that has them.
        """
        group_expr = "{a}.name"
        if await self.has_column("attribute_group_lang", "public_name"):
            group_expr = "COALESCE(NULLIF({a}.public_name, ''), {a}.name)"
        group_fallback = (
            f"(SELECT {group_expr.format(a='agl2')} FROM {self.t('attribute_group_lang')} agl2 "
            f"WHERE agl2.id_attribute_group = ag.id_attribute_group ORDER BY agl2.id_lang LIMIT 1)"
        )
        value_fallback = (
            f"(SELECT al2.name FROM {self.t('attribute_lang')} al2 "
            f"WHERE al2.id_attribute = a.id_attribute ORDER BY al2.id_lang LIMIT 1)"
        )
        rows = await self._rows(
            f"SELECT pac.id_product_attribute AS paid, "
            f"{group_expr.format(a='agl')} AS group_name, al.name AS value_name, "
            f"{group_fallback} AS group_fallback, {value_fallback} AS value_fallback "
            f"FROM {self.t('product_attribute_combination')} pac "
            f"JOIN {self.t('product_attribute')} pa ON pa.id_product_attribute = pac.id_product_attribute "
            f"JOIN {self.t('attribute')} a ON a.id_attribute = pac.id_attribute "
            f"JOIN {self.t('attribute_group')} ag ON ag.id_attribute_group = a.id_attribute_group "
            f"LEFT JOIN {self.t('attribute_lang')} al ON al.id_attribute = a.id_attribute AND al.id_lang = :lang "
            f"LEFT JOIN {self.t('attribute_group_lang')} agl "
            f"ON agl.id_attribute_group = ag.id_attribute_group AND agl.id_lang = :lang "
            f"WHERE pa.id_product = :id "
            f"ORDER BY pac.id_product_attribute, ag.position, a.position",
            {"id": pid, "lang": self.lang_id},
        )
        out: Dict[int, List[VariantAttribute]] = {}
        fallbacks = 0
        for r in rows:
            g, v = (r.get("group_name") or "").strip(), (r.get("value_name") or "").strip()
            if not g or not v:
                fallbacks += 1
                g = g or (r.get("group_fallback") or "").strip()
                v = v or (r.get("value_fallback") or "").strip()
            if not g or not v:
                continue
            out.setdefault(int(r["paid"]), []).append(VariantAttribute(group_name=g, value_name=v))
        if fallbacks:
            self.log.info("[DB] product %s: %d attribute names missing for id_lang=%s, used another language",
                          pid, fallbacks, self.lang_id)
        return out

    async def _variant_images(self, pid: int) -> Dict[int, str]:
        if not await self.table_exists("product_attribute_image"):
            return {}
        rows = await self._rows(
            f"SELECT pai.id_product_attribute, pai.id_image FROM {self.t('product_attribute_image')} pai "
            f"JOIN {self.t('product_attribute')} pa ON pa.id_product_attribute = pai.id_product_attribute "
            f"WHERE pa.id_product = :id AND pai.id_image > 0 ORDER BY pai.id_image",
            {"id": pid},
        )
        images: Dict[int, str] = {}
        for r in rows:
            images.setdefault(int(r["id_product_attribute"]), str(r["id_image"]))
        return images

    async def fetch_variants_for(self, product_id: str, reference: str = "") -> List[Variant]:
        pid = to_int(product_id)
        params: Dict[str, Any] = {"id": pid}
        shop_join, shop_price = "", ""
        if await self.has_column("product_attribute_shop", "price"):
            shop = await self.shop_id()
            if shop is not None:
                params["shop"] = shop
                shop_price = ", pas.price AS shop_price"
                shop_join = (f" LEFT JOIN {self.t('product_attribute_shop')} pas "
                             f"ON pas.id_product_attribute = pa.id_product_attribute AND pas.id_shop = :shop")
        combos = await self._rows(
            f"SELECT pa.id_product_attribute, pa.reference, pa.price{shop_price} "
            f"FROM {self.t('product_attribute')} pa{shop_join} "
            f"WHERE pa.id_product = :id ORDER BY pa.id_product_attribute",
            params,
        )
        stock = await self._variant_stock(pid)
        attributes = await self._variant_attributes(pid)
        images = await self._variant_images(pid)

        variants: List[Variant] = []
        for c in combos:
            paid = int(c["id_product_attribute"])
            delta = to_decimal(c.get("shop_price"), None) if c.get("shop_price") is not None else None
            if delta is None:
                delta = to_decimal(c.get("price")) or Decimal("0")
            image_id = images.get(paid)
            variants.append(Variant(
                external_variant_id=str(paid),
                sku=variant_sku(c.get("reference"), reference, str(paid)),
                price_delta=delta,
                quantity=stock.get(paid, 0),
                attributes=attributes.get(paid, []),
                image=self._image_ref(image_id) if image_id else None,
            ))
        return variants

    async def fetch_category(self, category_id: str) -> CategoryInfo:
        cid = to_int(category_id, -1)
        row = await self._first(
            f"SELECT c.id_category, c.id_parent FROM {self.t('category')} c WHERE c.id_category = :id",
            {"id": cid},
        )
        if not row:
            raise NotFound("category", category_id)
        lang = await self._localized("category_lang", "id_category", cid, ["name", "link_rewrite", "description"])
        return CategoryInfo(
            id=str(row["id_category"]),
            parent_id=str(row.get("id_parent") or 0),
            name=(lang.get("name") or "").strip(),
            slug_hint=(lang.get("link_rewrite") or "").strip(),
            description=lang.get("description") or "",
        )

    async def fetch_image_binary(self, product_id: str, image_id: str) -> bytes:
        if not self.base_url:
            raise SourceError("PRESTA_URL is required to download images in DB mode", SourceErrorKind.TRANSPORT)
        url = image_url(self.base_url, str(image_id))
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport, follow_redirects=True) as client:
                r = await client.get(url)
        except httpx.HTTPError as e:
            raise SourceError(f"image download failed {url}: {e}", SourceErrorKind.TRANSPORT) from e
        if r.status_code >= 400:
            raise SourceError(f"image download {url} → HTTP {r.status_code}", SourceErrorKind.HTTP_STATUS, r.status_code)
        if not r.headers.get("content-type", "").lower().startswith("image/"):
            raise SourceError(f"{url} is not an image", SourceErrorKind.DECODE, r.status_code)
        return r.content
