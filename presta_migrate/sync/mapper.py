#===========================================================================
# presta_migrate/sync/mapper.py
# One CanonicalProduct → one WooCommerce product (simple or variable).
# The product type is re-derived on every run, so a product can move
# between simple and variable as the source changes.
#===========================================================================
from __future__ import annotations

from typing import List, Optional, Tuple

from pydantic import BaseModel

from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.models import CanonicalProduct
from presta_migrate.sync.components.attributes import AttributeBuilder, BuiltAttributes
from presta_migrate.sync.components.brands import BrandResolver
from presta_migrate.sync.components.categories import CategoryResolver
from presta_migrate.sync.components.util import format_decimal, format_wc_price
from presta_migrate.woo.store import (
    EXTERNAL_ID_META,
    VARIATION_ID_META,
    AttributeSelection,
    DuplicateSkuError,
    ProductSpec,
    StoreError,
    TargetStore,
    VariationSpec,
)


class VariationStats(BaseModel):
    created: int = 0
    skipped_duplicate_sku: int = 0
    failed: int = 0
    missing_attributes: int = 0
    missing_stock: int = 0
    missing_images: int = 0


class MapResult(BaseModel):
    target_id: int
    created: bool
    product_type: str
    variations: Optional[VariationStats] = None


def stock_status(quantity: int) -> str:
    return "instock" if quantity > 0 else "outofstock"


class ProductMapper:
    def __init__(
        self,
        store: TargetStore,
        categories: CategoryResolver,
        attributes: AttributeBuilder,
        brands: BrandResolver,
        log: Optional[MigrationLog] = None,
    ):
        self.store = store
        self.categories = categories
        self.attributes = attributes
        self.brands = brands
        self.log = log or MigrationLog()

    # =========================
    # Payload building
    # =========================
    def _base_spec(self, product: CanonicalProduct, category_ids: List[int], image_ids: List[int]) -> ProductSpec:
        spec = ProductSpec(
            name=product.name or f"Product #{product.source_id}",
            status="publish" if product.active else "draft",
            description=product.description,
            short_description=product.short_description,
            meta={EXTERNAL_ID_META: product.source_id},
        )
        # an empty list clears the gallery; only send it when the source has no images either
        if image_ids or not product.images:
            spec.image_ids = image_ids
        if category_ids:
            spec.category_ids = category_ids
        weight = format_decimal(product.weight)
        if weight:
            spec.weight = weight
        dims = {
            "length": format_decimal(product.depth),
            "width": format_decimal(product.width),
            "height": format_decimal(product.height),
        }
        if any(dims.values()):
            spec.dimensions = {k: v or "" for k, v in dims.items()}
        ids = product.identifiers
        for key, value in (("_ean13", ids.ean13), ("_upc", ids.upc), ("_isbn", ids.isbn)):
            if value:
                spec.meta[key] = value
        return spec

    @staticmethod
    def _as_simple(spec: ProductSpec, product: CanonicalProduct) -> None:
        spec.type = "simple"
        spec.regular_price = format_wc_price(product.price)
        if product.reference:
            spec.sku = product.reference
        spec.manage_stock = True
        spec.stock_quantity = product.quantity
        spec.stock_status = stock_status(product.quantity)
        spec.attributes = []
        spec.default_attributes = []

    @staticmethod
    def _as_variable(spec: ProductSpec, built: BuiltAttributes) -> None:
        # parent carries no price/stock of its own; children do
        spec.type = "variable"
        spec.regular_price = ""
        spec.sku = ""
        spec.manage_stock = False
        spec.attributes = built.attributes

    # =========================
    # Entry point
    # =========================
    async def create_or_update(
        self,
        product: CanonicalProduct,
        existing_target_id: Optional[int] = None,
        image_ids: Optional[List[int]] = None,
    ) -> MapResult:
        """
        Raises StoreError when the main product can't be saved; category,
        attribute, brand and image problems are logged and skipped.
        """
        if image_ids is None:
            image_ids = [ref.media_id for ref in product.images if ref.media_id]

        category_ids = await self.categories.resolve_many(product.category_ids)
        if product.category_ids and not category_ids:
            self.log.info("[MAP] product %s: no categories resolved", product.source_id)

        spec = self._base_spec(product, category_ids, image_ids)
        built: Optional[BuiltAttributes] = None
        if product.is_variable:
            built = await self.attributes.build(product.variants)
            self._as_variable(spec, built)
        else:
            self._as_simple(spec, product)

        target_id, created = await self._persist(product, spec, existing_target_id)

        stats = None
        if built is not None:
            stats, defaults = await self._create_variations(target_id, product, built)
            await self._finish_variable(target_id, product, defaults)

        await self.brands.assign(target_id, product.manufacturer)

        self.log.info(
            "[MAP] product %s → %s %s (%s)%s",
            product.source_id, "created" if created else "updated", target_id, spec.type,
            f" variations={stats.created} sku_skipped={stats.skipped_duplicate_sku}" if stats else "",
        )
        return MapResult(target_id=target_id, created=created, product_type=spec.type, variations=stats)

    async def _persist(self, product: CanonicalProduct, spec: ProductSpec,
                       existing_target_id: Optional[int]) -> tuple[int, bool]:
        if existing_target_id:
            previous_type = await self.store.get_product_type(existing_target_id)
            if previous_type is not None:
                if previous_type == "variable":
                    # old children are replaced (or dropped when it became simple)
                    removed = await self.store.delete_variations(existing_target_id)
                    if removed:
                        self.log.info("[MAP] product %s: removed %d old variations", product.source_id, removed)
                await self.store.update_product(existing_target_id, spec)
                return existing_target_id, False
            self.log.info("[MAP] target %s for product %s no longer exists; creating",
                          existing_target_id, product.source_id)
        return await self.store.create_product(spec), True

    # =========================
    # Variations
    # =========================
    async def _create_variations(self, parent_id: int, product: CanonicalProduct,
                                 built: BuiltAttributes) -> Tuple[VariationStats, List[AttributeSelection]]:
        """
        Returns the stats and the default attributes: the selection of the
        first variation that was actually created and has attributes.
        """
        stats = VariationStats()
        defaults: List[AttributeSelection] = []
        for variant in product.variants:
            selections = built.selections_for(variant)
            if not selections:
                stats.missing_attributes += 1
            if variant.quantity <= 0:
                stats.missing_stock += 1
            media_id = variant.image.media_id if variant.image else None
            if not media_id:
                stats.missing_images += 1

            sku = (variant.sku or "").strip()
            if sku:
                try:
                    owner = await self.store.find_by_sku(sku)
                except StoreError as e:
                    self.log.warning("[MAP] SKU lookup %s failed: %s", sku, e)
                    owner = None
                if owner:
                    stats.skipped_duplicate_sku += 1
                    self.log.info("[MAP] variation %s skipped: duplicate SKU %s (product %s)",
                                  variant.external_variant_id, sku, owner)
                    continue

            quantity = variant.quantity
            vspec = VariationSpec(
                sku=sku or None,
                regular_price=format_wc_price(product.price + variant.price_delta),
                manage_stock=True,
                stock_quantity=quantity,
                stock_status=stock_status(quantity),
                image_id=media_id,
                attributes=selections,
                meta={VARIATION_ID_META: variant.external_variant_id},
            )
            try:
                await self.store.create_variation(parent_id, vspec)
            except DuplicateSkuError as e:
                stats.skipped_duplicate_sku += 1
                self.log.info("[MAP] variation %s skipped: %s", variant.external_variant_id, e)
                continue
            except StoreError as e:
                stats.failed += 1
                self.log.warning("[MAP] variation %s failed: %s", variant.external_variant_id, e)
                continue
            stats.created += 1
            if not defaults and selections:
                defaults = selections

        self.log.info(
            "[MAP] product %s variations: created=%d sku_skipped=%d failed=%d "
            "missing_attributes=%d missing_stock=%d missing_images=%d",
            product.source_id, stats.created, stats.skipped_duplicate_sku, stats.failed,
            stats.missing_attributes, stats.missing_stock, stats.missing_images,
        )
        return stats, defaults

    async def _finish_variable(self, parent_id: int, product: CanonicalProduct,
                               defaults: List[AttributeSelection]) -> None:
        try:
            if defaults:
                await self.store.update_product(parent_id, ProductSpec(default_attributes=defaults))
            await self.store.sync_variable_product(parent_id)
        except StoreError as e:
            self.log.warning("[MAP] product %s: default attributes / sync failed: %s", product.source_id, e)
