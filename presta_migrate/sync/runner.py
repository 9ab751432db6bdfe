#===========================================================================
# presta_migrate/sync/runner.py
# Batch runner: fetch → normalize → dedup → images → map, one product at a
# time. Item failures land in the report; only config / store-unavailable
# problems abort a batch. Resolver caches live on the runner instance.
#===========================================================================
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, List, Optional

import httpx
from pydantic import BaseModel, Field

from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.models import CanonicalProduct
from presta_migrate.presta.source import NotFound, ProductSource, SourceError
from presta_migrate.sync.components.attributes import AttributeBuilder
from presta_migrate.sync.components.brands import BrandResolver
from presta_migrate.sync.components.categories import CategoryResolver
from presta_migrate.sync.components.images import ImageAcquirer
from presta_migrate.sync.mapper import MapResult, ProductMapper, VariationStats
from presta_migrate.woo.store import StoreError, StoreUnavailableError, TargetStore

logger = logging.getLogger("uvicorn.error")


class MigratedItem(BaseModel):
    source_id: str
    target_id: int
    created: bool


class BatchDebugSnapshot(BaseModel):
    """What the first product of the batch looked like after normalization."""
    source_id: str
    name: str = ""
    price: str = ""
    quantity: int = 0
    reference: str = ""
    fetch_strategy: Optional[str] = None
    defaulted_fields: List[str] = Field(default_factory=list)
    category_ids: List[str] = Field(default_factory=list)
    image_count: int = 0
    variant_count: int = 0
    variations: Optional[VariationStats] = None


class BatchReport(BaseModel):
    migrated: List[MigratedItem] = Field(default_factory=list)
    total_processed: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    log: List[str] = Field(default_factory=list)
    debug: Optional[BatchDebugSnapshot] = None


class BatchRunner:
    def __init__(
        self,
        source: ProductSource,
        store: TargetStore,
        log: Optional[MigrationLog] = None,
        *,
        image_timeout: float = 15.0,
        image_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.source = source
        self.store = store
        self.log = log or MigrationLog()
        self.images = ImageAcquirer(source, store, self.log, timeout=image_timeout, transport=image_transport)
        self.mapper = ProductMapper(
            store,
            CategoryResolver(source, store, self.log),
            AttributeBuilder(store, self.log),
            BrandResolver(store, self.images, self.log),
            self.log,
        )

    async def _normalize(self, product: CanonicalProduct) -> CanonicalProduct:
        if not product.variants and await self.source.has_variants(product.source_id):
            product.variants = await self.source.fetch_variants_for(product.source_id, product.reference)
            self.log.info("[RUN] product %s: lazily loaded %d variants", product.source_id, len(product.variants))
        return product

    async def _find_existing(self, product: CanonicalProduct) -> Optional[int]:
        existing = await self.store.find_by_external_id(product.source_id)
        if existing:
            return existing
        if product.reference:
            existing = await self.store.find_by_sku(product.reference)
            if existing:
                self.log.info("[RUN] product %s matched existing %s by SKU %s",
                              product.source_id, existing, product.reference)
        return existing

    async def _process(self, source_id: str, update_existing: bool, report: BatchReport) -> None:
        product = await self.source.fetch_product(source_id)
        product = await self._normalize(product)

        existing = await self._find_existing(product)
        if existing and not update_existing:
            report.skipped += 1
            report.log.append(f"Product {source_id}: already imported as {existing}, skipped")
            return

        image_ids = await self.images.acquire_product_images(product)
        await self.images.acquire_variant_images(product)
        if product.images and not image_ids:
            report.log.append(f"Product {source_id}: no valid images")

        result: MapResult = await self.mapper.create_or_update(product, existing, image_ids)
        report.migrated.append(MigratedItem(source_id=product.source_id, target_id=result.target_id,
                                            created=result.created))
        report.log.append(
            f"Product {source_id} → {result.target_id} "
            f"({'created' if result.created else 'updated'}, {result.product_type})"
        )
        if report.debug is None:
            report.debug = BatchDebugSnapshot(
                source_id=product.source_id,
                name=product.name,
                price=str(product.price),
                quantity=product.quantity,
                reference=product.reference,
                fetch_strategy=product.fetch_strategy,
                defaulted_fields=list(product.defaulted_fields),
                category_ids=list(product.category_ids),
                image_count=len(image_ids),
                variant_count=len(product.variants),
                variations=result.variations,
            )

    async def run_batch(self, product_ids: List[str], update_existing: bool = True) -> BatchReport:
        if not await self.store.is_available():
            raise StoreUnavailableError("target store is not reachable")

        report = BatchReport()
        for raw_id in product_ids:
            source_id = str(raw_id).strip()
            if not source_id:
                continue
            report.total_processed += 1
            try:
                await self._process(source_id, update_existing, report)
            except StoreUnavailableError:
                raise
            except (NotFound, SourceError, StoreError, ValueError) as e:
                report.errors.append(f"Product {source_id}: {e}")
                self.log.warning("[RUN] product %s failed: %s", source_id, e)

        self.log.info(
            "[RUN] batch done: processed=%d migrated=%d skipped=%d errors=%d",
            report.total_processed, len(report.migrated), report.skipped, len(report.errors),
        )
        return report


# ---------------------------
# Driver loop
# ---------------------------
async def iter_source_ids(
    source: ProductSource,
    page_size: int = 100,
    stop_event: Optional[asyncio.Event] = None,
    start_offset: int = 0,
) -> AsyncIterator[List[str]]:
    """Yield one page of ids at a time until the source reports no more pages."""
    offset = start_offset
    while True:
        if stop_event is not None and stop_event.is_set():
            return
        page = await source.list_page(offset, page_size)
        ids = [item.id for item in page.items]
        if ids:
            yield ids
        if not page.has_more or not ids:
            return
        offset += len(ids)


class MigrationTotals(BaseModel):
    batches: int = 0
    processed: int = 0
    migrated: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    stopped: bool = False


async def migrate_all(
    runner: BatchRunner,
    *,
    page_size: int = 100,
    batch_size: int = 10,
    update_existing: bool = True,
    stop_event: Optional[asyncio.Event] = None,
) -> MigrationTotals:
    """
    List every source id and feed them to the runner in fixed-size batches.
    The stop event is checked between batches; an in-flight batch always finishes.
    """
    totals = MigrationTotals()
    batch_size = max(1, batch_size)
    async for ids in iter_source_ids(runner.source, page_size, stop_event):
        for start in range(0, len(ids), batch_size):
            if stop_event is not None and stop_event.is_set():
                totals.stopped = True
                return totals
            report = await runner.run_batch(ids[start:start + batch_size], update_existing)
            totals.batches += 1
            totals.processed += report.total_processed
            totals.migrated += len(report.migrated)
            totals.skipped += report.skipped
            totals.errors.extend(report.errors)
    totals.stopped = bool(stop_event is not None and stop_event.is_set())
    return totals
