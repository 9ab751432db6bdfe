#=======================================================================================
# presta_migrate/routes.py
# HTTP surface for driving the migration: connection test, product listing,
# batch migration, raw product debug, and cleanup of imported products.
#
# All routes require HTTP Basic (ADMIN_USER / ADMIN_PASS).
#=======================================================================================

import logging
import secrets
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel, Field

from presta_migrate.config import settings
from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.client import PrestaShopClient
from presta_migrate.presta.db_source import PrestaShopDb
from presta_migrate.presta.source import ProductSource
from presta_migrate.sync.runner import BatchRunner
from presta_migrate.woo.store import TargetStore
from presta_migrate.woo.woocommerce import StoreCache, WooCommerceStore
from presta_migrate.workers.migration_job import migration_job

logger = logging.getLogger("uvicorn.error")

# ---------------------------
# HTTP Basic
# ---------------------------
security = HTTPBasic()


def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    # an empty ADMIN_PASS never authenticates
    if not (settings.ADMIN_PASS and ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )


router = APIRouter(prefix="/api", tags=["Migration"], dependencies=[Depends(verify_admin)])


# ---------------------------
# Dependencies
# ---------------------------
# index, taxonomies and brand lookups outlive a single request
store_cache = StoreCache()


def get_log() -> MigrationLog:
    return MigrationLog(brand_debug=settings.BRAND_DEBUG)


def build_source(log: MigrationLog) -> ProductSource:
    if settings.PRESTA_SOURCE == "db":
        return PrestaShopDb.from_settings(settings, log)
    return PrestaShopClient.from_settings(settings, log)


async def get_source(log: MigrationLog = Depends(get_log)) -> AsyncIterator[ProductSource]:
    source = build_source(log)
    try:
        yield source
    finally:
        await source.aclose()


def get_store(log: MigrationLog = Depends(get_log)) -> TargetStore:
    return WooCommerceStore.from_settings(settings, log, cache=store_cache)


class MigrateRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)
    update_existing: Optional[bool] = None


# ---------------------------
# Routes
# ---------------------------
@router.get("/health")
async def health():
    return {"status": "ok"}


@router.post("/test-connection")
async def test_connection(source: ProductSource = Depends(get_source)):
    result = await source.test_connection()
    return {"source": source.kind, **result}


@router.get("/products")
async def list_products(
    offset: int = Query(0, ge=0),
    limit: int = Query(settings.MIGRATE_LIST_PAGE_SIZE, ge=1, le=500),
    source: ProductSource = Depends(get_source),
):
    page = await source.list_page(offset, limit)
    return {
        "items": [i.model_dump() for i in page.items],
        "has_more": page.has_more,
        "next_offset": offset + len(page.items),
    }


@router.post("/migrate")
async def migrate_batch(
    body: MigrateRequest,
    source: ProductSource = Depends(get_source),
    store: TargetStore = Depends(get_store),
    log: MigrationLog = Depends(get_log),
):
    ids = [str(i).strip() for i in body.ids if str(i).strip()]
    if not ids:
        raise HTTPException(status_code=400, detail="ids must be a non-empty list")
    if len(ids) > 100:
        raise HTTPException(status_code=400, detail="at most 100 ids per batch")
    update_existing = settings.MIGRATE_UPDATE_EXISTING if body.update_existing is None else body.update_existing

    runner = BatchRunner(source, store, log)
    report = await runner.run_batch(ids, update_existing=update_existing)
    logger.info("[RUN] /api/migrate processed=%d errors=%d", report.total_processed, len(report.errors))
    return {**report.model_dump(mode="json"), "events": log.entries(), "events_dropped": log.dropped}


@router.get("/products/{product_id}/raw")
async def debug_product(product_id: str, source: ProductSource = Depends(get_source)) -> Dict[str, Any]:
    raw = await source.fetch_raw(product_id)
    product = await source.fetch_product(product_id)
    return {
        "raw": jsonable_encoder(raw),
        "normalized": product.model_dump(mode="json"),
    }


@router.post("/delete-imported")
async def delete_imported(store: TargetStore = Depends(get_store)):
    deleted = await store.delete_imported()
    return {"deleted": deleted}


class MigrateAllRequest(BaseModel):
    page_size: Optional[int] = None
    batch_size: Optional[int] = None
    update_existing: Optional[bool] = None


@router.post("/migrate-all")
async def migrate_all_start(body: MigrateAllRequest, log: MigrationLog = Depends(get_log)):
    if migration_job.running:
        raise HTTPException(status_code=409, detail="a migration is already running")
    # the job outlives this request, so it gets its own source/store
    source = build_source(log)
    store = WooCommerceStore.from_settings(settings, log, cache=store_cache)
    migration_job.start(
        source,
        store,
        log,
        page_size=body.page_size or settings.MIGRATE_LIST_PAGE_SIZE,
        batch_size=body.batch_size or settings.MIGRATE_BATCH_SIZE,
        update_existing=settings.MIGRATE_UPDATE_EXISTING if body.update_existing is None else body.update_existing,
    )
    return {"started": True, **migration_job.status()}


@router.post("/migrate-all/stop")
async def migrate_all_stop():
    return {"stopping": migration_job.stop(), **migration_job.status()}


@router.get("/migrate-all/status")
async def migrate_all_status():
    return migration_job.status()
