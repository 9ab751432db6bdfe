#=================================================================
# presta_migrate/main_app.py
# FastAPI application entry-point.
#=================================================================

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from presta_migrate.config import ConfigError, settings
from presta_migrate.db import dispose_engine
from presta_migrate.logging_filters import install_html_trim_filter
from presta_migrate.presta.source import NotFound, SourceError
from presta_migrate.routes import router as api_router
from presta_migrate.woo.store import StoreError, StoreUnavailableError
from presta_migrate.workers.migration_job import migration_job

# --- FastAPI instance ---
app = FastAPI(
    title="PrestaShop → WooCommerce migration",
    description="Batch migration of a PrestaShop catalogue into WooCommerce.",
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
install_html_trim_filter()

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)  # /api/*


# --- Root endpoint ---
@app.get("/")
async def home():
    return {"status": "running", "service": "presta-migrate", "source": settings.PRESTA_SOURCE}


# --- Error mapping ---
@app.exception_handler(ConfigError)
async def config_error_handler(request: Request, exc: ConfigError):
    logger.error("[CFG] %s", exc)
    return JSONResponse(status_code=400, content={"detail": str(exc), "type": "config"})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(SourceError)
async def source_error_handler(request: Request, exc: SourceError):
    logger.error("[PS] %s", exc)
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "kind": exc.kind.value, "status_code": exc.status_code},
    )


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("[WC] %s", exc)
    code = 503 if isinstance(exc, StoreUnavailableError) else 502
    return JSONResponse(status_code=code, content={"detail": str(exc)})


# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---- Shutdown: stop a running migration between batches, release the DB pool ----
@app.on_event("shutdown")
async def _shutdown():
    if migration_job.stop():
        await migration_job.wait()
    await dispose_engine()
