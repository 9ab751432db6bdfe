# presta_migrate/db.py
# Async engine for reading the PrestaShop database directly (DB source mode).
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from presta_migrate.config import Settings, settings as default_settings

logger = logging.getLogger("uvicorn.error")

_engine: Optional[AsyncEngine] = None


def _resolve_dsn(cfg: Settings) -> str:
    """
    Prefer PRESTA_DB_URL, else build a MySQL (aiomysql) DSN from the
    PRESTA_DB_* parts. Raises ConfigError when neither is usable.
    """
    cfg.require_db()
    if cfg.PRESTA_DB_URL:
        return cfg.PRESTA_DB_URL
    url = URL.create(
        "mysql+aiomysql",
        username=cfg.PRESTA_DB_USER,
        password=cfg.PRESTA_DB_PASSWORD or None,
        host=cfg.PRESTA_DB_HOST,
        port=cfg.PRESTA_DB_PORT,
        database=cfg.PRESTA_DB_NAME,
        query={"charset": "utf8mb4"},
    )
    return url.render_as_string(hide_password=False)


def create_source_engine(dsn: str) -> AsyncEngine:
    kwargs = {"echo": False, "future": True}
    if not dsn.startswith("sqlite"):
        kwargs["pool_pre_ping"] = True
    return create_async_engine(dsn, **kwargs)


def get_engine(cfg: Settings | None = None) -> AsyncEngine:
    """
    Lazily create the global source AsyncEngine.
    """
    global _engine
    if _engine is None:
        dsn = _resolve_dsn(cfg or default_settings)
        _engine = create_source_engine(dsn)
        logger.info("[DB] engine initialized for %s", make_url(dsn).render_as_string(hide_password=True))
    return _engine


async def dispose_engine() -> None:
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
