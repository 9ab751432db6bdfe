# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


class ConfigError(RuntimeError):
    """Required configuration is missing; fatal for the whole batch."""


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_optional_int(name: str) -> int | None:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw.isdigit() else None


class Settings:
    # ── PrestaShop source ────────────────────────────────────────────────────
    PRESTA_SOURCE: str = (os.getenv("PRESTA_SOURCE", "api") or "api").strip().lower()  # api | db
    PRESTA_URL: str = _rstrip_slash(os.getenv("PRESTA_URL", ""))
    PRESTA_API_KEY: str = os.getenv("PRESTA_API_KEY", "")
    # "api" → /api/{path}, "dispatcher" → /webservice/dispatcher.php?url={path}
    PRESTA_API_MODE: str = (os.getenv("PRESTA_API_MODE", "api") or "api").strip().lower()
    PRESTA_LANG_ID: int = _get_int("PRESTA_LANG_ID", 2)
    PRESTA_TIMEOUT: int = _get_int("PRESTA_TIMEOUT", 30)

    # Fallback page scan bounds for products the webservice won't return directly
    PRESTA_SCAN_PAGE_SIZE: int = _get_int("PRESTA_SCAN_PAGE_SIZE", 250)
    PRESTA_SCAN_MAX_PAGES: int = _get_int("PRESTA_SCAN_MAX_PAGES", 40)

    # ── PrestaShop database ──────────────────────────────────────────────────
    PRESTA_DB_URL: str = os.getenv("PRESTA_DB_URL", "")
    PRESTA_DB_HOST: str = os.getenv("PRESTA_DB_HOST", "")
    PRESTA_DB_PORT: int = _get_int("PRESTA_DB_PORT", 3306)
    PRESTA_DB_USER: str = os.getenv("PRESTA_DB_USER", "")
    PRESTA_DB_PASSWORD: str = os.getenv("PRESTA_DB_PASSWORD", "")
    PRESTA_DB_NAME: str = os.getenv("PRESTA_DB_NAME", "")
    PRESTA_DB_PREFIX: str = os.getenv("PRESTA_DB_PREFIX", "ps_")
    # empty → first active shop (lowest id_shop)
    PRESTA_SHOP_ID: int | None = _get_optional_int("PRESTA_SHOP_ID")

    # ── WooCommerce / WordPress ──────────────────────────────────────────────
    WC_BASE_URL: str = _rstrip_slash(os.getenv("WC_BASE_URL", ""))
    WC_API_KEY: str = os.getenv("WC_API_KEY", "")
    WC_API_SECRET: str = os.getenv("WC_API_SECRET", "")
    WC_VERIFY_SSL: bool = _get_bool("WC_VERIFY_SSL", True)
    WC_TIMEOUT: int = _get_int("WC_TIMEOUT", 60)

    # WP auth (Application Password)
    WP_USERNAME: str = os.getenv("WP_USERNAME", "")
    WP_PASSWORD: str = os.getenv("WP_APP_PASSWORD", "")  # keep the name WP_PASSWORD in code

    # Used when the store has no native product_brand taxonomy
    BRAND_FALLBACK_TAXONOMY: str = os.getenv("BRAND_FALLBACK_TAXONOMY", "presa_product_brand")
    BRAND_DEBUG: bool = _get_bool("BRAND_DEBUG", False)

    # ── Migration driver ─────────────────────────────────────────────────────
    MIGRATE_BATCH_SIZE: int = _get_int("MIGRATE_BATCH_SIZE", 10)
    MIGRATE_LIST_PAGE_SIZE: int = _get_int("MIGRATE_LIST_PAGE_SIZE", 100)
    MIGRATE_UPDATE_EXISTING: bool = _get_bool("MIGRATE_UPDATE_EXISTING", True)

    # ── Admin API ────────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    def require_api(self) -> None:
        missing = [k for k in ("PRESTA_URL", "PRESTA_API_KEY") if not getattr(self, k)]
        if missing:
            raise ConfigError(f"PrestaShop API is not configured (missing {', '.join(missing)})")

    def require_db(self) -> None:
        if self.PRESTA_DB_URL:
            return
        missing = [
            k for k in ("PRESTA_DB_HOST", "PRESTA_DB_USER", "PRESTA_DB_NAME")
            if not getattr(self, k)
        ]
        if missing:
            raise ConfigError(f"PrestaShop database is not configured (missing {', '.join(missing)})")

    def require_store(self) -> None:
        missing = [k for k in ("WC_BASE_URL", "WC_API_KEY", "WC_API_SECRET") if not getattr(self, k)]
        if missing:
            raise ConfigError(f"WooCommerce is not configured (missing {', '.join(missing)})")


settings = Settings()
