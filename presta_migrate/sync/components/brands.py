# presta_migrate/sync/components/brands.py
from __future__ import annotations

from typing import Dict, Optional, Set

from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.models import Manufacturer
from presta_migrate.sync.components.images import ImageAcquirer
from presta_migrate.sync.components.util import normalize_name, slugify
from presta_migrate.woo.store import StoreError, TargetStore


class BrandResolver:
    """
    Manufacturer → brand term on the store (native product_brand, else the
    fallback taxonomy). Terms and logos are cached for the run.
    """

    def __init__(self, store: TargetStore, images: ImageAcquirer, log: Optional[MigrationLog] = None):
        self.store = store
        self.images = images
        self.log = log or MigrationLog()
        self._terms: Dict[str, int] = {}
        self._logos: Dict[int, int] = {}
        self._logo_checked: Set[int] = set()
        self._taxonomy_missing_logged = False

    async def resolve(self, manufacturer: Manufacturer) -> Optional[int]:
        name = normalize_name(manufacturer.name)
        if not name:
            self.log.brand("manufacturer %s has no usable name; no brand", manufacturer.id)
            return None

        taxonomy = await self.store.brand_taxonomy()
        if not taxonomy:
            if not self._taxonomy_missing_logged:
                self.log.warning("[BRAND] store has no brand taxonomy; brands are skipped")
                self._taxonomy_missing_logged = True
            return None

        slug = slugify(name)
        term_id = self._terms.get(slug)
        if term_id is None:
            term_id = await self.store.resolve_or_create_brand_term(name)
            self._terms[slug] = term_id
            self.log.brand("term %r → %s (%s)", name, term_id, taxonomy)

        try:
            await self._ensure_logo(term_id, manufacturer)
        except StoreError as e:
            self.log.warning("[BRAND] logo for %r not set: %s", name, e)
        return term_id

    async def _ensure_logo(self, term_id: int, manufacturer: Manufacturer) -> None:
        if term_id in self._logo_checked or not manufacturer.logo_url_candidates:
            return
        self._logo_checked.add(term_id)
        if await self.store.brand_has_thumbnail(term_id):
            return

        media_id = self._logos.get(manufacturer.id)
        if media_id is None:
            media_id = await self.images.first_valid(
                manufacturer.logo_url_candidates, f"brand-{slugify(manufacturer.name)}"
            )
            if media_id is None:
                self.log.brand("no valid logo for manufacturer %s", manufacturer.id)
                return
            self._logos[manufacturer.id] = media_id
        await self.store.set_brand_thumbnail(term_id, media_id)
        self.log.brand("logo %s set on term %s", media_id, term_id)

    async def assign(self, product_id: int, manufacturer: Manufacturer) -> Optional[int]:
        """Soft: store failures are logged, never raised."""
        try:
            term_id = await self.resolve(manufacturer)
            if term_id is None:
                return None
            await self.store.assign_brand(product_id, term_id)
        except StoreError as e:
            self.log.warning("[BRAND] product %s: brand %r not assigned: %s", product_id, manufacturer.name, e)
            return None
        return term_id
