# presta_migrate/sync/components/categories.py
from __future__ import annotations

from typing import Dict, List, Optional, Set

from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.source import NotFound, ProductSource, SourceError
from presta_migrate.sync.components.util import normalize_name, slugify
from presta_migrate.woo.store import StoreError, TargetStore

ROOT_IDS = {"", "0"}


class CategoryResolver:
    """
    Source category id → target category term id, memoized for one run.
    Parents are resolved (and created) before their children; failures are
    cached as None so a broken category is looked at once.
    """

    def __init__(self, source: ProductSource, store: TargetStore, log: Optional[MigrationLog] = None):
        self.source = source
        self.store = store
        self.log = log or MigrationLog()
        self._cache: Dict[str, Optional[int]] = {}
        self._in_progress: Set[str] = set()

    async def resolve(self, source_category_id: str) -> Optional[int]:
        cid = str(source_category_id or "").strip()
        if cid in ROOT_IDS:
            return None
        if cid in self._cache:
            return self._cache[cid]
        if cid in self._in_progress:
            self.log.warning("[CAT] category %s is its own ancestor; linking to root", cid)
            return None

        self._in_progress.add(cid)
        try:
            term_id = await self._resolve_uncached(cid)
        finally:
            self._in_progress.discard(cid)
        self._cache[cid] = term_id
        return term_id

    async def _resolve_uncached(self, cid: str) -> Optional[int]:
        try:
            info = await self.source.fetch_category(cid)
        except (NotFound, SourceError) as e:
            self.log.warning("[CAT] category %s unavailable: %s", cid, e)
            return None

        name = normalize_name(info.name)
        if not name:
            self.log.warning("[CAT] category %s has no name; skipped", cid)
            return None
        slug = slugify(info.slug_hint or name)

        parent_term = 0
        if info.parent_id not in ROOT_IDS and info.parent_id != cid:
            parent_term = await self.resolve(info.parent_id) or 0

        try:
            return await self.store.resolve_or_create_category(name, slug, parent_term, info.description or "")
        except StoreError as e:
            self.log.warning("[CAT] could not create category %s (%s): %s", cid, name, e)
            return None

    async def resolve_many(self, source_category_ids: List[str]) -> List[int]:
        out: List[int] = []
        for cid in source_category_ids:
            term_id = await self.resolve(cid)
            if term_id and term_id not in out:
                out.append(term_id)
        return out
