# presta_migrate/sync/components/attributes.py
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.models import Variant
from presta_migrate.sync.components.util import normalize_name
from presta_migrate.woo.store import AttributeSelection, AttributeSpec, StoreError, TargetStore


def collect_attribute_groups(variants: List[Variant]) -> Dict[str, List[str]]:
    """
    Union of every variant's attribute dimensions.
    Group order and value order are first-seen.
    Returns: {"Color": ["Red", "Blue"], "Size": ["S", "M"]}
    """
    groups: Dict[str, List[str]] = {}
    for v in variants or []:
        for a in v.attributes:
            group, value = normalize_name(a.group_name), normalize_name(a.value_name)
            if not group or not value:
                continue
            values = groups.setdefault(group, [])
            if value not in values:
                values.append(value)
    return groups


class BuiltAttributes:
    def __init__(self):
        self.attributes: List[AttributeSpec] = []
        # (group name, value name) → selection to put on a variation
        self.lookup: Dict[Tuple[str, str], AttributeSelection] = {}

    def selections_for(self, variant: Variant) -> List[AttributeSelection]:
        out = []
        for a in variant.attributes:
            sel = self.lookup.get((normalize_name(a.group_name), normalize_name(a.value_name)))
            if sel is not None:
                out.append(sel)
        return out


class AttributeBuilder:
    """
    Global (pa_*) taxonomies per attribute group, terms per value. Taxonomy
    and term lookups are cached for the run; a group whose taxonomy can't be
    registered falls back to a product-local attribute.
    """

    def __init__(self, store: TargetStore, log: Optional[MigrationLog] = None):
        self.store = store
        self.log = log or MigrationLog()
        self._taxonomies: Dict[str, Optional[int]] = {}
        self._terms: Dict[Tuple[int, str], str] = {}

    async def _taxonomy(self, group: str) -> Optional[int]:
        if group not in self._taxonomies:
            try:
                self._taxonomies[group] = await self.store.resolve_or_create_attribute_taxonomy(group)
            except StoreError as e:
                self.log.warning("[ATTR] taxonomy for %r unavailable, using a local attribute: %s", group, e)
                self._taxonomies[group] = None
        return self._taxonomies[group]

    async def _term_name(self, taxonomy_id: int, value: str) -> Optional[str]:
        key = (taxonomy_id, value)
        if key not in self._terms:
            try:
                term = await self.store.resolve_or_create_attribute_term(taxonomy_id, value)
            except StoreError as e:
                self.log.warning("[ATTR] term %r (taxonomy %s) failed: %s", value, taxonomy_id, e)
                return None
            self._terms[key] = term.name
        return self._terms[key]

    async def build(self, variants: List[Variant]) -> BuiltAttributes:
        built = BuiltAttributes()
        for group, values in collect_attribute_groups(variants).items():
            taxonomy_id = await self._taxonomy(group)
            options: List[str] = []
            for value in values:
                option = value
                if taxonomy_id is not None:
                    option = await self._term_name(taxonomy_id, value)
                    if option is None:
                        continue
                options.append(option)
                built.lookup[(group, value)] = AttributeSelection(taxonomy_id=taxonomy_id, name=group, option=option)
            if options:
                built.attributes.append(AttributeSpec(
                    taxonomy_id=taxonomy_id, name=group, options=options, visible=True, variation=True,
                ))
        return built
