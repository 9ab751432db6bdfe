# presta_migrate/presta/models.py
# Canonical (source-agnostic) product shapes produced by the source adapters.
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ImageRef(BaseModel):
    """Remote `url` to download, or `source_image_id` to fetch through the adapter."""
    url: Optional[str] = None
    source_image_id: Optional[str] = None
    # Filled by image acquisition; the mapper only ever reads this.
    media_id: Optional[int] = None


class VariantAttribute(BaseModel):
    group_name: str
    value_name: str


class Variant(BaseModel):
    external_variant_id: str
    sku: str = ""
    price_delta: Decimal = Decimal("0")
    quantity: int = 0
    attributes: List[VariantAttribute] = Field(default_factory=list)
    image: Optional[ImageRef] = None

    def attribute_map(self) -> dict:
        return {a.group_name: a.value_name for a in self.attributes if a.group_name and a.value_name}


class Identifiers(BaseModel):
    ean13: Optional[str] = None
    upc: Optional[str] = None
    isbn: Optional[str] = None


class Manufacturer(BaseModel):
    id: int = 0
    name: str = ""
    logo_url_candidates: List[str] = Field(default_factory=list)


class CanonicalProduct(BaseModel):
    source_id: str
    name: str = ""
    description: str = ""
    short_description: str = ""
    price: Decimal = Decimal("0")
    quantity: int = 0
    active: bool = True
    reference: str = ""

    weight: Optional[Decimal] = None
    width: Optional[Decimal] = None
    height: Optional[Decimal] = None
    depth: Optional[Decimal] = None

    identifiers: Identifiers = Field(default_factory=Identifiers)
    category_ids: List[str] = Field(default_factory=list)
    manufacturer: Manufacturer = Field(default_factory=Manufacturer)
    images: List[ImageRef] = Field(default_factory=list)
    variants: List[Variant] = Field(default_factory=list)

    # Which fields the adapter had to default, and which lookup found the product
    defaulted_fields: List[str] = Field(default_factory=list)
    fetch_strategy: Optional[str] = None

    @field_validator("source_id")
    @classmethod
    def _source_id_present(cls, v: str) -> str:
        v = str(v or "").strip()
        if not v:
            raise ValueError("source_id must be non-empty")
        return v

    @field_validator("category_ids")
    @classmethod
    def _dedupe_categories(cls, v: List[str]) -> List[str]:
        seen, out = set(), []
        for cid in v:
            cid = str(cid).strip()
            if cid and cid != "0" and cid not in seen:
                seen.add(cid)
                out.append(cid)
        return out

    @property
    def is_variable(self) -> bool:
        return bool(self.variants)


class ProductListItem(BaseModel):
    id: str
    name: str = ""
    reference: str = ""
    price: str = ""
    active: bool = True


class ListPage(BaseModel):
    items: List[ProductListItem] = Field(default_factory=list)
    has_more: bool = False


class CategoryInfo(BaseModel):
    id: str
    parent_id: str = "0"
    name: str = ""
    slug_hint: str = ""
    description: str = ""
