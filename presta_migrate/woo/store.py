# presta_migrate/woo/store.py
# What the mapper needs from the target catalogue. WooCommerceStore is the
# REST implementation; tests use an in-memory one.
from __future__ import annotations

import abc
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# Cross-reference meta written on every imported product / variation
EXTERNAL_ID_META = "_presa_prestashop_id"
VARIATION_ID_META = "_presa_id_product_attribute"


class StoreError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, code: str = "", body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.body = body


class StoreUnavailableError(StoreError):
    """Target store is not reachable at all; aborts the batch."""


class DuplicateSkuError(StoreError):
    """The store refused a SKU because another product/variation already uses it."""


class AttributeSpec(BaseModel):
    # None → product-local (custom) attribute
    taxonomy_id: Optional[int] = None
    name: str
    options: List[str] = Field(default_factory=list)
    visible: bool = True
    variation: bool = True


class AttributeSelection(BaseModel):
    taxonomy_id: Optional[int] = None
    name: str
    option: str


class ProductSpec(BaseModel):
    """Fields left as None are not sent (partial update); "" clears a field."""
    name: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    sku: Optional[str] = None
    regular_price: Optional[str] = None
    manage_stock: Optional[bool] = None
    stock_quantity: Optional[int] = None
    stock_status: Optional[str] = None
    weight: Optional[str] = None
    dimensions: Optional[Dict[str, str]] = None
    category_ids: Optional[List[int]] = None
    image_ids: Optional[List[int]] = None
    attributes: Optional[List[AttributeSpec]] = None
    default_attributes: Optional[List[AttributeSelection]] = None
    meta: Dict[str, str] = Field(default_factory=dict)


class VariationSpec(BaseModel):
    sku: Optional[str] = None
    regular_price: str = ""
    manage_stock: bool = True
    stock_quantity: int = 0
    stock_status: str = "outofstock"
    image_id: Optional[int] = None
    attributes: List[AttributeSelection] = Field(default_factory=list)
    meta: Dict[str, str] = Field(default_factory=dict)


class TermRef(BaseModel):
    taxonomy_id: int
    term_id: int
    name: str
    slug: str


class TargetStore(abc.ABC):

    @abc.abstractmethod
    async def is_available(self) -> bool: ...

    # -- products --
    @abc.abstractmethod
    async def find_by_external_id(self, source_id: str) -> Optional[int]: ...

    @abc.abstractmethod
    async def find_by_sku(self, sku: str) -> Optional[int]: ...

    @abc.abstractmethod
    async def get_product_type(self, product_id: int) -> Optional[str]: ...

    @abc.abstractmethod
    async def create_product(self, spec: ProductSpec) -> int: ...

    @abc.abstractmethod
    async def update_product(self, product_id: int, spec: ProductSpec) -> None: ...

    @abc.abstractmethod
    async def delete_variations(self, product_id: int) -> int: ...

    @abc.abstractmethod
    async def create_variation(self, product_id: int, spec: VariationSpec) -> int: ...

    @abc.abstractmethod
    async def sync_variable_product(self, product_id: int) -> None:
        """Recompute parent price/stock aggregates from the children."""

    @abc.abstractmethod
    async def delete_imported(self) -> int: ...

    # -- taxonomies --
    @abc.abstractmethod
    async def resolve_or_create_category(self, name: str, slug: str, parent_id: int = 0,
                                         description: str = "") -> int: ...

    @abc.abstractmethod
    async def resolve_or_create_attribute_taxonomy(self, name: str) -> int: ...

    @abc.abstractmethod
    async def resolve_or_create_attribute_term(self, taxonomy_id: int, value_name: str) -> TermRef: ...

    @abc.abstractmethod
    async def brand_taxonomy(self) -> Optional[str]:
        """Native brand taxonomy if present, else the fallback one; None when neither works."""

    @abc.abstractmethod
    async def resolve_or_create_brand_term(self, name: str) -> int: ...

    @abc.abstractmethod
    async def brand_has_thumbnail(self, term_id: int) -> bool: ...

    @abc.abstractmethod
    async def set_brand_thumbnail(self, term_id: int, media_id: int) -> None: ...

    @abc.abstractmethod
    async def assign_brand(self, product_id: int, term_id: int) -> None: ...

    # -- media --
    @abc.abstractmethod
    async def attach_media(self, data: bytes, suggested_name: str, content_type: str = "image/jpeg") -> int: ...
