# presta_migrate/presta/source.py
# The capability set every product source (webservice or database) provides.
# Runner, mapper and resolvers depend on this interface only.
from __future__ import annotations

import abc
import enum
from typing import Any, Dict, List, Optional

from presta_migrate.presta.models import CanonicalProduct, CategoryInfo, ListPage, Variant


class SourceErrorKind(str, enum.Enum):
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    DECODE = "decode"


class SourceError(Exception):
    def __init__(self, message: str, kind: SourceErrorKind = SourceErrorKind.TRANSPORT,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.kind == SourceErrorKind.HTTP_STATUS and self.status_code == 404

    @property
    def retryable(self) -> bool:
        if self.kind == SourceErrorKind.TRANSPORT:
            return True
        return self.kind == SourceErrorKind.HTTP_STATUS and (self.status_code or 0) >= 500


class NotFound(LookupError):
    """The id does not resolve to usable data (after every fallback)."""

    def __init__(self, what: str, ident: Any):
        super().__init__(f"{what} {ident} not found")
        self.what = what
        self.ident = ident


class ProductSource(abc.ABC):
    """Webservice and database adapters both implement this."""

    kind: str = "source"

    @abc.abstractmethod
    async def test_connection(self) -> Dict[str, Any]:
        """{"success": bool, "message": str}; never raises for connectivity problems."""

    @abc.abstractmethod
    async def list_page(self, offset: int, limit: int) -> ListPage:
        ...

    @abc.abstractmethod
    async def fetch_product(self, product_id: str) -> CanonicalProduct:
        """Raises NotFound or SourceError."""

    @abc.abstractmethod
    async def fetch_category(self, category_id: str) -> CategoryInfo:
        """Raises NotFound or SourceError."""

    @abc.abstractmethod
    async def fetch_image_binary(self, product_id: str, image_id: str) -> bytes:
        ...

    @abc.abstractmethod
    async def fetch_raw(self, product_id: str) -> Dict[str, Any]:
        """Raw upstream payload, for diagnostics."""

    async def has_variants(self, product_id: str) -> bool:
        # Webservice payloads already carry their combinations.
        return False

    async def fetch_variants_for(self, product_id: str, reference: str = "") -> List[Variant]:
        return []

    async def aclose(self) -> None:
        return None
