# presta_migrate/sync/components/images.py
# Image acquisition: remote URLs are checked (HEAD: 200 + image/* content-type)
# before being downloaded; image ids go through the source adapter. Every
# acquired image ends up as a media id on the store.
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

import httpx

from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.models import CanonicalProduct, ImageRef
from presta_migrate.presta.source import ProductSource, SourceError
from presta_migrate.sync.components.util import basename, dedupe_preserve_order
from presta_migrate.woo.store import StoreError, TargetStore

logger = logging.getLogger(__name__)


def _is_image(content_type: str) -> bool:
    return (content_type or "").split(";")[0].strip().lower().startswith("image/")


class ImageAcquirer:
    def __init__(
        self,
        source: ProductSource,
        store: TargetStore,
        log: Optional[MigrationLog] = None,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.source = source
        self.store = store
        self.log = log or MigrationLog()
        self.timeout = timeout
        self._transport = transport
        # url / "pid:image_id" → media id, so a variant image that is also a
        # product image is uploaded once
        self._uploaded: Dict[str, int] = {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, follow_redirects=True, transport=self._transport)

    async def image_content_type(self, url: str) -> Optional[str]:
        """Content-type when the URL answers 200 with an image, else None."""
        try:
            async with self._client() as client:
                r = await client.head(url)
        except httpx.HTTPError as e:
            self.log.info("[IMG] skip %s: %s", url, e)
            return None
        ctype = r.headers.get("content-type", "")
        if r.status_code != 200 or not _is_image(ctype):
            self.log.info("[IMG] skip %s: HTTP %s, content-type %r", url, r.status_code, ctype)
            return None
        return ctype.split(";")[0].strip()

    async def download(self, url: str) -> Optional[Tuple[bytes, str]]:
        ctype = await self.image_content_type(url)
        if ctype is None:
            return None
        try:
            async with self._client() as client:
                r = await client.get(url)
        except httpx.HTTPError as e:
            self.log.info("[IMG] download failed %s: %s", url, e)
            return None
        if r.status_code != 200 or not r.content:
            self.log.info("[IMG] download failed %s: HTTP %s", url, r.status_code)
            return None
        return r.content, ctype

    async def upload_url(self, url: str, suggested_name: Optional[str] = None) -> Optional[int]:
        if url in self._uploaded:
            return self._uploaded[url]
        got = await self.download(url)
        if got is None:
            return None
        data, ctype = got
        try:
            media_id = await self.store.attach_media(data, suggested_name or basename(url), ctype)
        except StoreError as e:
            self.log.warning("[IMG] upload failed for %s: %s", url, e)
            return None
        self._uploaded[url] = media_id
        return media_id

    async def _upload_source_image(self, product_id: str, image_id: str) -> Optional[int]:
        key = f"{product_id}:{image_id}"
        if key in self._uploaded:
            return self._uploaded[key]
        try:
            data = await self.source.fetch_image_binary(product_id, image_id)
            media_id = await self.store.attach_media(data, f"product-{product_id}-{image_id}.jpg", "image/jpeg")
        except (SourceError, StoreError) as e:
            self.log.info("[IMG] image %s of product %s skipped: %s", image_id, product_id, e)
            return None
        self._uploaded[key] = media_id
        return media_id

    async def acquire(self, ref: ImageRef, product_id: str) -> Optional[int]:
        if ref.media_id:
            return ref.media_id
        media_id = None
        if ref.url:
            media_id = await self.upload_url(ref.url)
            if media_id is not None and ref.source_image_id:
                self._uploaded.setdefault(f"{product_id}:{ref.source_image_id}", media_id)
        if media_id is None and ref.source_image_id:
            media_id = await self._upload_source_image(product_id, ref.source_image_id)
        ref.media_id = media_id
        return media_id

    async def acquire_product_images(self, product: CanonicalProduct) -> List[int]:
        """Media ids in source order (first = featured); invalid candidates are dropped."""
        ids = []
        for ref in product.images:
            media_id = await self.acquire(ref, product.source_id)
            if media_id is not None:
                ids.append(media_id)
        return dedupe_preserve_order(ids)

    async def acquire_variant_images(self, product: CanonicalProduct) -> int:
        count = 0
        for variant in product.variants:
            if variant.image is None:
                continue
            if await self.acquire(variant.image, product.source_id) is not None:
                count += 1
        return count

    async def first_valid(self, urls: List[str], suggested_prefix: str) -> Optional[int]:
        """Upload the first candidate URL that validates; None when all fail."""
        for idx, url in enumerate(urls):
            name = f"{suggested_prefix}-{basename(url)}" if suggested_prefix else None
            media_id = await self.upload_url(url, name)
            if media_id is not None:
                return media_id
            logger.debug("[IMG] candidate %d/%d failed: %s", idx + 1, len(urls), url)
        return None
