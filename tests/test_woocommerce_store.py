import asyncio
import base64
import json

import httpx
import pytest

from presta_migrate.migrate_log import MigrationLog
from presta_migrate.woo.store import (
    EXTERNAL_ID_META,
    AttributeSelection,
    AttributeSpec,
    DuplicateSkuError,
    ProductSpec,
    StoreError,
    VariationSpec,
)
from presta_migrate.woo.woocommerce import StoreCache, WooCommerceStore, product_payload, variation_payload

BASE = "https://woo.test"


def _store(handler, **kw):
    return WooCommerceStore(BASE, "ck_test", "cs_test", transport=httpx.MockTransport(handler),
                            log=MigrationLog(brand_debug=True), **kw)


def test_product_payload_omits_unset_fields():
    spec = ProductSpec(
        name="Tee",
        type="variable",
        regular_price="",
        sku="",
        manage_stock=False,
        category_ids=[4],
        attributes=[AttributeSpec(taxonomy_id=3, name="Color", options=["Red"]),
                    AttributeSpec(name="Fit", options=["Slim"])],
        default_attributes=[AttributeSelection(taxonomy_id=3, name="Color", option="Red")],
        meta={EXTERNAL_ID_META: "20"},
    )
    data = product_payload(spec)
    assert "description" not in data
    assert data["regular_price"] == ""
    assert data["stock_quantity"] is None
    assert data["categories"] == [{"id": 4}]
    assert data["attributes"][0] == {"position": 0, "visible": True, "variation": True, "options": ["Red"], "id": 3}
    assert data["attributes"][1]["name"] == "Fit"
    assert data["default_attributes"] == [{"id": 3, "option": "Red"}]
    assert data["meta_data"] == [{"key": EXTERNAL_ID_META, "value": "20"}]


def test_variation_payload():
    data = variation_payload(VariationSpec(regular_price="24.99", stock_quantity=4, stock_status="instock",
                                           image_id=9, meta={"k": "v"}))
    assert "sku" not in data
    assert data["image"] == {"id": 9}
    assert data["stock_quantity"] == 4


def test_external_index_is_built_once_and_kept_current():
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.method == "GET" and request.url.path == "/wp-json/wc/v3/products":
            assert request.url.params["status"] == "any"
            return httpx.Response(200, json=[
                {"id": 7, "meta_data": [{"key": EXTERNAL_ID_META, "value": "10"}]},
                {"id": 8, "meta_data": []},
            ])
        if request.method == "POST":
            return httpx.Response(201, json={"id": 50})
        return httpx.Response(404, json={"code": "rest_no_route", "message": "nope"})

    store = _store(handler)

    async def run():
        first = await store.find_by_external_id("10")
        missing = await store.find_by_external_id("11")
        new_id = await store.create_product(ProductSpec(name="New", meta={EXTERNAL_ID_META: "11"}))
        return first, missing, new_id, await store.find_by_external_id("11")

    assert asyncio.run(run()) == (7, None, 50, 50)
    assert calls.count(("GET", "/wp-json/wc/v3/products")) == 1


def test_stores_sharing_a_cache_scan_the_catalogue_once():
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.method == "GET" and request.url.path == "/wp-json/wc/v3/products":
            return httpx.Response(200, json=[{"id": 7, "meta_data": [{"key": EXTERNAL_ID_META, "value": "10"}]}])
        if request.method == "POST":
            return httpx.Response(201, json={"id": 51})
        return httpx.Response(404, json={"code": "rest_no_route", "message": "nope"})

    cache = StoreCache()

    async def run():
        first = await _store(handler, cache=cache).find_by_external_id("10")
        await _store(handler, cache=cache).create_product(ProductSpec(name="New", meta={EXTERNAL_ID_META: "12"}))
        third = _store(handler, cache=cache)
        return first, await third.find_by_external_id("12"), await third.find_by_external_id("10")

    assert asyncio.run(run()) == (7, 51, 7)
    assert calls.count(("GET", "/wp-json/wc/v3/products")) == 1


def test_errors_carry_code_and_duplicate_sku_is_typed():
    def handler(request):
        return httpx.Response(400, json={"code": "product_invalid_sku", "message": "Invalid or duplicated SKU."})

    with pytest.raises(DuplicateSkuError) as exc:
        asyncio.run(_store(handler).create_variation(1, VariationSpec(sku="X")))
    assert exc.value.status_code == 400
    assert exc.value.code == "product_invalid_sku"

    def offline(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(StoreError):
        asyncio.run(_store(offline).create_product(ProductSpec(name="x")))
    assert asyncio.run(_store(offline).is_available()) is False


def test_category_term_exists_returns_existing_id():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json=[])
        return httpx.Response(400, json={"code": "term_exists", "message": "exists",
                                         "data": {"status": 400, "resource_id": 31}})

    assert asyncio.run(_store(handler).resolve_or_create_category("Lamps", "lamps")) == 31


def test_attribute_taxonomy_and_terms_are_matched_before_created():
    posts = []

    def handler(request):
        path = request.url.path
        if request.method == "POST":
            posts.append((path, json.loads(request.content)))
            return httpx.Response(201, json={"id": 99, "name": "Blue", "slug": "blue"})
        if path.endswith("/attributes"):
            return httpx.Response(200, json=[{"id": 3, "name": "Colour", "slug": "pa_color"}])
        if path.endswith("/attributes/3/terms"):
            return httpx.Response(200, json=[{"id": 40, "name": "Red", "slug": "red"}])
        return httpx.Response(404)

    store = _store(handler)

    async def run():
        tax = await store.resolve_or_create_attribute_taxonomy("Color")
        red = await store.resolve_or_create_attribute_term(tax, "Red")
        blue = await store.resolve_or_create_attribute_term(tax, "Blue")
        blue_again = await store.resolve_or_create_attribute_term(tax, "blue")
        return tax, red, blue, blue_again

    tax, red, blue, blue_again = asyncio.run(run())
    assert tax == 3
    assert red.term_id == 40
    assert blue.term_id == 99 and blue_again.term_id == 99
    assert posts == [("/wp-json/wc/v3/products/attributes/3/terms", {"name": "Blue", "slug": "blue"})]


def test_brand_taxonomy_falls_back_when_native_is_missing():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, request.headers.get("authorization")))
        path = request.url.path
        if path == "/wp-json/wp/v2/product_brand":
            return httpx.Response(404, json={"code": "rest_no_route", "message": "No route"})
        if path == "/wp-json/wp/v2/presa_product_brand" and request.method == "GET":
            return httpx.Response(200, json=[])
        if path == "/wp-json/wp/v2/presa_product_brand" and request.method == "POST":
            return httpx.Response(201, json={"id": 12})
        if path == "/wp-json/wp/v2/product/5":
            return httpx.Response(200, json={"id": 5})
        return httpx.Response(404)

    store = _store(handler, wp_username="admin", wp_password="app pass")

    async def run():
        taxonomy = await store.brand_taxonomy()
        term = await store.resolve_or_create_brand_term("Acme")
        await store.assign_brand(5, term)
        return taxonomy, term

    assert asyncio.run(run()) == ("presa_product_brand", 12)
    # native looked up once, then the fallback
    assert [s[1] for s in seen[:2]] == ["/wp-json/wp/v2/product_brand", "/wp-json/wp/v2/presa_product_brand"]
    wc_auth = "Basic " + base64.b64encode(b"ck_test:cs_test").decode()
    assert all(s[2] != wc_auth for s in seen)


def test_attach_media_sends_binary_with_disposition():
    captured = {}

    def handler(request):
        captured["headers"] = request.headers
        captured["body"] = request.content
        return httpx.Response(201, json={"id": 77})

    media_id = asyncio.run(_store(handler).attach_media(b"\x89PNG", "logo.png", "image/png"))
    assert media_id == 77
    assert captured["headers"]["content-disposition"] == 'attachment; filename="logo.png"'
    assert captured["headers"]["content-type"] == "image/png"
    assert captured["body"] == b"\x89PNG"
