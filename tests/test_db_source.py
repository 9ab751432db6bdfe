import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import text

from presta_migrate.config import ConfigError
from presta_migrate.db import create_source_engine
from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.db_source import PrestaShopDb, image_url
from presta_migrate.presta.source import NotFound

BASE = "https://shop.test"

FULL_SCHEMA = [
    "CREATE TABLE ps_shop (id_shop INTEGER, active INTEGER)",
    "INSERT INTO ps_shop VALUES (1, 0), (2, 1), (3, 1)",

    "CREATE TABLE ps_product (id_product INTEGER, reference TEXT, price NUMERIC, active INTEGER, "
    "weight NUMERIC, width NUMERIC, height NUMERIC, depth NUMERIC, ean13 TEXT, upc TEXT, isbn TEXT, "
    "id_category_default INTEGER, id_manufacturer INTEGER, id_shop_default INTEGER)",
    "INSERT INTO ps_product VALUES "
    "(1, 'CHAIR', 45.5, 1, 3.2, 40, 90, 45, '4006381333931', '', NULL, 3, 4, 2), "
    "(2, 'TEE', 20, 1, 0, 0, 0, 0, '', '', '', 3, 0, 2), "
    "(3, 'OLD', 1, 0, 0, 0, 0, 0, '', '', '', 0, 0, 2)",

    "CREATE TABLE ps_product_lang (id_product INTEGER, id_shop INTEGER, id_lang INTEGER, name TEXT, "
    "description TEXT, description_short TEXT, link_rewrite TEXT)",
    "INSERT INTO ps_product_lang VALUES "
    "(1, 2, 1, 'Chaise', '<p>Bois</p>', 'Bois', 'chaise'), "
    "(1, 1, 2, 'Wrong shop', '', '', 'wrong'), "
    "(2, 2, 2, 'Tee', '<p>Cotton</p>', 'Cotton', 'tee')",

    "CREATE TABLE ps_stock_available (id_product INTEGER, id_product_attribute INTEGER, "
    "id_shop INTEGER, quantity INTEGER)",
    "INSERT INTO ps_stock_available VALUES "
    "(1, 0, 0, 7), (2, 0, 2, 9), (2, 201, 2, 4), (2, 202, 2, 0)",

    "CREATE TABLE ps_category_product (id_category INTEGER, id_product INTEGER, position INTEGER)",
    "INSERT INTO ps_category_product VALUES (5, 1, 1), (3, 1, 0)",

    "CREATE TABLE ps_image (id_image INTEGER, id_product INTEGER, position INTEGER, cover INTEGER)",
    "INSERT INTO ps_image VALUES (10, 1, 2, 0), (11, 1, 1, 1), (12, 1, 0, 0), (21, 2, 1, 1)",

    "CREATE TABLE ps_manufacturer (id_manufacturer INTEGER, name TEXT)",
    "INSERT INTO ps_manufacturer VALUES (4, 'Acme')",

    "CREATE TABLE ps_category (id_category INTEGER, id_parent INTEGER)",
    "INSERT INTO ps_category VALUES (3, 2), (5, 3)",
    "CREATE TABLE ps_category_lang (id_category INTEGER, id_shop INTEGER, id_lang INTEGER, name TEXT, "
    "link_rewrite TEXT, description TEXT)",
    "INSERT INTO ps_category_lang VALUES (3, 2, 2, 'Chairs', 'chairs', '')",

    "CREATE TABLE ps_product_attribute (id_product_attribute INTEGER, id_product INTEGER, "
    "reference TEXT, price NUMERIC)",
    "INSERT INTO ps_product_attribute VALUES (201, 2, 'TEE-RED-M', 1), (202, 2, '', 2)",
    "CREATE TABLE ps_product_attribute_shop (id_product_attribute INTEGER, id_shop INTEGER, price NUMERIC)",
    "INSERT INTO ps_product_attribute_shop VALUES (201, 2, 5), (202, 1, 9)",
    "CREATE TABLE ps_product_attribute_combination (id_attribute INTEGER, id_product_attribute INTEGER)",
    "INSERT INTO ps_product_attribute_combination VALUES (11, 201), (21, 201), (12, 202), (22, 202)",
    "CREATE TABLE ps_attribute (id_attribute INTEGER, id_attribute_group INTEGER, position INTEGER)",
    "INSERT INTO ps_attribute VALUES (11, 1, 0), (12, 1, 1), (21, 2, 0), (22, 2, 1)",
    "CREATE TABLE ps_attribute_lang (id_attribute INTEGER, id_lang INTEGER, name TEXT)",
    "INSERT INTO ps_attribute_lang VALUES (11, 2, 'Red'), (12, 2, 'Blue'), (21, 2, 'M'), (22, 2, 'L')",
    "CREATE TABLE ps_attribute_group (id_attribute_group INTEGER, position INTEGER)",
    "INSERT INTO ps_attribute_group VALUES (1, 1), (2, 0)",
    "CREATE TABLE ps_attribute_group_lang (id_attribute_group INTEGER, id_lang INTEGER, name TEXT, "
    "public_name TEXT)",
    "INSERT INTO ps_attribute_group_lang VALUES (1, 2, 'Color', ''), (2, 2, 'size-internal', 'Size')",
    "CREATE TABLE ps_product_attribute_image (id_product_attribute INTEGER, id_image INTEGER)",
    "INSERT INTO ps_product_attribute_image VALUES (201, 21)",
]

# An older schema: no identifiers or manufacturer column, no stock/image tables
OLD_SCHEMA = [
    "CREATE TABLE old_product (id_product INTEGER, reference TEXT, price NUMERIC, active INTEGER)",
    "INSERT INTO old_product VALUES (1, 'LEGACY', 9.5, 1)",
    "CREATE TABLE old_product_lang (id_product INTEGER, id_lang INTEGER, name TEXT)",
    "INSERT INTO old_product_lang VALUES (1, 2, 'Legacy item')",
]


# Attribute names present only in other languages than the configured one
MIXED_LANG_SCHEMA = [
    "CREATE TABLE ps_product_attribute (id_product_attribute INTEGER, id_product INTEGER, "
    "reference TEXT, price NUMERIC)",
    "INSERT INTO ps_product_attribute VALUES (401, 4, 'CUP-S', 0), (402, 4, '', 1.5)",
    "CREATE TABLE ps_product_attribute_combination (id_attribute INTEGER, id_product_attribute INTEGER)",
    "INSERT INTO ps_product_attribute_combination VALUES (31, 401), (32, 402)",
    "CREATE TABLE ps_attribute (id_attribute INTEGER, id_attribute_group INTEGER, position INTEGER)",
    "INSERT INTO ps_attribute VALUES (31, 3, 0), (32, 3, 1)",
    "CREATE TABLE ps_attribute_lang (id_attribute INTEGER, id_lang INTEGER, name TEXT)",
    "INSERT INTO ps_attribute_lang VALUES (31, 3, 'Klein'), (31, 1, 'Small'), (32, 2, 'Grande')",
    "CREATE TABLE ps_attribute_group (id_attribute_group INTEGER, position INTEGER)",
    "INSERT INTO ps_attribute_group VALUES (3, 0)",
    "CREATE TABLE ps_attribute_group_lang (id_attribute_group INTEGER, id_lang INTEGER, name TEXT, "
    "public_name TEXT)",
    "INSERT INTO ps_attribute_group_lang VALUES (3, 3, 'groesse', 'Groesse'), (3, 1, 'cup-size', 'Size')",
]


def _run(tmp_path, statements, scenario):
    async def main():
        engine = create_source_engine(f"sqlite+aiosqlite:///{tmp_path / 'ps.db'}")
        try:
            async with engine.begin() as conn:
                for stmt in statements:
                    await conn.execute(text(stmt))
            return await scenario(engine)
        finally:
            await engine.dispose()

    return asyncio.run(main())


def test_image_url_uses_digit_folders():
    assert image_url(BASE, "123") == f"{BASE}/img/p/1/2/3/123.jpg"


def test_prefix_is_validated():
    with pytest.raises(ConfigError):
        PrestaShopDb(None, prefix="ps_; DROP TABLE x")


def test_fetch_product_assembles_simple_product(tmp_path):
    log = MigrationLog()

    async def scenario(engine):
        db = PrestaShopDb(engine, prefix="ps_", lang_id=2, base_url=BASE, log=log)
        return await db.fetch_product("1")

    p = _run(tmp_path, FULL_SCHEMA, scenario)
    assert p.source_id == "1"
    # lang 2 exists only for another shop, so lang 1 of the active shop wins
    assert p.name == "Chaise"
    assert p.short_description == "Bois"
    assert p.price == Decimal("45.5")
    # shared stock row (id_shop = 0)
    assert p.quantity == 7
    assert p.category_ids == ["3", "5"]
    assert [i.source_image_id for i in p.images] == ["11", "12", "10"]
    assert p.images[0].url == f"{BASE}/img/p/1/1/11.jpg"
    assert p.manufacturer.id == 4
    assert p.manufacturer.name == "Acme"
    assert p.manufacturer.logo_url_candidates == [f"{BASE}/img/m/4.jpg", f"{BASE}/img/m/4.png"]
    assert p.identifiers.ean13 == "4006381333931"
    assert p.identifiers.upc is None
    assert p.variants == []
    assert p.fetch_strategy == "db"

    messages = log.messages()
    assert any("first active shop id_shop=2" in m for m in messages)
    assert any("falling back to id_lang=1" in m for m in messages)


def test_fetch_product_loads_ordered_variants(tmp_path):
    async def scenario(engine):
        db = PrestaShopDb(engine, prefix="ps_", lang_id=2, base_url=BASE)
        return await db.fetch_product("2")

    p = _run(tmp_path, FULL_SCHEMA, scenario)
    assert p.is_variable
    assert p.quantity == 9
    red, blue = p.variants
    # group position: Size (0) before Color (1); empty public_name falls back to name
    assert [(a.group_name, a.value_name) for a in red.attributes] == [("Size", "M"), ("Color", "Red")]
    assert [(a.group_name, a.value_name) for a in blue.attributes] == [("Size", "L"), ("Color", "Blue")]
    # per-shop price wins where the shop has one
    assert red.price_delta == Decimal("5")
    assert blue.price_delta == Decimal("2")
    assert red.sku == "TEE-RED-M"
    assert blue.sku == "TEE-202"
    assert (red.quantity, blue.quantity) == (4, 0)
    assert red.image.source_image_id == "21"
    assert blue.image is None


def test_attribute_names_fall_back_to_lowest_language(tmp_path):
    log = MigrationLog()

    async def scenario(engine):
        db = PrestaShopDb(engine, prefix="ps_", lang_id=2, base_url=BASE, log=log)
        return await db.fetch_variants_for("4", "CUP")

    small, large = _run(tmp_path, MIXED_LANG_SCHEMA, scenario)
    assert [(a.group_name, a.value_name) for a in small.attributes] == [("Size", "Small")]
    assert [(a.group_name, a.value_name) for a in large.attributes] == [("Size", "Grande")]
    assert (small.sku, large.sku) == ("CUP-S", "CUP-402")
    assert large.price_delta == Decimal("1.5")
    assert any("2 attribute names missing for id_lang=2" in m for m in log.messages())


def test_list_page_has_more_and_missing_names(tmp_path):
    async def scenario(engine):
        db = PrestaShopDb(engine, prefix="ps_", lang_id=2)
        return await db.list_page(0, 2), await db.list_page(2, 2)

    first, second = _run(tmp_path, FULL_SCHEMA, scenario)
    assert [i.id for i in first.items] == ["1", "2"]
    assert first.has_more is True
    assert first.items[1].name == "Tee"
    assert [i.id for i in second.items] == ["3"]
    assert second.has_more is False
    assert second.items[0].active is False


def test_fetch_category_and_not_found(tmp_path):
    async def scenario(engine):
        db = PrestaShopDb(engine, prefix="ps_", lang_id=2)
        cat = await db.fetch_category("3")
        with pytest.raises(NotFound):
            await db.fetch_category("99")
        with pytest.raises(NotFound):
            await db.fetch_product("99")
        return cat

    cat = _run(tmp_path, FULL_SCHEMA, scenario)
    assert (cat.id, cat.parent_id, cat.name, cat.slug_hint) == ("3", "2", "Chairs", "chairs")


def test_older_schema_degrades_to_defaults(tmp_path):
    async def scenario(engine):
        db = PrestaShopDb(engine, prefix="old_", lang_id=2)
        return await db.fetch_product("1"), await db.test_connection()

    p, conn = _run(tmp_path, OLD_SCHEMA, scenario)
    assert p.name == "Legacy item"
    assert p.price == Decimal("9.5")
    assert p.quantity == 0
    assert "quantity" in p.defaulted_fields
    assert p.manufacturer.id == 0
    assert p.images == []
    assert p.variants == []
    assert conn["success"] is True
    assert "1 products" in conn["message"]
