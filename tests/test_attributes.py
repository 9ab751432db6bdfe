import asyncio

from presta_migrate.sync.components.attributes import AttributeBuilder, collect_attribute_groups
from tests.fakes import InMemoryStore, make_variant


def _variants():
    return [
        make_variant(1, Color="Red", Size="S"),
        make_variant(2, Color="Blue", Size="S"),
        make_variant(3, Color="Red", Size=" M "),
    ]


def test_groups_and_values_keep_first_seen_order():
    groups = collect_attribute_groups(_variants())
    assert list(groups) == ["Color", "Size"]
    assert groups["Color"] == ["Red", "Blue"]
    assert groups["Size"] == ["S", "M"]


def test_build_registers_taxonomies_and_terms(log):
    store = InMemoryStore()
    builder = AttributeBuilder(store, log)
    built = asyncio.run(builder.build(_variants()))

    color, size = built.attributes
    assert color.name == "Color" and color.options == ["Red", "Blue"]
    assert color.taxonomy_id == store.taxonomies["color"]
    assert color.visible and color.variation
    assert size.options == ["S", "M"]

    sel = built.selections_for(_variants()[2])
    assert [(s.name, s.option) for s in sel] == [("Color", "Red"), ("Size", "M")]


def test_terms_are_reused_across_products(log):
    store = InMemoryStore()
    builder = AttributeBuilder(store, log)

    async def run():
        await builder.build(_variants())
        await builder.build([make_variant(9, Color="Red")])

    asyncio.run(run())
    assert len(store.taxonomies) == 2
    assert len([k for k in store.terms if k[0] == store.taxonomies["color"]]) == 2


def test_taxonomy_failure_falls_back_to_local_attribute(log):
    store = InMemoryStore()
    store.fail_taxonomies = True
    built = asyncio.run(AttributeBuilder(store, log).build(_variants()))

    assert all(a.taxonomy_id is None for a in built.attributes)
    assert built.attributes[0].options == ["Red", "Blue"]
    assert built.selections_for(_variants()[1])[0].option == "Blue"
    assert any("local attribute" in m for m in log.messages())
