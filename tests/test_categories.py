import pytest

from storefront import categories as category_ops
from storefront.shared.utils import ConflictException, NotFoundException, ValidationException


async def test_list_counts_active_products(store, make_product):
    lamps = await category_ops.create_category(store, "Lamps", "Things that glow")
    await category_ops.create_category(store, "Chairs")
    await make_product(name="Desk Lamp", category_id=lamps["id"])
    hidden = await make_product(name="Old Lamp", category_id=lamps["id"])
    await store.update_product(hidden["id"], {"is_active": False})

    listed = {c["name"]: c for c in await category_ops.list_categories(store)}

    assert listed["Lamps"]["product_count"] == 1
    assert listed["Lamps"]["description"] == "Things that glow"
    assert listed["Chairs"]["product_count"] == 0


async def test_names_are_unique(store):
    first = await category_ops.create_category(store, "Lamps")
    other = await category_ops.create_category(store, "Chairs")

    with pytest.raises(ConflictException):
        await category_ops.create_category(store, "Lamps")
    with pytest.raises(ConflictException):
        await category_ops.update_category(store, other["id"], {"name": "Lamps"})

    renamed = await category_ops.update_category(store, first["id"], {"name": "Lighting"})
    assert renamed["name"] == "Lighting"


async def test_unknown_category(store):
    with pytest.raises(NotFoundException):
        await category_ops.update_category(store, "0123456789abcdef01234567", {"name": "X"})
    with pytest.raises(NotFoundException):
        await category_ops.delete_category(store, "not-an-id")
    with pytest.raises(ValidationException):
        await category_ops.ensure_category(store, "0123456789abcdef01234567")
    await category_ops.ensure_category(store, None)


async def test_delete_uncategorises_products(store, make_product):
    lamps = await category_ops.create_category(store, "Lamps")
    product = await make_product(name="Desk Lamp", category_id=lamps["id"])

    await category_ops.delete_category(store, lamps["id"])

    assert await category_ops.list_categories(store) == []
    reloaded = await store.get_product(product["id"])
    assert reloaded is not None
    assert reloaded["category_id"] is None
