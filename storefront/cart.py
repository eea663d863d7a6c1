"""Per-user shopping cart.

A cart stores only ``{product_id, quantity}`` lines. Prices are always read from
the product at display time, so the cart total can drift as the catalogue
changes; only order conversion freezes them.
"""
import logging
from decimal import Decimal

from storefront.models import CartItemDB
from storefront.shared.utils import ConflictException, NotFoundException, ValidationException
from storefront.store import MongoStore

logger = logging.getLogger(__name__)


async def get_cart(store: MongoStore, user_id: str) -> dict:
    """Return the user's cart joined to current product data, creating it if absent.

    Lines whose product has been withdrawn stay visible with ``available`` set
    to False so they can be removed, but they are not part of the total and
    are skipped when the cart is ordered.
    """
    cart = await store.get_or_create_cart(user_id)
    products = await store.get_products(
        (item["product_id"] for item in cart["items"]), active_only=False
    )

    items = []
    total = Decimal(0)
    for item in cart["items"]:
        product = products.get(item["product_id"])
        available = product is not None and product["is_active"]
        if available:
            total += product["price"] * item["quantity"]
        items.append({
            "product_id": item["product_id"],
            "quantity": item["quantity"],
            "price": product["price"] if available else None,
            "name": product["name"] if product else None,
            "image_url": product.get("image_url") if product else None,
            "available": available,
        })

    return {
        "user_id": user_id,
        "items": items,
        "total": total,
        "version": cart["version"],
        "updated_at": cart["updated_at"],
    }


async def _write_items(store: MongoStore, user_id: str, cart: dict, items: list):
    if not await store.replace_cart_items(user_id, items, cart["version"]):
        logger.warning("Cart changed during update", extra={"user_id": user_id})
        raise ConflictException("Cart was modified concurrently, please retry")


async def add_item(store: MongoStore, user_id: str, product_id: str, quantity: int) -> dict:
    if quantity < 1:
        raise ValidationException("Quantity must be at least 1")
    product = await store.get_product(product_id)
    if product is None:
        raise NotFoundException(f"Product {product_id} not found")

    cart = await store.get_or_create_cart(user_id)
    items = [dict(item) for item in cart["items"]]
    for item in items:
        if item["product_id"] == product["id"]:
            item["quantity"] += quantity
            break
    else:
        items.append(CartItemDB(product_id=product["id"], quantity=quantity).model_dump())

    await _write_items(store, user_id, cart, items)
    return await get_cart(store, user_id)


async def update_item(store: MongoStore, user_id: str, product_id: str, quantity: int) -> dict:
    """Set a line's quantity; zero removes the line."""
    if quantity < 0:
        raise ValidationException("Quantity cannot be negative")
    cart = await store.get_cart(user_id)
    if cart is None:
        raise NotFoundException("Cart not found")

    items = [dict(item) for item in cart["items"]]
    if not any(item["product_id"] == product_id for item in items):
        raise NotFoundException("Item not found in cart")

    if quantity == 0:
        items = [item for item in items if item["product_id"] != product_id]
    else:
        for item in items:
            if item["product_id"] == product_id:
                item["quantity"] = quantity

    await _write_items(store, user_id, cart, items)
    return await get_cart(store, user_id)


async def remove_item(store: MongoStore, user_id: str, product_id: str) -> dict:
    cart = await store.get_cart(user_id)
    if cart is None:
        raise NotFoundException("Cart not found")
    items = [item for item in cart["items"] if item["product_id"] != product_id]
    if len(items) != len(cart["items"]):
        await _write_items(store, user_id, cart, items)
    return await get_cart(store, user_id)


async def clear_cart(store: MongoStore, user_id: str):
    cart = await store.get_cart(user_id)
    if cart and cart["items"]:
        await _write_items(store, user_id, cart, [])
