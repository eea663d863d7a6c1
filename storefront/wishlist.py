"""Per-user wishlist of products saved for later.

Like the cart it is created on first access. Unlike the cart it has no
quantities, and a product can appear at most once.
"""
import logging

from storefront.models import WishlistItemDB
from storefront.shared.utils import NotFoundException, ValidationException
from storefront.store import MongoStore

logger = logging.getLogger(__name__)


async def get_wishlist(store: MongoStore, user_id: str) -> dict:
    wishlist = await store.get_or_create_wishlist(user_id)
    products = await store.get_products(item["product_id"] for item in wishlist["items"])

    items = []
    for item in wishlist["items"]:
        product = products.get(item["product_id"])
        if product is None:
            continue
        items.append({
            "product_id": item["product_id"],
            "name": product["name"],
            "price": product["price"],
            "image_url": product.get("image_url"),
            "added_at": item["added_at"],
        })
    return {"user_id": user_id, "items": items, "updated_at": wishlist["updated_at"]}


async def add_item(store: MongoStore, user_id: str, product_id: str) -> dict:
    product = await store.get_product(product_id)
    if product is None:
        raise NotFoundException(f"Product {product_id} not found")

    await store.get_or_create_wishlist(user_id)
    item = WishlistItemDB(product_id=product["id"])
    if not await store.push_wishlist_item(user_id, item.model_dump()):
        raise ValidationException("Item already in wishlist")

    logger.info("Wishlist item added", extra={"user_id": user_id})
    return await get_wishlist(store, user_id)


async def remove_item(store: MongoStore, user_id: str, product_id: str) -> dict:
    if await store.get_wishlist(user_id) is None:
        raise NotFoundException("Wishlist not found")
    await store.pull_wishlist_item(user_id, product_id)
    return await get_wishlist(store, user_id)


async def clear_wishlist(store: MongoStore, user_id: str):
    if await store.get_wishlist(user_id) is not None:
        await store.clear_wishlist(user_id)
