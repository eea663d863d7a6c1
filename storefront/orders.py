"""Cart-to-order conversion and the order lifecycle.

Conversion claims the cart before writing the order: the cart lines are
cleared with a compare-and-swap on the cart version, so two concurrent
conversions of the same cart cannot both succeed, and an order never
coexists with the cart lines it was built from. If the order insert fails
afterwards, the lines are put back.
"""
import logging
from decimal import Decimal
from typing import List

from storefront.models import OrderDB, OrderItemDB, OrderStatus, can_transition
from storefront.shared.utils import (
    ConflictException, EmptyCartException, OrderNotFoundException
)
from storefront.store import MongoStore

logger = logging.getLogger(__name__)


async def create_order_from_cart(store: MongoStore, user_id: str) -> dict:
    cart = await store.get_or_create_cart(user_id)
    if not cart["items"]:
        raise EmptyCartException()

    products = await store.get_products(item["product_id"] for item in cart["items"])

    lines = []
    dropped = []
    total = Decimal(0)
    for item in cart["items"]:
        product = products.get(item["product_id"])
        if product is None:
            # Shown as unavailable in the cart; cleared with the rest on claim
            dropped.append(item["product_id"])
            continue
        # Price is copied here and never re-read from the product
        price = product["price"]
        total += price * item["quantity"]
        lines.append(OrderItemDB(
            product_id=item["product_id"],
            name=product["name"],
            quantity=item["quantity"],
            price=price,
        ))

    if not lines:
        raise EmptyCartException("Cart has no available items")
    if dropped:
        logger.warning(
            f"Unavailable products left out of order: {', '.join(dropped)}",
            extra={"user_id": user_id, "cart_version": cart["version"]},
        )

    if not await store.replace_cart_items(user_id, [], cart["version"]):
        logger.warning(
            "Cart conversion lost the race",
            extra={"user_id": user_id, "cart_version": cart["version"]},
        )
        raise ConflictException("Cart was modified or already converted, please retry")

    try:
        order_db = OrderDB(user_id=user_id, items=lines, total=total, status=OrderStatus.PENDING)
        order = await store.insert_order(order_db.model_dump(by_alias=True, exclude={"id"}))
    except Exception:
        logger.error("Order insert failed, restoring cart", extra={"user_id": user_id}, exc_info=True)
        if not await store.replace_cart_items(user_id, cart["items"], cart["version"] + 1):
            logger.error("Cart restore skipped, cart changed meanwhile", extra={"user_id": user_id})
        raise

    logger.info("Order created", extra={"user_id": user_id, "order_id": order["id"]})
    return order


async def _with_payment(store: MongoStore, order: dict) -> dict:
    order["payment"] = await store.get_payment_for_order(order["id"])
    return order


async def list_orders(store: MongoStore, user_id: str) -> List[dict]:
    return [await _with_payment(store, order) for order in await store.list_orders(user_id)]


async def list_all_orders(store: MongoStore) -> List[dict]:
    return [await _with_payment(store, order) for order in await store.list_orders()]


async def get_order(store: MongoStore, user_id: str, order_id: str) -> dict:
    order = await store.get_order(order_id, user_id=user_id)
    if order is None:
        raise OrderNotFoundException()
    return await _with_payment(store, order)


async def cancel_order(store: MongoStore, user_id: str, order_id: str) -> dict:
    order = await store.get_order(order_id, user_id=user_id)
    if order is None:
        raise OrderNotFoundException()

    if not await store.transition_order(order["id"], OrderStatus.PENDING.value, OrderStatus.CANCELLED.value):
        raise ConflictException("Cannot cancel order that is not pending")

    logger.info("Order cancelled", extra={"user_id": user_id, "order_id": order["id"]})
    return await get_order(store, user_id, order["id"])


async def update_order_status(store: MongoStore, order_id: str, target: OrderStatus) -> dict:
    order = await store.get_order(order_id)
    if order is None:
        raise OrderNotFoundException()

    current = OrderStatus(order["status"])
    if current != target:
        if not can_transition(current, target):
            raise ConflictException(f"Cannot move order from {current.value} to {target.value}")
        if not await store.transition_order(order["id"], current.value, target.value):
            raise ConflictException("Order status changed concurrently, please retry")
        logger.info(
            f"Order status {current.value} -> {target.value}",
            extra={"order_id": order["id"]},
        )

    return await _with_payment(store, await store.get_order(order["id"]))
