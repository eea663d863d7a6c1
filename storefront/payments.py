"""Checkout session creation and the payment confirmation webhook.

The webhook only ever performs the pending -> processing edge of the order
lifecycle. Stripe delivers events at least once, so confirmation is
idempotent: a payment is keyed by the checkout session id and the order
update is conditional on the order still being pending. Events that do not
concern us are acknowledged, never errored, so Stripe stops retrying them.
"""
import logging
from typing import List

from storefront.gateway import PaymentGateway
from storefront.models import OrderStatus, PaymentDB
from storefront.money import from_minor_units, to_minor_units
from storefront.shared.utils import (
    ConflictException, NotFoundException, OrderNotFoundException, SignatureInvalidException
)
from storefront.store import MongoStore

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"

ACK = {"received": True}


def build_line_items(order: dict, currency: str) -> List[dict]:
    return [
        {
            "price_data": {
                "currency": currency,
                "product_data": {"name": item["name"]},
                "unit_amount": to_minor_units(item["price"]),
            },
            "quantity": item["quantity"],
        }
        for item in order["items"]
    ]


async def create_checkout_session(
    store: MongoStore, gateway: PaymentGateway, user_id: str, order_id: str
) -> dict:
    order = await store.get_order(order_id, user_id=user_id)
    if order is None:
        raise OrderNotFoundException()
    if order["status"] != OrderStatus.PENDING.value:
        raise ConflictException(f"Order is {order['status']}, cannot start payment")

    session = await gateway.create_checkout_session(
        build_line_items(order, gateway.currency), order["id"]
    )
    logger.info(
        "Checkout session created",
        extra={"user_id": user_id, "order_id": order["id"], "session_id": session["session_id"]},
    )
    return session


async def handle_webhook(
    store: MongoStore, gateway: PaymentGateway, payload: bytes, signature: str
) -> dict:
    try:
        event = gateway.construct_event(payload, signature)
    except SignatureInvalidException:
        logger.warning("Webhook signature verification failed")
        raise

    event_type = event.get("type")
    if event_type != CHECKOUT_COMPLETED:
        logger.info("Webhook event ignored", extra={"event_type": event_type})
        return ACK

    data = event.get("data")
    session = data.get("object") if isinstance(data, dict) else None
    metadata = session.get("metadata") if isinstance(session, dict) else None
    if not isinstance(metadata, dict):
        logger.warning("Checkout event with unexpected shape", extra={"event_type": event_type})
        return ACK

    session_id = session.get("id")
    order_id = metadata.get("order_id")
    log_extra = {"event_type": event_type, "session_id": session_id, "order_id": order_id}

    if not (isinstance(order_id, str) and order_id and isinstance(session_id, str) and session_id):
        logger.warning("Checkout event without order reference", extra=log_extra)
        return ACK

    order = await store.get_order(order_id)
    if order is None:
        logger.warning("Checkout event for unknown order", extra=log_extra)
        return ACK

    if await store.get_payment_by_session(session_id):
        logger.info("Duplicate checkout event", extra=log_extra)
        return ACK

    if await store.transition_order(order["id"], OrderStatus.PENDING.value, OrderStatus.PROCESSING.value):
        logger.info("Order marked as processing", extra=log_extra)
    else:
        current = await store.get_order(order["id"])
        logger.warning(f"Order already {current['status']}, status left unchanged", extra=log_extra)

    amount_total = session.get("amount_total")
    amount = from_minor_units(amount_total) if isinstance(amount_total, int) else order["total"]
    payment_db = PaymentDB(order_id=order["id"], external_session_id=session_id, amount=amount)
    created = await store.insert_payment(payment_db.model_dump(by_alias=True, exclude={"id"}))
    if created:
        logger.info("Payment recorded", extra=log_extra)
    else:
        logger.info("Payment already recorded", extra=log_extra)
    return ACK


async def get_payment_for_order(store: MongoStore, user_id: str, order_id: str) -> dict:
    order = await store.get_order(order_id, user_id=user_id)
    if order is None:
        raise OrderNotFoundException()
    payment = await store.get_payment_for_order(order["id"])
    if payment is None:
        raise NotFoundException("Payment not found")
    return payment
