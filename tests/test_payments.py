import json
import time
from decimal import Decimal

import pytest

from storefront import cart as cart_ops
from storefront import orders as order_ops
from storefront import payments as payment_ops
from storefront.models import OrderStatus
from storefront.shared.utils import (
    ConflictException, OrderNotFoundException, SignatureInvalidException
)
from tests.fakes import checkout_completed_event, sign_payload


@pytest.fixture
async def order(store, make_product):
    product_a = await make_product(name="Product A", price="10.00")
    product_b = await make_product(name="Product B", price="5.00")
    await cart_ops.add_item(store, "user-1", product_a["id"], 2)
    await cart_ops.add_item(store, "user-1", product_b["id"], 1)
    return await order_ops.create_order_from_cart(store, "user-1")


async def deliver(store, gateway, payload, signature=None):
    signature = sign_payload(payload) if signature is None else signature
    return await payment_ops.handle_webhook(store, gateway, payload.encode("utf-8"), signature)


def test_build_line_items_uses_minor_units():
    order = {"items": [
        {"product_id": "a", "name": "Product A", "quantity": 2, "price": Decimal("10.00")},
        {"product_id": "b", "name": "Product B", "quantity": 1, "price": Decimal("5.00")},
    ]}

    items = payment_ops.build_line_items(order, "usd")

    assert [(i["price_data"]["unit_amount"], i["quantity"]) for i in items] == [(1000, 2), (500, 1)]
    assert items[0]["price_data"]["product_data"]["name"] == "Product A"
    assert items[0]["price_data"]["currency"] == "usd"


async def test_session_carries_order_snapshot_and_id(store, gateway, order):
    session = await payment_ops.create_checkout_session(store, gateway, "user-1", order["id"])

    assert session["session_id"] == "cs_test_1"
    recorded = gateway.sessions[0]
    assert recorded["order_id"] == order["id"]
    amounts = sorted((i["price_data"]["unit_amount"], i["quantity"]) for i in recorded["line_items"])
    assert amounts == [(500, 1), (1000, 2)]


async def test_session_does_not_touch_local_state(store, gateway, order):
    await payment_ops.create_checkout_session(store, gateway, "user-1", order["id"])

    assert (await store.get_order(order["id"]))["status"] == OrderStatus.PENDING.value
    assert await store.db.payments.count_documents({}) == 0


async def test_session_for_foreign_order_is_not_found(store, gateway, order):
    with pytest.raises(OrderNotFoundException):
        await payment_ops.create_checkout_session(store, gateway, "user-2", order["id"])
    with pytest.raises(OrderNotFoundException):
        await payment_ops.create_checkout_session(store, gateway, "user-1", "not-an-id")
    assert gateway.sessions == []


async def test_session_requires_pending_order(store, gateway, order):
    await order_ops.cancel_order(store, "user-1", order["id"])

    with pytest.raises(ConflictException):
        await payment_ops.create_checkout_session(store, gateway, "user-1", order["id"])


async def test_completed_checkout_marks_order_processing(store, gateway, order):
    result = await deliver(store, gateway, checkout_completed_event(order["id"]))

    assert result == {"received": True}
    assert (await store.get_order(order["id"]))["status"] == OrderStatus.PROCESSING.value
    payment = await store.get_payment_for_order(order["id"])
    assert payment["external_session_id"] == "cs_test_1"
    assert payment["amount"] == Decimal("25.00")


async def test_duplicate_delivery_is_idempotent(store, gateway, order):
    payload = checkout_completed_event(order["id"])

    await deliver(store, gateway, payload)
    await deliver(store, gateway, payload)

    assert await store.db.payments.count_documents({}) == 1
    assert (await store.get_order(order["id"]))["status"] == OrderStatus.PROCESSING.value


async def test_redelivery_after_partial_failure_records_payment(store, gateway, order):
    # Status already applied by an earlier delivery that died before the payment write
    await store.transition_order(order["id"], "pending", "processing")

    await deliver(store, gateway, checkout_completed_event(order["id"]))

    assert await store.db.payments.count_documents({}) == 1
    assert (await store.get_order(order["id"]))["status"] == OrderStatus.PROCESSING.value


async def test_invalid_signature_changes_nothing(store, gateway, order):
    payload = checkout_completed_event(order["id"])

    with pytest.raises(SignatureInvalidException):
        await deliver(store, gateway, payload, signature=sign_payload(payload, secret="whsec_wrong"))
    with pytest.raises(SignatureInvalidException):
        await deliver(store, gateway, payload, signature="")

    assert (await store.get_order(order["id"]))["status"] == OrderStatus.PENDING.value
    assert await store.db.payments.count_documents({}) == 0


async def test_expired_signature_is_rejected(store, gateway, order):
    payload = checkout_completed_event(order["id"])
    stale = sign_payload(payload, timestamp=int(time.time()) - 3600)

    with pytest.raises(SignatureInvalidException):
        await deliver(store, gateway, payload, signature=stale)


async def test_tampered_payload_is_rejected(store, gateway, order):
    payload = checkout_completed_event(order["id"])
    signature = sign_payload(payload)
    tampered = payload.replace("2500", "1")

    with pytest.raises(SignatureInvalidException):
        await deliver(store, gateway, tampered, signature=signature)


async def test_unknown_order_is_acknowledged(store, gateway, order):
    result = await deliver(store, gateway, checkout_completed_event("0123456789abcdef01234567"))

    assert result == {"received": True}
    assert await store.db.payments.count_documents({}) == 0
    assert (await store.get_order(order["id"]))["status"] == OrderStatus.PENDING.value


async def test_malformed_order_reference_is_acknowledged(store, gateway, order):
    assert await deliver(store, gateway, checkout_completed_event("garbage")) == {"received": True}
    assert await deliver(store, gateway, checkout_completed_event(None)) == {"received": True}
    assert await store.db.payments.count_documents({}) == 0


@pytest.mark.parametrize("session", [
    "cs_test_1",
    {"id": "cs_test_1", "metadata": "oops"},
    {"id": "cs_test_1", "metadata": {"order_id": 42}},
    {"id": ["cs_test_1"], "metadata": {"order_id": "0123456789abcdef01234567"}},
])
async def test_oddly_shaped_checkout_event_is_acknowledged(store, gateway, order, session):
    payload = json.dumps({"id": "evt_3", "type": "checkout.session.completed", "data": {"object": session}})

    assert await deliver(store, gateway, payload) == {"received": True}
    assert await store.db.payments.count_documents({}) == 0
    assert (await store.get_order(order["id"]))["status"] == OrderStatus.PENDING.value


async def test_non_object_event_data_is_acknowledged(store, gateway):
    payload = json.dumps({"id": "evt_4", "type": "checkout.session.completed", "data": "oops"})

    assert await deliver(store, gateway, payload) == {"received": True}


async def test_other_event_types_are_ignored(store, gateway, order):
    payload = json.dumps({
        "id": "evt_2",
        "type": "payment_intent.created",
        "data": {"object": {"id": "pi_1", "metadata": {"order_id": order["id"]}}},
    })

    assert await deliver(store, gateway, payload) == {"received": True}
    assert (await store.get_order(order["id"]))["status"] == OrderStatus.PENDING.value


async def test_payment_for_cancelled_order_leaves_status(store, gateway, order):
    await order_ops.cancel_order(store, "user-1", order["id"])

    await deliver(store, gateway, checkout_completed_event(order["id"]))

    assert (await store.get_order(order["id"]))["status"] == OrderStatus.CANCELLED.value
    assert await store.db.payments.count_documents({}) == 1


async def test_get_payment_for_order(store, gateway, order):
    await deliver(store, gateway, checkout_completed_event(order["id"]))

    payment = await payment_ops.get_payment_for_order(store, "user-1", order["id"])

    assert payment["order_id"] == order["id"]
    with pytest.raises(OrderNotFoundException):
        await payment_ops.get_payment_for_order(store, "user-2", order["id"])
