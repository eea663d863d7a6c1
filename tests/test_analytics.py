from datetime import datetime
from decimal import Decimal

from storefront import analytics
from storefront.models import OrderDB, OrderItemDB, OrderStatus


async def place(store, created_at, lines, status=OrderStatus.PENDING, user_id="user-1"):
    items = [
        OrderItemDB(product_id=pid, name=name, quantity=qty, price=Decimal(price))
        for pid, name, qty, price in lines
    ]
    order = OrderDB(
        user_id=user_id,
        items=items,
        total=sum(item.price * item.quantity for item in items),
        status=status,
        created_at=created_at,
    )
    return await store.insert_order(order.model_dump(by_alias=True, exclude={"id"}))


async def test_summary_uses_order_snapshots(store):
    now = datetime(2026, 3, 15)
    await place(store, datetime(2026, 3, 2), [("a", "Lamp", 2, "10.00"), ("b", "Chair", 1, "5.00")])
    await place(store, datetime(2026, 2, 20), [("a", "Lamp", 1, "10.00")], status=OrderStatus.DELIVERED)
    await place(store, datetime(2026, 3, 10), [("b", "Chair", 9, "5.00")], status=OrderStatus.CANCELLED)
    # Older than the twelve month window
    await place(store, datetime(2025, 3, 31), [("c", "Desk", 1, "100.00")])

    summary = await analytics.sales_summary(store, now=now)

    assert summary["total_sales"] == Decimal("135.00")
    assert summary["total_orders"] == 3
    assert summary["sales_by_month"] == [
        {"month": "2026-03", "revenue": Decimal("25.00"), "orders": 1},
        {"month": "2026-02", "revenue": Decimal("10.00"), "orders": 1},
    ]
    assert summary["top_selling_products"][0] == {"product_id": "a", "name": "Lamp", "total_sold": 3}
    assert {p["product_id"] for p in summary["top_selling_products"]} == {"a", "b", "c"}


async def test_window_starts_at_first_of_month(store):
    await place(store, datetime(2025, 4, 1), [("a", "Lamp", 1, "10.00")])

    summary = await analytics.sales_summary(store, now=datetime(2026, 3, 15))

    assert [m["month"] for m in summary["sales_by_month"]] == ["2025-04"]


async def test_recent_orders_are_newest_first(store):
    for day in range(1, 8):
        await place(store, datetime(2026, 3, day), [("a", "Lamp", 1, "1.00")])

    summary = await analytics.sales_summary(store, now=datetime(2026, 3, 15))

    assert [o["created_at"].day for o in summary["recent_orders"]] == [7, 6, 5, 4, 3, 2, 1][:analytics.RECENT_ORDERS]


async def test_empty_store(store):
    summary = await analytics.sales_summary(store)

    assert summary["total_sales"] == Decimal(0)
    assert summary["total_orders"] == 0
    assert summary["sales_by_month"] == []
    assert summary["top_selling_products"] == []
