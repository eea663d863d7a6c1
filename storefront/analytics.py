"""Admin sales figures, computed from order snapshots.

Revenue and units come from the prices frozen on each order, never from the
current catalogue. Cancelled orders are not sales and are left out.
"""
from collections import Counter, OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Optional

from storefront.models import OrderStatus
from storefront.store import MongoStore

MONTHS = 12
TOP_PRODUCTS = 10
RECENT_ORDERS = 5


def _month_start(now: datetime, months_back: int) -> datetime:
    month_index = now.year * 12 + (now.month - 1) - months_back
    return datetime(month_index // 12, month_index % 12 + 1, 1)


async def sales_summary(store: MongoStore, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    since = _month_start(now, MONTHS - 1)

    orders = await store.list_orders()
    sales = [o for o in orders if o["status"] != OrderStatus.CANCELLED.value]

    by_month = OrderedDict()
    units = Counter()
    names = {}
    total_sales = Decimal(0)
    for order in sales:
        total_sales += order["total"]
        for item in order["items"]:
            units[item["product_id"]] += item["quantity"]
            names.setdefault(item["product_id"], item["name"])
        if order["created_at"] >= since:
            key = order["created_at"].strftime("%Y-%m")
            month = by_month.setdefault(key, {"month": key, "revenue": Decimal(0), "orders": 0})
            month["revenue"] += order["total"]
            month["orders"] += 1

    return {
        "total_sales": total_sales,
        "total_orders": len(sales),
        # Orders arrive newest first, so months are already descending
        "sales_by_month": list(by_month.values()),
        "top_selling_products": [
            {"product_id": pid, "name": names[pid], "total_sold": sold}
            for pid, sold in units.most_common(TOP_PRODUCTS)
        ],
        "recent_orders": orders[:RECENT_ORDERS],
    }
