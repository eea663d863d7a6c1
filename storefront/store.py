"""MongoDB access for the storefront.

``MongoStore`` is constructed once at startup around a motor database handle
and passed to every operation; nothing else in the package touches the
driver. Documents leave the store as plain dicts with a string ``id`` and
``Decimal`` money fields.
"""
from datetime import datetime
from typing import Optional, List, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from storefront.money import to_decimal, to_decimal128


PRODUCT_SORTS = {
    "createdAt_desc": [("created_at", DESCENDING)],
    "name_asc": [("name", ASCENDING)],
    "name_desc": [("name", DESCENDING)],
    "price_asc": [("price", ASCENDING)],
    "price_desc": [("price", DESCENDING)],
}


def parse_oid(value) -> Optional[ObjectId]:
    """Return the ObjectId for ``value`` or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _out(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc["id"] = str(doc.pop("_id"))
    return doc


def _product_out(doc):
    doc = _out(doc)
    if doc is not None:
        doc["price"] = to_decimal(doc["price"])
    return doc


def _order_out(doc):
    doc = _out(doc)
    if doc is not None:
        doc["total"] = to_decimal(doc["total"])
        for item in doc["items"]:
            item["price"] = to_decimal(item["price"])
    return doc


def _payment_out(doc):
    doc = _out(doc)
    if doc is not None:
        doc["amount"] = to_decimal(doc["amount"])
    return doc


class MongoStore:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def ensure_indexes(self):
        await self.db.categories.create_index("name", unique=True)
        await self.db.products.create_index("category_id")
        await self.db.carts.create_index("user_id", unique=True)
        await self.db.wishlists.create_index("user_id", unique=True)
        await self.db.orders.create_index("user_id")
        await self.db.payments.create_index("external_session_id", unique=True)
        await self.db.payments.create_index("order_id")
        await self.db.reviews.create_index(
            [("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True
        )

    async def ping(self):
        await self.db.command("ping")

    # --- Products ---

    async def insert_product(self, product: dict) -> dict:
        doc = dict(product)
        doc["price"] = to_decimal128(doc["price"])
        res = await self.db.products.insert_one(doc)
        return await self.get_product(res.inserted_id, active_only=False)

    async def get_product(self, product_id, active_only: bool = True) -> Optional[dict]:
        oid = parse_oid(product_id)
        if oid is None:
            return None
        query = {"_id": oid}
        if active_only:
            query["is_active"] = True
        return _product_out(await self.db.products.find_one(query))

    async def get_products(self, product_ids, active_only: bool = True) -> dict:
        """Map of id -> product for every id that still resolves."""
        oids = [oid for oid in (parse_oid(pid) for pid in product_ids) if oid is not None]
        query = {"_id": {"$in": oids}}
        if active_only:
            query["is_active"] = True
        cursor = self.db.products.find(query)
        products = {}
        async for doc in cursor:
            product = _product_out(doc)
            products[product["id"]] = product
        return products

    async def list_products(
        self,
        search: Optional[str] = None,
        category_id: Optional[str] = None,
        sort: str = "createdAt_desc",
        skip: int = 0,
        limit: int = 10,
    ) -> Tuple[List[dict], int]:
        query = {"is_active": True}
        if category_id:
            query["category_id"] = category_id
        if search:
            query["name"] = {"$regex": search, "$options": "i"}

        total = await self.db.products.count_documents(query)
        cursor = (
            self.db.products.find(query)
            .sort(PRODUCT_SORTS.get(sort, PRODUCT_SORTS["createdAt_desc"]))
            .skip(skip)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        return [_product_out(doc) for doc in docs], total

    async def update_product(self, product_id, fields: dict) -> Optional[dict]:
        oid = parse_oid(product_id)
        if oid is None:
            return None
        update = dict(fields)
        if "price" in update:
            update["price"] = to_decimal128(update["price"])
        update["updated_at"] = datetime.utcnow()
        await self.db.products.update_one({"_id": oid}, {"$set": update})
        return await self.get_product(oid, active_only=False)

    # --- Categories ---

    async def insert_category(self, category: dict) -> Optional[dict]:
        """Insert a category; None when the name is already taken."""
        try:
            res = await self.db.categories.insert_one(dict(category))
        except DuplicateKeyError:
            return None
        return await self.get_category(res.inserted_id)

    async def get_category(self, category_id) -> Optional[dict]:
        oid = parse_oid(category_id)
        if oid is None:
            return None
        return _out(await self.db.categories.find_one({"_id": oid}))

    async def list_categories(self) -> List[dict]:
        cursor = self.db.categories.find({}).sort("name", ASCENDING)
        return [_out(doc) async for doc in cursor]

    async def count_products(self, category_id: str) -> int:
        return await self.db.products.count_documents({"category_id": category_id, "is_active": True})

    async def update_category(self, category_id, fields: dict) -> Optional[dict]:
        """Raises DuplicateKeyError when renaming onto an existing name."""
        oid = parse_oid(category_id)
        if oid is None:
            return None
        update = dict(fields, updated_at=datetime.utcnow())
        await self.db.categories.update_one({"_id": oid}, {"$set": update})
        return await self.get_category(oid)

    async def delete_category(self, category_id) -> bool:
        oid = parse_oid(category_id)
        if oid is None:
            return False
        res = await self.db.categories.delete_one({"_id": oid})
        if res.deleted_count != 1:
            return False
        # Products outlive their category and become uncategorised
        await self.db.products.update_many(
            {"category_id": str(oid)},
            {"$set": {"category_id": None, "updated_at": datetime.utcnow()}},
        )
        return True

    # --- Carts ---

    async def get_cart(self, user_id: str) -> Optional[dict]:
        return _out(await self.db.carts.find_one({"user_id": user_id}))

    async def get_or_create_cart(self, user_id: str) -> dict:
        # Upsert keeps concurrent first visits from racing on the unique index
        await self.db.carts.update_one(
            {"user_id": user_id},
            {"$setOnInsert": {"items": [], "version": 0, "updated_at": datetime.utcnow()}},
            upsert=True,
        )
        return await self.get_cart(user_id)

    async def replace_cart_items(self, user_id: str, items: List[dict], expected_version: int) -> bool:
        """Compare-and-swap the cart lines; False when the version moved on."""
        res = await self.db.carts.update_one(
            {"user_id": user_id, "version": expected_version},
            {
                "$set": {"items": items, "updated_at": datetime.utcnow()},
                "$inc": {"version": 1},
            },
        )
        return res.modified_count == 1

    # --- Wishlists ---

    async def get_wishlist(self, user_id: str) -> Optional[dict]:
        return _out(await self.db.wishlists.find_one({"user_id": user_id}))

    async def get_or_create_wishlist(self, user_id: str) -> dict:
        await self.db.wishlists.update_one(
            {"user_id": user_id},
            {"$setOnInsert": {"items": [], "updated_at": datetime.utcnow()}},
            upsert=True,
        )
        return await self.get_wishlist(user_id)

    async def push_wishlist_item(self, user_id: str, item: dict) -> bool:
        """Append ``item`` unless its product is already listed; False on duplicate."""
        res = await self.db.wishlists.update_one(
            {"user_id": user_id, "items.product_id": {"$ne": item["product_id"]}},
            {"$push": {"items": item}, "$set": {"updated_at": datetime.utcnow()}},
        )
        return res.modified_count == 1

    async def pull_wishlist_item(self, user_id: str, product_id: str):
        await self.db.wishlists.update_one(
            {"user_id": user_id},
            {"$pull": {"items": {"product_id": product_id}}, "$set": {"updated_at": datetime.utcnow()}},
        )

    async def clear_wishlist(self, user_id: str):
        await self.db.wishlists.update_one(
            {"user_id": user_id},
            {"$set": {"items": [], "updated_at": datetime.utcnow()}},
        )

    # --- Orders ---

    async def insert_order(self, order: dict) -> dict:
        doc = dict(order)
        doc["total"] = to_decimal128(doc["total"])
        doc["items"] = [dict(item, price=to_decimal128(item["price"])) for item in doc["items"]]
        res = await self.db.orders.insert_one(doc)
        return await self.get_order(res.inserted_id)

    async def get_order(self, order_id, user_id: Optional[str] = None) -> Optional[dict]:
        oid = parse_oid(order_id)
        if oid is None:
            return None
        query = {"_id": oid}
        if user_id is not None:
            query["user_id"] = user_id
        return _order_out(await self.db.orders.find_one(query))

    async def list_orders(self, user_id: Optional[str] = None) -> List[dict]:
        query = {} if user_id is None else {"user_id": user_id}
        cursor = self.db.orders.find(query).sort("created_at", DESCENDING)
        return [_order_out(doc) async for doc in cursor]

    async def transition_order(self, order_id, from_status: str, to_status: str) -> bool:
        """Move an order between statuses only if it is still in ``from_status``."""
        oid = parse_oid(order_id)
        if oid is None:
            return False
        res = await self.db.orders.update_one(
            {"_id": oid, "status": from_status},
            {"$set": {"status": to_status, "updated_at": datetime.utcnow()}},
        )
        return res.modified_count == 1

    # --- Payments ---

    async def get_payment_by_session(self, session_id: str) -> Optional[dict]:
        return _payment_out(await self.db.payments.find_one({"external_session_id": session_id}))

    async def get_payment_for_order(self, order_id: str) -> Optional[dict]:
        return _payment_out(await self.db.payments.find_one({"order_id": order_id}))

    async def insert_payment(self, payment: dict) -> bool:
        """Record a payment; False when one already exists for the session."""
        doc = dict(payment)
        doc["amount"] = to_decimal128(doc["amount"])
        try:
            await self.db.payments.insert_one(doc)
        except DuplicateKeyError:
            return False
        return True

    # --- Reviews ---

    async def insert_review(self, review: dict) -> Optional[dict]:
        try:
            res = await self.db.reviews.insert_one(dict(review))
        except DuplicateKeyError:
            return None
        return _out(await self.db.reviews.find_one({"_id": res.inserted_id}))

    async def find_review(self, user_id: str, product_id: str) -> Optional[dict]:
        return _out(await self.db.reviews.find_one({"user_id": user_id, "product_id": product_id}))

    async def list_reviews(self, product_id: str) -> List[dict]:
        cursor = self.db.reviews.find({"product_id": product_id}).sort("created_at", DESCENDING)
        return [_out(doc) async for doc in cursor]

    async def delete_review(self, review_id, user_id: str) -> bool:
        oid = parse_oid(review_id)
        if oid is None:
            return False
        res = await self.db.reviews.delete_one({"_id": oid, "user_id": user_id})
        return res.deleted_count == 1
