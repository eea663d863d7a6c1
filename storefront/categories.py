"""Product categories.

Products reference a category by id. Deleting a category leaves its products
in the catalogue without one.
"""
import logging
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from storefront.models import CategoryDB
from storefront.shared.utils import ConflictException, NotFoundException, ValidationException
from storefront.store import MongoStore

logger = logging.getLogger(__name__)


async def _with_count(store: MongoStore, category: dict) -> dict:
    category["product_count"] = await store.count_products(category["id"])
    return category


async def list_categories(store: MongoStore) -> List[dict]:
    return [await _with_count(store, c) for c in await store.list_categories()]


async def ensure_category(store: MongoStore, category_id: Optional[str]):
    """Reject a product write that points at a category which does not exist."""
    if category_id is not None and await store.get_category(category_id) is None:
        raise ValidationException(f"Category {category_id} does not exist")


async def create_category(store: MongoStore, name: str, description: Optional[str] = None) -> dict:
    category_db = CategoryDB(name=name, description=description)
    created = await store.insert_category(category_db.model_dump(by_alias=True, exclude={"id"}))
    if created is None:
        raise ConflictException(f"Category '{name}' already exists")
    logger.info(f"Category created: {name}")
    return await _with_count(store, created)


async def update_category(store: MongoStore, category_id: str, fields: dict) -> dict:
    if await store.get_category(category_id) is None:
        raise NotFoundException("Category not found")
    try:
        updated = await store.update_category(category_id, fields)
    except DuplicateKeyError:
        raise ConflictException(f"Category '{fields.get('name')}' already exists")
    return await _with_count(store, updated)


async def delete_category(store: MongoStore, category_id: str):
    if not await store.delete_category(category_id):
        raise NotFoundException("Category not found")
    logger.info(f"Category deleted: {category_id}")
