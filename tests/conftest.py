from decimal import Decimal

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from storefront.main import app, get_gateway, get_store
from storefront.models import ProductDB
from storefront.shared.security_config import limiter
from storefront.store import MongoStore
from tests.fakes import FakePaymentGateway


@pytest.fixture(autouse=True)
def disable_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
async def store():
    store = MongoStore(AsyncMongoMockClient()["storefront_test"])
    await store.ensure_indexes()
    return store


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def make_product(store):
    async def factory(name="Widget", price="10.00", stock=10, **kwargs):
        product = ProductDB(name=name, price=Decimal(price), stock=stock, **kwargs)
        return await store.insert_product(product.model_dump(by_alias=True, exclude={"id"}))
    return factory


@pytest.fixture
async def client(store, gateway):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_gateway] = lambda: gateway
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
