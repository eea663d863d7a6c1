from fastapi import FastAPI, Depends, HTTPException, status, Query, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from datetime import datetime
from typing import Optional, List

from storefront import __version__
from storefront import analytics
from storefront import cart as cart_ops
from storefront import categories as category_ops
from storefront import orders as order_ops
from storefront import payments as payment_ops
from storefront import wishlist as wishlist_ops
from storefront.gateway import PaymentGateway
from storefront.models import ProductDB, ReviewDB
from storefront.schemas import (
    CategoryCreate, CategoryUpdate, CategoryResponse,
    ProductCreate, ProductUpdate, ProductResponse, ProductListResponse,
    CartItemAdd, CartItemUpdate, CartResponse,
    WishlistItemAdd, WishlistResponse,
    OrderResponse, OrderStatusUpdate, PaymentResponse,
    CheckoutSessionCreate, CheckoutSessionResponse,
    ReviewCreate, ReviewResponse, SalesAnalyticsResponse,
)
from storefront.shared.logging_config import setup_logging, RequestLoggingMiddleware
from storefront.shared.security_config import (
    setup_rate_limiting, SecurityHeadersMiddleware, limiter, READ_LIMIT, CHECKOUT_LIMIT
)
from storefront.shared.utils import (
    get_db_client, settings, SuccessResponse, ErrorResponse, HealthResponse,
    AppException, NotFoundException, ConflictException, require_auth, require_role
)
from storefront.store import MongoStore

SERVICE_NAME = "storefront"

# Setup Logging
logger = setup_logging(SERVICE_NAME, settings.LOG_LEVEL)

app = FastAPI(title="Storefront API", version=__version__)

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name=SERVICE_NAME)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.state.store = MongoStore(app.mongodb_client[settings.MONGO_DB])
    await app.state.store.ensure_indexes()
    app.state.gateway = PaymentGateway(
        api_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        client_url=settings.CLIENT_URL,
        currency=settings.CURRENCY,
        tolerance=settings.STRIPE_WEBHOOK_TOLERANCE,
    )

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Error Handling ---
@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.detail).model_dump(exclude_none=True),
        headers=exc.headers,
    )

@app.exception_handler(PyMongoError)
async def store_exception_handler(request: Request, exc: PyMongoError):
    logger.error(
        "Data store failure",
        extra={"request_id": getattr(request.state, "request_id", None)},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(error="Data store unavailable").model_dump(exclude_none=True),
    )

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error",
        extra={"request_id": getattr(request.state, "request_id", None)},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="Something went wrong").model_dump(exclude_none=True),
    )

# --- Dependencies ---
def get_store(request: Request) -> MongoStore:
    return request.app.state.store

def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway

get_current_user = require_auth
require_admin = require_role("admin")

# --- Endpoints ---

# Categories
@app.get("/api/categories", response_model=SuccessResponse[List[CategoryResponse]])
@limiter.limit(READ_LIMIT)
async def list_categories(request: Request, store: MongoStore = Depends(get_store)):
    categories = await category_ops.list_categories(store)
    return SuccessResponse(data=[CategoryResponse(**c) for c in categories])

@app.post("/api/categories", response_model=SuccessResponse[CategoryResponse], status_code=201)
async def create_category(
    category: CategoryCreate,
    user: dict = Depends(require_admin),
    store: MongoStore = Depends(get_store),
):
    created = await category_ops.create_category(store, category.name, category.description)
    return SuccessResponse(data=CategoryResponse(**created), message="Category created successfully")

@app.put("/api/categories/{category_id}", response_model=SuccessResponse[CategoryResponse])
async def update_category(
    category_id: str,
    category_update: CategoryUpdate,
    user: dict = Depends(require_admin),
    store: MongoStore = Depends(get_store),
):
    update_data = {k: v for k, v in category_update.model_dump().items() if v is not None}
    updated = await category_ops.update_category(store, category_id, update_data)
    return SuccessResponse(data=CategoryResponse(**updated), message="Category updated successfully")

@app.delete("/api/categories/{category_id}", response_model=SuccessResponse[dict])
async def delete_category(
    category_id: str,
    user: dict = Depends(require_admin),
    store: MongoStore = Depends(get_store),
):
    await category_ops.delete_category(store, category_id)
    return SuccessResponse(data={"id": category_id}, message="Category deleted successfully")

# Products
@app.get("/api/products", response_model=SuccessResponse[ProductListResponse])
@limiter.limit(READ_LIMIT)
async def list_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category_id: Optional[str] = None,
    search: Optional[str] = None,
    sort: str = Query("createdAt_desc", pattern="^(createdAt_desc|name_asc|name_desc|price_asc|price_desc)$"),
    store: MongoStore = Depends(get_store),
):
    products, total = await store.list_products(
        search=search, category_id=category_id, sort=sort, skip=(page - 1) * limit, limit=limit
    )
    return SuccessResponse(data=ProductListResponse(
        products=[ProductResponse(**p) for p in products],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    ))

@app.get("/api/products/{product_id}", response_model=SuccessResponse[ProductResponse])
@limiter.limit(READ_LIMIT)
async def get_product(product_id: str, request: Request, store: MongoStore = Depends(get_store)):
    product = await store.get_product(product_id)
    if not product:
        raise NotFoundException("Product not found")
    return SuccessResponse(data=ProductResponse(**product))

@app.post("/api/products", response_model=SuccessResponse[ProductResponse], status_code=201)
async def create_product(
    product: ProductCreate,
    user: dict = Depends(require_admin),
    store: MongoStore = Depends(get_store),
):
    await category_ops.ensure_category(store, product.category_id)
    product_db = ProductDB(**product.model_dump())
    created = await store.insert_product(product_db.model_dump(by_alias=True, exclude={"id"}))
    logger.info("Product created", extra={"user_id": user["sub"]})
    return SuccessResponse(data=ProductResponse(**created), message="Product created successfully")

@app.put("/api/products/{product_id}", response_model=SuccessResponse[ProductResponse])
async def update_product(
    product_id: str,
    product_update: ProductUpdate,
    user: dict = Depends(require_admin),
    store: MongoStore = Depends(get_store),
):
    if not await store.get_product(product_id, active_only=False):
        raise NotFoundException("Product not found")

    update_data = {k: v for k, v in product_update.model_dump().items() if v is not None}
    await category_ops.ensure_category(store, update_data.get("category_id"))
    updated = await store.update_product(product_id, update_data)
    return SuccessResponse(data=ProductResponse(**updated), message="Product updated successfully")

@app.delete("/api/products/{product_id}", response_model=SuccessResponse[dict])
async def delete_product(
    product_id: str,
    user: dict = Depends(require_admin),
    store: MongoStore = Depends(get_store),
):
    if not await store.get_product(product_id):
        raise NotFoundException("Product not found")
    await store.update_product(product_id, {"is_active": False})
    return SuccessResponse(data={"id": product_id}, message="Product deleted successfully")

# Cart
@app.get("/api/cart", response_model=SuccessResponse[CartResponse])
@limiter.limit(READ_LIMIT)
async def get_cart(request: Request, user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    cart = await cart_ops.get_cart(store, user["sub"])
    return SuccessResponse(data=CartResponse(**cart))

@app.post("/api/cart/items", response_model=SuccessResponse[CartResponse], status_code=201)
async def add_to_cart(item: CartItemAdd, user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    cart = await cart_ops.add_item(store, user["sub"], item.product_id, item.quantity)
    return SuccessResponse(data=CartResponse(**cart), message="Item added to cart")

@app.put("/api/cart/items/{product_id}", response_model=SuccessResponse[CartResponse])
async def update_cart_item(
    product_id: str,
    update: CartItemUpdate,
    user: dict = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
):
    cart = await cart_ops.update_item(store, user["sub"], product_id, update.quantity)
    return SuccessResponse(data=CartResponse(**cart))

@app.delete("/api/cart/items/{product_id}", response_model=SuccessResponse[CartResponse])
async def remove_cart_item(product_id: str, user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    cart = await cart_ops.remove_item(store, user["sub"], product_id)
    return SuccessResponse(data=CartResponse(**cart))

@app.delete("/api/cart", response_model=SuccessResponse[dict])
async def clear_cart(user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    await cart_ops.clear_cart(store, user["sub"])
    return SuccessResponse(message="Cart cleared")

# Wishlist
@app.get("/api/wishlist", response_model=SuccessResponse[WishlistResponse])
async def get_wishlist(user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    wishlist = await wishlist_ops.get_wishlist(store, user["sub"])
    return SuccessResponse(data=WishlistResponse(**wishlist))

@app.post("/api/wishlist/items", response_model=SuccessResponse[WishlistResponse], status_code=201)
async def add_to_wishlist(item: WishlistItemAdd, user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    wishlist = await wishlist_ops.add_item(store, user["sub"], item.product_id)
    return SuccessResponse(data=WishlistResponse(**wishlist), message="Item added to wishlist")

@app.delete("/api/wishlist/items/{product_id}", response_model=SuccessResponse[WishlistResponse])
async def remove_from_wishlist(product_id: str, user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    wishlist = await wishlist_ops.remove_item(store, user["sub"], product_id)
    return SuccessResponse(data=WishlistResponse(**wishlist))

@app.delete("/api/wishlist", response_model=SuccessResponse[dict])
async def clear_wishlist(user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    await wishlist_ops.clear_wishlist(store, user["sub"])
    return SuccessResponse(message="Wishlist cleared")

# Orders
@app.post("/api/orders", response_model=SuccessResponse[OrderResponse], status_code=201)
async def create_order(user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    order = await order_ops.create_order_from_cart(store, user["sub"])
    return SuccessResponse(data=OrderResponse(**order), message="Order created successfully")

@app.get("/api/orders", response_model=SuccessResponse[List[OrderResponse]])
async def list_orders(user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    orders = await order_ops.list_orders(store, user["sub"])
    return SuccessResponse(data=[OrderResponse(**o) for o in orders])

@app.get("/api/orders/admin", response_model=SuccessResponse[List[OrderResponse]])
async def list_all_orders(user: dict = Depends(require_admin), store: MongoStore = Depends(get_store)):
    orders = await order_ops.list_all_orders(store)
    return SuccessResponse(data=[OrderResponse(**o) for o in orders])

@app.get("/api/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(order_id: str, user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    order = await order_ops.get_order(store, user["sub"], order_id)
    return SuccessResponse(data=OrderResponse(**order))

@app.put("/api/orders/{order_id}/cancel", response_model=SuccessResponse[OrderResponse])
async def cancel_order(order_id: str, user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    order = await order_ops.cancel_order(store, user["sub"], order_id)
    return SuccessResponse(data=OrderResponse(**order), message="Order cancelled")

@app.put("/api/orders/{order_id}/status", response_model=SuccessResponse[OrderResponse])
async def update_order_status(
    order_id: str,
    status_update: OrderStatusUpdate,
    user: dict = Depends(require_admin),
    store: MongoStore = Depends(get_store),
):
    order = await order_ops.update_order_status(store, order_id, status_update.status)
    return SuccessResponse(data=OrderResponse(**order))

# Analytics
@app.get("/api/analytics/sales", response_model=SuccessResponse[SalesAnalyticsResponse])
async def sales_analytics(user: dict = Depends(require_admin), store: MongoStore = Depends(get_store)):
    summary = await analytics.sales_summary(store)
    return SuccessResponse(data=SalesAnalyticsResponse(**summary))

# Payments
@app.post("/api/payments/create-session", response_model=SuccessResponse[CheckoutSessionResponse])
@limiter.limit(CHECKOUT_LIMIT)
async def create_checkout_session(
    session_request: CheckoutSessionCreate,
    request: Request,
    user: dict = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
):
    session = await payment_ops.create_checkout_session(store, gateway, user["sub"], session_request.order_id)
    return SuccessResponse(data=CheckoutSessionResponse(**session))

@app.post("/api/payments/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    store: MongoStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
):
    # Signature is computed over the raw bytes, so the body must not be parsed first
    payload = await request.body()
    return await payment_ops.handle_webhook(store, gateway, payload, stripe_signature)

@app.get("/api/payments/order/{order_id}", response_model=SuccessResponse[PaymentResponse])
async def get_payment_by_order(order_id: str, user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    payment = await payment_ops.get_payment_for_order(store, user["sub"], order_id)
    return SuccessResponse(data=PaymentResponse(**payment))

# Reviews
@app.get("/api/reviews/products/{product_id}", response_model=SuccessResponse[List[ReviewResponse]])
async def list_product_reviews(product_id: str, store: MongoStore = Depends(get_store)):
    reviews = await store.list_reviews(product_id)
    return SuccessResponse(data=[ReviewResponse(**r) for r in reviews])

@app.post("/api/reviews", response_model=SuccessResponse[ReviewResponse], status_code=201)
async def create_review(review: ReviewCreate, user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    if not await store.get_product(review.product_id):
        raise NotFoundException("Product not found")
    if await store.find_review(user["sub"], review.product_id):
        raise ConflictException("You have already reviewed this product")

    review_db = ReviewDB(user_id=user["sub"], **review.model_dump())
    created = await store.insert_review(review_db.model_dump(by_alias=True, exclude={"id"}))
    if created is None:
        # Lost a race against a concurrent review by the same user
        raise ConflictException("You have already reviewed this product")
    return SuccessResponse(data=ReviewResponse(**created), message="Review created")

@app.delete("/api/reviews/{review_id}", response_model=SuccessResponse[dict])
async def delete_review(review_id: str, user: dict = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    if not await store.delete_review(review_id, user["sub"]):
        raise NotFoundException("Review not found")
    return SuccessResponse(data={"id": review_id}, message="Review deleted")

@app.get("/health", response_model=HealthResponse)
async def health_check(store: MongoStore = Depends(get_store)):
    try:
        await store.ping()
        db_status = "connected"
    except PyMongoError:
        db_status = "disconnected"

    if db_status != "connected":
        logger.error(f"Health Check Failed: DB={db_status}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service=SERVICE_NAME,
        status="healthy",
        timestamp=datetime.utcnow(),
        version=__version__,
        database=db_status,
    )
