from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from storefront.models import OrderStatus
from storefront.shared.security_config import sanitize_input

# Categories
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CategoryResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    product_count: int
    created_at: datetime
    updated_at: Optional[datetime] = None

# Products
# image_url is not escaped: it is a URL, not text rendered as markup
class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: Decimal = Field(..., gt=0, decimal_places=2)
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    stock: int = Field(0, ge=0)

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductResponse(BaseModel):
    id: str
    name: str
    description: str
    price: Decimal
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    stock: int
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    total: int
    page: int
    limit: int
    pages: int

# Cart
class CartItemAdd(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)

class CartItemUpdate(BaseModel):
    # 0 removes the line
    quantity: int = Field(..., ge=0)

class CartItemResponse(BaseModel):
    product_id: str
    quantity: int
    price: Optional[Decimal] = None
    name: Optional[str] = None
    image_url: Optional[str] = None
    available: bool = True

class CartResponse(BaseModel):
    user_id: str
    items: List[CartItemResponse]
    total: Decimal
    updated_at: datetime

# Wishlist
class WishlistItemAdd(BaseModel):
    product_id: str

class WishlistItemResponse(BaseModel):
    product_id: str
    name: str
    price: Decimal
    image_url: Optional[str] = None
    added_at: datetime

class WishlistResponse(BaseModel):
    user_id: str
    items: List[WishlistItemResponse]
    updated_at: datetime

# Orders
class OrderItemResponse(BaseModel):
    product_id: str
    name: str
    quantity: int
    price: Decimal

class PaymentResponse(BaseModel):
    id: str
    order_id: str
    external_session_id: str
    amount: Decimal
    status: str
    created_at: datetime

class OrderResponse(BaseModel):
    id: str
    user_id: str
    items: List[OrderItemResponse]
    total: Decimal
    status: OrderStatus
    payment: Optional[PaymentResponse] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

# Payments
class CheckoutSessionCreate(BaseModel):
    order_id: str = Field(..., min_length=1)

class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: Optional[str] = None

# Reviews
class ReviewCreate(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None

    @field_validator('comment')
    def sanitize_comment(cls, v):
        return sanitize_input(v)

class ReviewResponse(BaseModel):
    id: str
    user_id: str
    product_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime

# Analytics
class MonthlySales(BaseModel):
    month: str
    revenue: Decimal
    orders: int

class TopProduct(BaseModel):
    product_id: str
    name: str
    total_sold: int

class SalesAnalyticsResponse(BaseModel):
    total_sales: Decimal
    total_orders: int
    sales_by_month: List[MonthlySales]
    top_selling_products: List[TopProduct]
    recent_orders: List[OrderResponse]
