"""
Pydantic schemas for request/response validation
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from storefront.models.enums import OrderStatus, PaymentMethod, PaymentStatus, Role

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

class ApiResponse(BaseModel, Generic[T]):
    """Envelope wrapping every API response"""
    success: bool
    message: Optional[str] = None
    data: Optional[T] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def ok(cls, data=None, message: str = "Operation completed successfully"):
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: str, message: Optional[str] = None):
        return cls(success=False, error=error, message=message)


class Page(BaseModel, Generic[T]):
    """One page of a paginated listing"""
    content: List[T]
    total: int
    page: int
    size: int
    total_pages: int

    @classmethod
    def build(cls, content: List[T], total: int, page: int, size: int):
        total_pages = (total + size - 1) // size if size else 0
        return cls(content=content, total=total, page=page, size=size, total_pages=total_pages)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

class ProductBase(BaseModel):
    """Base product schema"""
    name: str = Field(..., min_length=2, max_length=200, description="Product name")
    description: Optional[str] = Field(None, max_length=2000)
    price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2, description="Unit price")
    original_price: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    main_image: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=100)
    brand: Optional[str] = Field(None, max_length=100)
    sku: str = Field(..., min_length=1, max_length=100, description="Stock Keeping Unit")
    stock_quantity: int = Field(0, ge=0)
    low_stock_threshold: int = Field(10, ge=0)
    is_active: bool = True
    is_featured: bool = False


class ProductCreate(ProductBase):
    """Schema for creating a product"""
    pass


class ProductUpdate(BaseModel):
    """Schema for updating a product (all fields optional)"""
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    price: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    original_price: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    main_image: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=100)
    brand: Optional[str] = Field(None, max_length=100)
    sku: Optional[str] = Field(None, min_length=1, max_length=100)
    stock_quantity: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class StockUpdate(BaseModel):
    stock_quantity: int = Field(..., ge=0)


class PriceUpdate(BaseModel):
    price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class ProductResponse(ProductBase):
    """Schema for product response"""
    id: str
    view_count: int
    sales_count: int
    average_rating: Decimal
    review_count: int
    has_discount: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------

class CartLineCreate(BaseModel):
    """Schema for adding a product to the cart"""
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    selected_variants: Dict[str, str] = Field(default_factory=dict)


class CartLineUpdate(BaseModel):
    """Schema for updating a cart line; at least one field is required"""
    quantity: Optional[int] = Field(None, ge=1)
    selected_variants: Optional[Dict[str, str]] = None

    @model_validator(mode="after")
    def check_not_empty(self):
        if self.quantity is None and self.selected_variants is None:
            raise ValueError("quantity or selected_variants is required")
        return self


class CartLineResponse(BaseModel):
    id: int
    product_id: str
    quantity: int
    price: Decimal
    total_price: Decimal
    selected_variants: Dict[str, str]
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CartSummaryResponse(BaseModel):
    item_count: int
    total_quantity: int
    total_amount: Decimal


class CartValidationResponse(BaseModel):
    """What a validation pass changed"""
    removed: List[str]
    clamped: Dict[str, int]
    repriced: Dict[str, Decimal]

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Users & addresses
# ---------------------------------------------------------------------------

class AddressInfo(BaseModel):
    """Address fields, also the by-value snapshot stored on orders"""
    name: str = Field(..., min_length=1, max_length=255)
    street: str = Field(..., min_length=1, max_length=255)
    apartment: Optional[str] = Field(None, max_length=100)
    city: str = Field(..., min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=30)


class AddressCreate(AddressInfo):
    is_default: bool = False


class AddressResponse(AddressCreate):
    id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserCreate(BaseModel):
    """Schema for registering a user"""
    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=6, max_length=100)


class UserResponse(BaseModel):
    id: int
    email: str
    full_name: str
    role: Role
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class OrderCreate(BaseModel):
    """Checkout request; totals are always computed server-side"""
    payment_method: PaymentMethod
    shipping_address: Optional[AddressInfo] = None
    shipping_address_id: Optional[int] = None
    billing_address: Optional[AddressInfo] = None
    billing_address_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=1000)
    coupon_code: Optional[str] = Field(None, max_length=50)

    @model_validator(mode="after")
    def check_shipping_address(self):
        if self.shipping_address is None and self.shipping_address_id is None:
            raise ValueError("shipping_address or shipping_address_id is required")
        return self


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class TrackingUpdate(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=100)


class EstimatedDeliveryUpdate(BaseModel):
    estimated_delivery: datetime


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class OrderItemResponse(BaseModel):
    id: int
    product_id: str
    product_name: str
    product_image: Optional[str] = None
    product_sku: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    selected_variants: Dict[str, str]

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: int
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    coupon_code: Optional[str] = None
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    notes: Optional[str] = None
    shipping_address: AddressInfo
    billing_address: AddressInfo
    items: List[OrderItemResponse]
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderStatsResponse(BaseModel):
    total_orders: int
    by_status: Dict[str, int]
    total_revenue: Decimal


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

class PaymentCreate(BaseModel):
    order_id: int = Field(..., gt=0)
    payment_method: PaymentMethod
    currency: Optional[str] = Field(None, pattern=r"^[A-Z]{3}$")


class PaymentProcessRequest(BaseModel):
    """Method-specific credentials; only the fields the method needs are read"""
    card_number: Optional[str] = Field(None, max_length=19)
    expiry_month: Optional[str] = Field(None, max_length=2)
    expiry_year: Optional[str] = Field(None, max_length=4)
    cvv: Optional[str] = Field(None, max_length=4)
    upi_id: Optional[str] = Field(None, max_length=100)
    bank_code: Optional[str] = Field(None, max_length=20)
    wallet_id: Optional[str] = Field(None, max_length=100)


class PaymentCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class RefundRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=500)


class PaymentResponse(BaseModel):
    id: int
    payment_reference: str
    order_id: int
    amount: Decimal
    fee: Decimal
    net_amount: Decimal
    currency: str
    payment_method: PaymentMethod
    status: PaymentStatus
    gateway_transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    refunded_amount: Decimal
    refunded_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentStatsResponse(BaseModel):
    total_payments: int
    by_status: Dict[str, int]
    by_method: Dict[str, int]
    completed_amount: Decimal
    total_refunded: Decimal
