"""
Order database models
"""
from decimal import Decimal
import time
import uuid

from sqlalchemy import JSON, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from storefront.db.database import Base
from storefront.models.enums import OrderStatus, PaymentMethod, PaymentStatus


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8].upper()}"


class Order(Base):
    """Order model"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(64), unique=True, nullable=False, index=True, default=generate_order_number)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Monetary breakdown, always computed server-side
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False)
    shipping = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total = Column(Numeric(10, 2), nullable=False)
    coupon_code = Column(String(50), nullable=True)

    status = Column(SQLEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    payment_method = Column(SQLEnum(PaymentMethod), nullable=False)
    payment_status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)

    tracking_number = Column(String(100), nullable=True)
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    # Address snapshots copied by value at creation
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    items = relationship(
        "OrderItem",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    __mapper_args__ = {"version_id_col": version}

    def can_be_cancelled(self) -> bool:
        return self.status.is_cancellable()

    def append_note(self, note: str):
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def __repr__(self):
        return f"<Order(id={self.id}, number={self.order_number}, status={self.status}, total={self.total})>"


class OrderItem(Base):
    """Immutable snapshot of a purchased product"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False, index=True)
    product_name = Column(String(200), nullable=False)
    product_image = Column(String(500), nullable=True)
    product_sku = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    selected_variants = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<OrderItem(id={self.id}, product_id={self.product_id}, qty={self.quantity})>"
