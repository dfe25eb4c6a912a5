"""
Product catalog model
"""
import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from storefront.db.database import Base


def generate_product_id() -> str:
    return uuid.uuid4().hex


class Product(Base):
    """Catalog product; stock and counters are mutated by the inventory ledger"""
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("price > 0", name="ck_products_price_positive"),
    )

    id = Column(String(64), primary_key=True, default=generate_product_id)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    original_price = Column(Numeric(10, 2), nullable=True)
    main_image = Column(String(500), nullable=True)
    category = Column(String(100), nullable=True, index=True)
    brand = Column(String(100), nullable=True, index=True)
    sku = Column(String(100), unique=True, nullable=False, index=True)

    stock_quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=10)

    is_active = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)

    # Denormalized counters
    view_count = Column(Integer, nullable=False, default=0)
    sales_count = Column(Integer, nullable=False, default=0)
    average_rating = Column(Numeric(3, 2), nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def is_in_stock(self) -> bool:
        return (self.stock_quantity or 0) > 0

    @property
    def has_discount(self) -> bool:
        return self.original_price is not None and self.original_price > self.price

    def __repr__(self):
        return f"<Product(id={self.id}, sku={self.sku}, stock={self.stock_quantity})>"
