"""
Cart line model
"""
from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.sql import func

from storefront.db.database import Base


class CartLine(Base):
    """A user's pending selection of one product"""
    __tablename__ = "cart_lines"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_lines_user_product"),
        CheckConstraint("quantity >= 1", name="ck_cart_lines_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(String(64), ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    # Price snapshot taken when the line was added or last re-synced
    price = Column(Numeric(10, 2), nullable=False)
    selected_variants = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def total_price(self) -> Decimal:
        return Decimal(self.price) * self.quantity

    def __repr__(self):
        return f"<CartLine(id={self.id}, user_id={self.user_id}, product_id={self.product_id}, qty={self.quantity})>"
