"""
Inventory ledger: the only code that moves stock for orders

Both operations are single atomic UPDATE statements and never commit, so
they compose into the caller's transaction and roll back with it.
"""
import logging

from opentelemetry import trace
from sqlalchemy import update
from sqlalchemy.orm import Session

from storefront.errors import InsufficientStock, NotFound, ValidationFailed
from storefront.models.product import Product

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class InventoryLedger:
    """Reserve and restore stock with conditional SQL updates"""

    @staticmethod
    def reserve(db: Session, product_id: str, quantity: int):
        """
        Take ``quantity`` units out of stock and count them as sold

        The decrement only applies while stock_quantity >= quantity, so two
        concurrent reservations can never drive stock below zero.
        """
        with tracer.start_as_current_span("inventory.reserve") as span:
            span.set_attribute("product.id", product_id)
            span.set_attribute("quantity", quantity)

            if quantity <= 0:
                raise ValidationFailed(f"Quantity must be positive, got {quantity}")

            result = db.execute(
                update(Product)
                .where(Product.id == product_id, Product.stock_quantity >= quantity)
                .values(
                    stock_quantity=Product.stock_quantity - quantity,
                    sales_count=Product.sales_count + quantity
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 1:
                logger.info(f"Reserved {quantity} of product {product_id}")
                return

            available = db.query(Product.stock_quantity).filter(Product.id == product_id).scalar()
            if available is None:
                raise NotFound("Product", product_id)

            logger.warning(
                f"Insufficient stock for product {product_id}: requested {quantity}, available {available}"
            )
            raise InsufficientStock(product_id, quantity, available)

    @staticmethod
    def restore(db: Session, product_id: str, quantity: int):
        """Put ``quantity`` units back; the sales counter is left alone"""
        with tracer.start_as_current_span("inventory.restore") as span:
            span.set_attribute("product.id", product_id)
            span.set_attribute("quantity", quantity)

            if quantity <= 0:
                raise ValidationFailed(f"Quantity must be positive, got {quantity}")

            result = db.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock_quantity=Product.stock_quantity + quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFound("Product", product_id)

            logger.info(f"Restored {quantity} of product {product_id}")
