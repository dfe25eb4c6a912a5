"""Cart business logic: merging lines and repairing them against the live catalog"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional
import logging

from opentelemetry import trace
from sqlalchemy.orm import Session

from storefront.errors import InsufficientStock, NotFound, ValidationFailed
from storefront.models.cart import CartLine
from storefront.models.product import Product

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class CartValidationReport:
    """What a validation pass removed, clamped or re-priced, keyed by product id"""
    removed: List[str] = field(default_factory=list)
    clamped: Dict[str, int] = field(default_factory=dict)
    repriced: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.removed or self.clamped or self.repriced)


@dataclass
class CartSummary:
    item_count: int
    total_quantity: int
    total_amount: Decimal


class CartService:
    """Cart service for business logic"""

    @staticmethod
    def _live_product(db: Session, product_id: str) -> Product:
        product = db.get(Product, product_id)
        if not product:
            raise NotFound("Product", product_id)
        return product

    @staticmethod
    def add_line(
        db: Session,
        user_id: int,
        product_id: str,
        quantity: int,
        selected_variants: Optional[Dict[str, str]] = None
    ) -> CartLine:
        """
        Add a product to the user's cart

        Re-adding a product already in the cart sums the quantities into the
        existing line, re-checks the total against stock and refreshes the
        price snapshot. Variants are replaced only by a non-empty map.
        """
        with tracer.start_as_current_span("cart_service.add_line") as span:
            span.set_attribute("user.id", user_id)
            span.set_attribute("product.id", product_id)
            span.set_attribute("quantity", quantity)

            logger.info(f"Adding product {product_id} to cart for user {user_id}")

            if quantity <= 0:
                raise ValidationFailed("Quantity must be greater than 0")

            product = CartService._live_product(db, product_id)
            if not product.is_active:
                raise ValidationFailed(f"Product is not active: {product_id}")
            if not product.is_in_stock():
                raise InsufficientStock(product_id, quantity, 0)
            if quantity > product.stock_quantity:
                raise InsufficientStock(product_id, quantity, product.stock_quantity)

            line = CartService.find_line(db, user_id, product_id)
            if line:
                new_quantity = line.quantity + quantity
                if new_quantity > product.stock_quantity:
                    raise InsufficientStock(product_id, new_quantity, product.stock_quantity)
                line.quantity = new_quantity
                line.price = product.price
                if selected_variants:
                    line.selected_variants = dict(selected_variants)
            else:
                line = CartLine(
                    user_id=user_id,
                    product_id=product_id,
                    quantity=quantity,
                    price=product.price,
                    selected_variants=dict(selected_variants or {})
                )
                db.add(line)

            db.commit()
            db.refresh(line)

            logger.info(f"Cart line {line.id} now holds {line.quantity} of product {product_id}")
            return line

    @staticmethod
    def get_lines(db: Session, user_id: int) -> List[CartLine]:
        return (
            db.query(CartLine)
            .filter(CartLine.user_id == user_id)
            .order_by(CartLine.created_at.asc(), CartLine.id.asc())
            .all()
        )

    @staticmethod
    def get_line(db: Session, user_id: int, line_id: int) -> CartLine:
        """A line in the user's own cart; another user's line reads as missing"""
        line = (
            db.query(CartLine)
            .filter(CartLine.id == line_id, CartLine.user_id == user_id)
            .first()
        )
        if not line:
            raise NotFound("Cart item", line_id)
        return line

    @staticmethod
    def find_line(db: Session, user_id: int, product_id: str) -> Optional[CartLine]:
        return (
            db.query(CartLine)
            .filter(CartLine.user_id == user_id, CartLine.product_id == product_id)
            .first()
        )

    @staticmethod
    def update_quantity(db: Session, user_id: int, line_id: int, quantity: int) -> CartLine:
        with tracer.start_as_current_span("cart_service.update_quantity") as span:
            span.set_attribute("cart_line.id", line_id)

            if quantity <= 0:
                raise ValidationFailed("Quantity must be greater than 0")

            line = CartService.get_line(db, user_id, line_id)
            product = CartService._live_product(db, line.product_id)
            if quantity > product.stock_quantity:
                raise InsufficientStock(line.product_id, quantity, product.stock_quantity)

            line.quantity = quantity
            line.price = product.price
            db.commit()
            db.refresh(line)

            logger.info(f"Cart line {line_id} quantity set to {quantity} for user {user_id}")
            return line

    @staticmethod
    def update_variants(db: Session, user_id: int, line_id: int, selected_variants: Dict[str, str]) -> CartLine:
        line = CartService.get_line(db, user_id, line_id)
        line.selected_variants = dict(selected_variants)
        db.commit()
        db.refresh(line)
        return line

    @staticmethod
    def remove_line(db: Session, user_id: int, line_id: int):
        line = CartService.get_line(db, user_id, line_id)
        db.delete(line)
        db.commit()
        logger.info(f"Cart line {line_id} removed for user {user_id}")

    @staticmethod
    def remove_product(db: Session, user_id: int, product_id: str):
        line = CartService.find_line(db, user_id, product_id)
        if not line:
            raise NotFound("Cart item", product_id, field="product id")
        db.delete(line)
        db.commit()
        logger.info(f"Product {product_id} removed from cart for user {user_id}")

    @staticmethod
    def clear(db: Session, user_id: int, commit: bool = True) -> int:
        """Delete every line of the cart; checkout passes commit=False"""
        deleted = (
            db.query(CartLine)
            .filter(CartLine.user_id == user_id)
            .delete(synchronize_session="fetch")
        )
        if commit:
            db.commit()
        logger.info(f"Cleared {deleted} items from cart for user {user_id}")
        return deleted

    @staticmethod
    def is_product_in_cart(db: Session, user_id: int, product_id: str) -> bool:
        return CartService.find_line(db, user_id, product_id) is not None

    @staticmethod
    def summarize(db: Session, user_id: int) -> CartSummary:
        lines = CartService.get_lines(db, user_id)
        return CartSummary(
            item_count=len(lines),
            total_quantity=sum(line.quantity for line in lines),
            total_amount=sum((line.total_price for line in lines), Decimal("0.00")),
        )

    @staticmethod
    def validate(db: Session, user_id: int, commit: bool = True) -> CartValidationReport:
        """
        Repair the cart against the live catalog

        Lines for missing or inactive products are removed, quantities above
        stock are clamped (or the line removed when stock is zero) and
        drifted price snapshots are re-synced. Never raises for a bad line.
        """
        with tracer.start_as_current_span("cart_service.validate") as span:
            span.set_attribute("user.id", user_id)
            report = CartValidationReport()

            for line in CartService.get_lines(db, user_id):
                product = db.get(Product, line.product_id)

                if product is None or not product.is_active:
                    logger.warning(f"Removing unavailable product {line.product_id} from cart of user {user_id}")
                    db.delete(line)
                    report.removed.append(line.product_id)
                    continue

                if line.quantity > product.stock_quantity:
                    if product.stock_quantity > 0:
                        logger.warning(
                            f"Reducing quantity for product {line.product_id} "
                            f"from {line.quantity} to {product.stock_quantity}"
                        )
                        line.quantity = product.stock_quantity
                        report.clamped[line.product_id] = product.stock_quantity
                    else:
                        logger.warning(f"Removing out of stock product {line.product_id} from cart")
                        db.delete(line)
                        report.removed.append(line.product_id)
                        continue

                if Decimal(line.price) != Decimal(product.price):
                    logger.info(
                        f"Updating price for product {line.product_id} from {line.price} to {product.price}"
                    )
                    line.price = product.price
                    report.repriced[line.product_id] = Decimal(product.price)

            if commit:
                db.commit()
            else:
                db.flush()

            span.set_attribute("cart.changed", report.changed)
            logger.info(f"Cart validation completed for user {user_id}")
            return report

    @staticmethod
    def transfer(db: Session, from_user_id: int, to_user_id: int) -> int:
        """Move every line to another user's cart, merging quantities on overlap"""
        with tracer.start_as_current_span("cart_service.transfer") as span:
            span.set_attribute("user.from", from_user_id)
            span.set_attribute("user.to", to_user_id)

            moved = 0
            for line in CartService.get_lines(db, from_user_id):
                existing = CartService.find_line(db, to_user_id, line.product_id)
                if existing:
                    existing.quantity += line.quantity
                    db.delete(line)
                else:
                    line.user_id = to_user_id
                moved += 1
                # Keep the unique (user, product) index satisfied line by line
                db.flush()

            db.commit()
            logger.info(f"Transferred {moved} cart lines from user {from_user_id} to user {to_user_id}")
            return moved

    @staticmethod
    def cleanup_old_lines(db: Session, days_old: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_old)
        deleted = (
            db.query(CartLine)
            .filter(CartLine.created_at < cutoff)
            .delete(synchronize_session="fetch")
        )
        db.commit()
        logger.info(f"Cleaned up {deleted} cart lines older than {days_old} days")
        return deleted
