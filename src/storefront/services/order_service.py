"""
Order business logic: checkout and the order lifecycle
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging

from opentelemetry import trace
from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.db.database import commit_or_conflict
from storefront.db.pagination import PageRequest, paginate
from storefront.errors import InvalidStateTransition, NotFound, ValidationFailed
from storefront.models.enums import OrderStatus, PaymentStatus
from storefront.models.order import Order, OrderItem
from storefront.models.product import Product
from storefront.models.schemas import OrderCreate
from storefront.models.user import User
from storefront.services.cart_service import CartService
from storefront.services.inventory import InventoryLedger
from storefront.services.notifications import ORDER_CONFIRMATION, NotificationDispatcher, template_for_status
from storefront.services.pricing import PricingCalculator, quantize
from storefront.services.user_service import UserService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ORDER_SORT_FIELDS = ("created_at", "updated_at", "total", "status", "order_number", "id")


class OrderService:
    """Order service for business logic"""

    def __init__(self, pricing: PricingCalculator, notifier: NotificationDispatcher):
        self.pricing = pricing
        self.notifier = notifier

    def create_order(self, db: Session, user_id: int, order_data: OrderCreate) -> Order:
        """
        Turn the user's cart into an order

        Process:
        1. Repair the cart against the live catalog
        2. Snapshot the shipping and billing addresses
        3. Price the validated lines
        4. Snapshot every product and reserve its stock
        5. Clear the cart and commit everything as one unit
        """
        with tracer.start_as_current_span("order_service.create_order") as span:
            span.set_attribute("user.id", user_id)

            if not CartService.get_lines(db, user_id):
                raise ValidationFailed("Cart is empty")

            # Repairs are kept even if checkout fails below
            CartService.validate(db, user_id)
            lines = CartService.get_lines(db, user_id)
            if not lines:
                raise ValidationFailed("Cart is empty after validation")

            span.set_attribute("items.count", len(lines))
            logger.info(f"Creating order for user {user_id} with {len(lines)} items")

            try:
                shipping_address = self._resolve_address(
                    db, user_id, order_data.shipping_address, order_data.shipping_address_id
                )
                if order_data.billing_address is None and order_data.billing_address_id is None:
                    billing_address = dict(shipping_address)
                else:
                    billing_address = self._resolve_address(
                        db, user_id, order_data.billing_address, order_data.billing_address_id
                    )

                breakdown = self.pricing.calculate(
                    [(line.price, line.quantity) for line in lines],
                    order_data.coupon_code
                )

                order = Order(
                    user_id=user_id,
                    subtotal=breakdown.subtotal,
                    tax=breakdown.tax,
                    shipping=breakdown.shipping,
                    discount=breakdown.discount,
                    total=breakdown.total,
                    coupon_code=order_data.coupon_code,
                    status=OrderStatus.PENDING,
                    payment_method=order_data.payment_method,
                    payment_status=PaymentStatus.PENDING,
                    notes=order_data.notes,
                    shipping_address=shipping_address,
                    billing_address=billing_address
                )

                for line in lines:
                    product = db.get(Product, line.product_id)
                    order.items.append(OrderItem(
                        product_id=product.id,
                        product_name=product.name,
                        product_image=product.main_image,
                        product_sku=product.sku,
                        quantity=line.quantity,
                        unit_price=line.price,
                        total_price=quantize(Decimal(line.price) * line.quantity),
                        selected_variants=dict(line.selected_variants or {})
                    ))
                    InventoryLedger.reserve(db, product.id, line.quantity)

                db.add(order)
                CartService.clear(db, user_id, commit=False)
                db.commit()
            except Exception:
                db.rollback()
                logger.warning(f"Checkout failed for user {user_id}, rolled back")
                raise

            db.refresh(order)
            span.set_attribute("order.id", order.id)
            span.set_attribute("order.total", str(order.total))
            logger.info(f"Order {order.order_number} created with total {order.total}")

            self._notify(db, order, ORDER_CONFIRMATION)
            return order

    @staticmethod
    def _resolve_address(db: Session, user_id: int, inline, address_id: Optional[int]) -> Dict:
        if inline is not None:
            return inline.model_dump()
        return UserService.get_address(db, user_id, address_id).snapshot()

    # Lookups

    @staticmethod
    def get_order(db: Session, order_id: int) -> Order:
        """Get order by ID"""
        with tracer.start_as_current_span("order_service.get_order") as span:
            span.set_attribute("order.id", order_id)
            order = db.get(Order, order_id)
            if not order:
                raise NotFound("Order", order_id)
            return order

    @staticmethod
    def get_order_by_number(db: Session, order_number: str) -> Order:
        order = db.query(Order).filter(Order.order_number == order_number).first()
        if not order:
            raise NotFound("Order", order_number, field="order number")
        return order

    @staticmethod
    def _lock(db: Session, order_id: int) -> Order:
        order = (
            db.query(Order)
            .filter(Order.id == order_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not order:
            raise NotFound("Order", order_id)
        return order

    @staticmethod
    def get_orders(
        db: Session,
        page_request: PageRequest,
        user_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        keyword: Optional[str] = None
    ) -> Tuple[List[Order], int]:
        """Get list of orders with filters"""
        with tracer.start_as_current_span("order_service.get_orders") as span:
            query = db.query(Order)

            if user_id:
                query = query.filter(Order.user_id == user_id)
                span.set_attribute("filter.user_id", user_id)

            if status:
                query = query.filter(Order.status == status)
                span.set_attribute("filter.status", status.value)

            if keyword:
                query = query.filter(Order.order_number.ilike(f"%{keyword.strip()}%"))

            orders, total = paginate(query, Order, page_request, ORDER_SORT_FIELDS)

            span.set_attribute("orders.total", total)
            span.set_attribute("orders.returned", len(orders))

            return orders, total

    # Lifecycle

    def update_order_status(self, db: Session, order_id: int, new_status: OrderStatus) -> Order:
        """Apply a status change allowed by the transition table"""
        with tracer.start_as_current_span("order_service.update_status") as span:
            span.set_attribute("order.id", order_id)
            span.set_attribute("status.new", new_status.value)

            try:
                order = self._lock(db, order_id)
                old_status = order.status
                self._transition(db, order, new_status)
                commit_or_conflict(db, f"Order {order_id}")
            except Exception:
                db.rollback()
                raise

            db.refresh(order)
            span.set_attribute("status.old", old_status.value)
            logger.info(f"Order {order_id} status updated: {old_status.value} -> {new_status.value}")

            self._notify(db, order, template_for_status(new_status))
            return order

    def cancel_order(self, db: Session, order_id: int, reason: str) -> Order:
        """Cancel a PENDING or CONFIRMED order and put its stock back"""
        with tracer.start_as_current_span("order_service.cancel_order") as span:
            span.set_attribute("order.id", order_id)

            try:
                order = self._lock(db, order_id)
                if not order.can_be_cancelled():
                    logger.warning(f"Cannot cancel order {order_id} with status {order.status.value}")
                    raise InvalidStateTransition(
                        "order", order.status, OrderStatus.CANCELLED,
                        "only PENDING or CONFIRMED orders can be cancelled"
                    )

                order.append_note(f"Cancellation reason: {reason}")
                self._transition(db, order, OrderStatus.CANCELLED)
                commit_or_conflict(db, f"Order {order_id}")
            except Exception:
                db.rollback()
                raise

            db.refresh(order)
            logger.info(f"Order {order_id} cancelled")

            self._notify(db, order, template_for_status(OrderStatus.CANCELLED))
            return order

    @staticmethod
    def _transition(db: Session, order: Order, new_status: OrderStatus):
        """Validate and apply; entering CANCELLED restores every line's stock"""
        old_status = order.status
        if not old_status.can_transition_to(new_status):
            raise InvalidStateTransition("order", old_status, new_status)

        order.status = new_status

        if new_status == OrderStatus.CANCELLED and old_status != OrderStatus.CANCELLED:
            for item in order.items:
                InventoryLedger.restore(db, item.product_id, item.quantity)
            logger.info(f"Restored stock for {len(order.items)} lines of order {order.id}")

    @staticmethod
    def update_payment_status(
        db: Session,
        order_id: int,
        payment_status: PaymentStatus,
        commit: bool = True
    ) -> Order:
        """Set only the payment-status field; the order status is untouched"""
        order = OrderService._lock(db, order_id)
        order.payment_status = payment_status
        if commit:
            commit_or_conflict(db, f"Order {order_id}")
            db.refresh(order)
        logger.info(f"Order {order_id} payment status set to {payment_status.value}")
        return order

    def update_tracking_number(self, db: Session, order_id: int, tracking_number: str) -> Order:
        """Record tracking; a CONFIRMED or PROCESSING order moves to SHIPPED"""
        with tracer.start_as_current_span("order_service.update_tracking") as span:
            span.set_attribute("order.id", order_id)

            order = self._lock(db, order_id)
            order.tracking_number = tracking_number

            shipped = order.status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING)
            if shipped:
                order.status = OrderStatus.SHIPPED

            commit_or_conflict(db, f"Order {order_id}")
            db.refresh(order)
            logger.info(f"Order {order_id} tracking number set to {tracking_number}")

            if shipped:
                self._notify(db, order, template_for_status(OrderStatus.SHIPPED))
            return order

    @staticmethod
    def update_estimated_delivery(db: Session, order_id: int, estimated_delivery: datetime) -> Order:
        order = OrderService._lock(db, order_id)
        order.estimated_delivery = estimated_delivery
        commit_or_conflict(db, f"Order {order_id}")
        db.refresh(order)
        return order

    # Statistics

    @staticmethod
    def get_statistics(db: Session) -> Dict:
        by_status = {status.value: 0 for status in OrderStatus}
        for status, count in db.query(Order.status, func.count(Order.id)).group_by(Order.status).all():
            by_status[status.value] = count

        return {
            "total_orders": sum(by_status.values()),
            "by_status": by_status,
            "total_revenue": OrderService.get_total_revenue(db),
        }

    @staticmethod
    def get_total_revenue(db: Session) -> Decimal:
        """Sum of totals over DELIVERED orders"""
        revenue = db.query(func.sum(Order.total)).filter(Order.status == OrderStatus.DELIVERED).scalar()
        return quantize(revenue or 0)

    @staticmethod
    def get_revenue_between(db: Session, start: datetime, end: datetime) -> Decimal:
        revenue = (
            db.query(func.sum(Order.total))
            .filter(
                Order.status == OrderStatus.DELIVERED,
                Order.created_at >= start,
                Order.created_at <= end
            )
            .scalar()
        )
        return quantize(revenue or 0)

    @staticmethod
    def get_user_order_count(db: Session, user_id: int) -> int:
        return db.query(Order).filter(Order.user_id == user_id).count()

    @staticmethod
    def get_recent_orders(db: Session, limit: int = 10) -> List[Order]:
        """Most recent orders that are neither cancelled nor refunded"""
        return (
            db.query(Order)
            .filter(Order.status.notin_([OrderStatus.CANCELLED, OrderStatus.REFUNDED]))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
            .all()
        )

    def _notify(self, db: Session, order: Order, template_key: str):
        try:
            user = db.get(User, order.user_id)
            if user is None:
                return
            self.notifier.order_event(template_key, user.email, user.full_name, order)
        except Exception as e:
            logger.error(f"Failed to dispatch {template_key} for order {order.order_number}: {e}")
