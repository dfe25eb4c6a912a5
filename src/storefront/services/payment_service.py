"""
Payment business logic

Payment status is tracked independently of the order status; only the
order's payment-status field is kept in step with it.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging

from opentelemetry import trace
from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.db.database import commit_or_conflict
from storefront.db.pagination import PageRequest, paginate
from storefront.errors import (
    Conflict, GatewayError, InvalidStateTransition, NotFound, ValidationFailed, money
)
from storefront.models.enums import PaymentMethod, PaymentStatus
from storefront.models.order import Order
from storefront.models.payment import Payment
from storefront.services.gateways import GatewayRegistry
from storefront.services.order_service import OrderService
from storefront.services.pricing import quantize

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

PAYMENT_SORT_FIELDS = ("created_at", "amount", "status", "processed_at", "id")


class PaymentService:
    """Payment service for business logic"""

    def __init__(self, gateways: GatewayRegistry):
        self.gateways = gateways

    @staticmethod
    def create_payment(
        db: Session,
        order_id: int,
        payment_method: PaymentMethod,
        currency: Optional[str] = None
    ) -> Payment:
        """Create the single payment of an order for its full total"""
        with tracer.start_as_current_span("payment_service.create_payment") as span:
            span.set_attribute("order.id", order_id)
            logger.info(f"Creating payment for order {order_id}")

            order = OrderService.get_order(db, order_id)
            if db.query(Payment).filter(Payment.order_id == order_id).first():
                raise Conflict(f"Payment already exists for order: {order_id}")

            payment = Payment(
                order_id=order.id,
                amount=order.total,
                fee=Decimal("0.00"),
                currency=currency or settings.default_currency,
                payment_method=payment_method,
                status=PaymentStatus.PENDING,
                refunded_amount=Decimal("0.00")
            )
            payment.update_net_amount()

            db.add(payment)
            commit_or_conflict(db, f"Payment for order {order_id}")
            db.refresh(payment)

            span.set_attribute("payment.reference", payment.payment_reference)
            logger.info(f"Payment created with ID: {payment.id} and reference: {payment.payment_reference}")
            return payment

    # Lookups

    @staticmethod
    def get_payment(db: Session, payment_id: int) -> Payment:
        payment = db.get(Payment, payment_id)
        if not payment:
            raise NotFound("Payment", payment_id)
        return payment

    @staticmethod
    def get_payment_by_reference(db: Session, reference: str) -> Payment:
        payment = db.query(Payment).filter(Payment.payment_reference == reference).first()
        if not payment:
            raise NotFound("Payment", reference, field="reference")
        return payment

    @staticmethod
    def get_payment_by_order(db: Session, order_id: int) -> Payment:
        payment = db.query(Payment).filter(Payment.order_id == order_id).first()
        if not payment:
            raise NotFound("Payment", order_id, field="order id")
        return payment

    @staticmethod
    def get_payment_by_transaction(db: Session, transaction_id: str) -> Payment:
        payment = db.query(Payment).filter(Payment.gateway_transaction_id == transaction_id).first()
        if not payment:
            raise NotFound("Payment", transaction_id, field="transaction id")
        return payment

    @staticmethod
    def _lock(db: Session, reference: str) -> Payment:
        payment = (
            db.query(Payment)
            .filter(Payment.payment_reference == reference)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not payment:
            raise NotFound("Payment", reference, field="reference")
        return payment

    @staticmethod
    def get_payments(
        db: Session,
        page_request: PageRequest,
        status: Optional[PaymentStatus] = None,
        payment_method: Optional[PaymentMethod] = None,
        user_id: Optional[int] = None
    ) -> Tuple[List[Payment], int]:
        query = db.query(Payment)

        if status:
            query = query.filter(Payment.status == status)
        if payment_method:
            query = query.filter(Payment.payment_method == payment_method)
        if user_id:
            query = query.join(Order, Order.id == Payment.order_id).filter(Order.user_id == user_id)

        return paginate(query, Payment, page_request, PAYMENT_SORT_FIELDS)

    # State changes

    def process_payment(self, db: Session, reference: str, credentials) -> Payment:
        """
        Charge the payment through its method's gateway

        PROCESSING is committed before the gateway is called. Any exception
        from the gateway finalizes the payment as FAILED instead of
        propagating, so a payment is never left in PROCESSING.
        """
        with tracer.start_as_current_span("payment_service.process_payment") as span:
            span.set_attribute("payment.reference", reference)
            logger.info(f"Processing payment with reference: {reference}")

            payment = self._lock(db, reference)
            if payment.status != PaymentStatus.PENDING:
                raise InvalidStateTransition(
                    "payment", payment.status, PaymentStatus.PROCESSING,
                    "only PENDING payments can be processed"
                )

            payment.mark_as_processing()
            commit_or_conflict(db, f"Payment {reference}")

            try:
                payment = self._lock(db, reference)
                span.set_attribute("payment.method", payment.payment_method.value)

                try:
                    gateway = self.gateways.get(payment.payment_method)
                    result = gateway.process(payment, credentials)
                except Exception as e:
                    logger.error(f"Error processing payment {reference}: {e}")
                    span.record_exception(e)
                    payment.mark_as_failed(f"Processing error: {e}")
                else:
                    if result.success:
                        payment.mark_as_completed(result.transaction_id, result.response)
                        logger.info(f"Payment processed successfully: {reference}")
                    else:
                        payment.mark_as_failed(result.failure_reason, result.response)
                        logger.warning(f"Payment processing failed: {reference} - {result.failure_reason}")

                OrderService.update_payment_status(db, payment.order_id, payment.status, commit=False)
                commit_or_conflict(db, f"Payment {reference}")
            except Exception:
                db.rollback()
                raise

            db.refresh(payment)

            span.set_attribute("payment.status", payment.status.value)
            return payment

    @staticmethod
    def cancel_payment(db: Session, reference: str, reason: str) -> Payment:
        """Cancel a PENDING or PROCESSING payment"""
        with tracer.start_as_current_span("payment_service.cancel_payment") as span:
            span.set_attribute("payment.reference", reference)
            logger.info(f"Cancelling payment with reference: {reference}")

            try:
                payment = PaymentService._lock(db, reference)
                if not payment.status.can_transition_to(PaymentStatus.CANCELLED):
                    raise InvalidStateTransition("payment", payment.status, PaymentStatus.CANCELLED)

                payment.mark_as_cancelled(reason)
                OrderService.update_payment_status(db, payment.order_id, PaymentStatus.CANCELLED, commit=False)
                commit_or_conflict(db, f"Payment {reference}")
            except Exception:
                db.rollback()
                raise

            db.refresh(payment)
            logger.info(f"Payment cancelled successfully: {reference}")
            return payment

    def refund_payment(self, db: Session, reference: str, amount: Decimal, reason: str) -> Payment:
        """
        Refund part or all of a completed payment

        The refundable balance is checked on the row-locked payment, and the
        version counter rejects a concurrent refund that read the same balance.
        """
        with tracer.start_as_current_span("payment_service.refund_payment") as span:
            span.set_attribute("payment.reference", reference)
            span.set_attribute("refund.amount", str(amount))
            logger.info(f"Processing refund for payment {reference} - Amount: {amount}")

            amount = Decimal(amount)
            if amount <= 0:
                raise ValidationFailed("Refund amount must be greater than 0")

            try:
                payment = self._lock(db, reference)
                if not payment.can_be_refunded():
                    raise InvalidStateTransition(
                        "payment", payment.status, PaymentStatus.REFUNDED,
                        "only COMPLETED payments with a refundable balance can be refunded"
                    )
                if amount > payment.refundable_amount:
                    raise ValidationFailed(
                        f"Refund amount {money(amount)} exceeds refundable amount "
                        f"{money(payment.refundable_amount)}"
                    )

                try:
                    result = self.gateways.get(payment.payment_method).refund(payment, amount, reason)
                except GatewayError:
                    raise
                except Exception as e:
                    raise GatewayError(f"Refund processing failed: {e}")
                if not result.success:
                    logger.error(f"Refund processing failed: {reference} - {result.failure_reason}")
                    raise GatewayError(f"Refund processing failed: {result.failure_reason}")

                payment.apply_refund(amount)
                payment.append_note(f"Refund: {reason}")
                if payment.status == PaymentStatus.REFUNDED:
                    OrderService.update_payment_status(db, payment.order_id, PaymentStatus.REFUNDED, commit=False)

                commit_or_conflict(db, f"Payment {reference}")
            except Exception:
                db.rollback()
                raise

            db.refresh(payment)
            span.set_attribute("payment.status", payment.status.value)
            logger.info(f"Refund processed successfully: {reference} - Amount: {amount}")
            return payment

    # Statistics

    @staticmethod
    def get_statistics(db: Session) -> Dict:
        by_status = {status.value: 0 for status in PaymentStatus}
        for status, count in db.query(Payment.status, func.count(Payment.id)).group_by(Payment.status).all():
            by_status[status.value] = count

        by_method = {method.value: 0 for method in PaymentMethod}
        for method, count in (
            db.query(Payment.payment_method, func.count(Payment.id)).group_by(Payment.payment_method).all()
        ):
            by_method[method.value] = count

        return {
            "total_payments": sum(by_status.values()),
            "by_status": by_status,
            "by_method": by_method,
            "completed_amount": PaymentService.get_amount_by_status(db, PaymentStatus.COMPLETED),
            "total_refunded": PaymentService.get_total_refunded(db),
        }

    @staticmethod
    def get_amount_by_status(db: Session, status: PaymentStatus) -> Decimal:
        amount = db.query(func.sum(Payment.amount)).filter(Payment.status == status).scalar()
        return quantize(amount or 0)

    @staticmethod
    def get_total_refunded(db: Session) -> Decimal:
        return quantize(db.query(func.sum(Payment.refunded_amount)).scalar() or 0)

    @staticmethod
    def get_recent_payments(db: Session, limit: int = 10) -> List[Payment]:
        return db.query(Payment).order_by(Payment.created_at.desc(), Payment.id.desc()).limit(limit).all()

    @staticmethod
    def get_failed_payments(db: Session) -> List[Payment]:
        return (
            db.query(Payment)
            .filter(Payment.status == PaymentStatus.FAILED, Payment.failure_reason.isnot(None))
            .order_by(Payment.created_at.desc())
            .all()
        )
