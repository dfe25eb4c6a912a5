"""Tests for the payment state tracker."""

from decimal import Decimal

import pytest

from storefront.db import database
from storefront.errors import Conflict, GatewayError, InvalidStateTransition, ValidationFailed
from storefront.models.enums import PAYMENT_TRANSITIONS, PaymentMethod, PaymentStatus
from storefront.models.schemas import PaymentProcessRequest
from storefront.services.cart_service import CartService
from storefront.services.gateways import CardGateway, GatewayResult, PaymentGateway, default_registry
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService

VISA = PaymentProcessRequest(card_number="4111111111111111", expiry_month="12", expiry_year="2030", cvv="123")


@pytest.fixture
def fifty_dollar_order(db, user, make_product, order_service, checkout_request):
    """40.00 subtotal + 4.00 tax + 10.00 shipping - 4.00 coupon = 50.00"""
    product = make_product(price="40.00", stock=5)
    CartService.add_line(db, user.id, product.id, 1)
    order = order_service.create_order(db, user.id, checkout_request(coupon_code="SAVE10"))
    assert order.total == Decimal("50.00")
    return order


@pytest.fixture
def completed_payment(db, fifty_dollar_order, payment_service):
    payment = payment_service.create_payment(db, fifty_dollar_order.id, PaymentMethod.CARD)
    return payment_service.process_payment(db, payment.payment_reference, VISA)


class ExplodingGateway(PaymentGateway):
    method = PaymentMethod.CARD

    def process(self, payment, credentials):
        raise RuntimeError("gateway timeout")


class RefusingRefundGateway(PaymentGateway):
    method = PaymentMethod.CARD
    prefix = "TXN"

    def refund(self, payment, amount, reason):
        return GatewayResult(False, None, "Refund declined", "Issuer unavailable")


class TestCreatePayment:
    def test_payment_mirrors_order_total(self, db, fifty_dollar_order, payment_service):
        payment = payment_service.create_payment(db, fifty_dollar_order.id, PaymentMethod.UPI)

        assert payment.amount == Decimal("50.00")
        assert payment.fee == Decimal("0.00")
        assert payment.net_amount == Decimal("50.00")
        assert payment.currency == "USD"
        assert payment.status == PaymentStatus.PENDING
        assert payment.payment_reference.startswith("PAY-")

    def test_one_payment_per_order(self, db, fifty_dollar_order, payment_service):
        payment_service.create_payment(db, fifty_dollar_order.id, PaymentMethod.UPI)

        with pytest.raises(Conflict):
            payment_service.create_payment(db, fifty_dollar_order.id, PaymentMethod.CARD)


class TestProcessPayment:
    def test_successful_card_payment(self, db, completed_payment, fifty_dollar_order):
        assert completed_payment.status == PaymentStatus.COMPLETED
        assert completed_payment.gateway_transaction_id.startswith("TXN_")
        assert completed_payment.processed_at is not None

        order = OrderService.get_order(db, fifty_dollar_order.id)
        assert order.payment_status == PaymentStatus.COMPLETED

    def test_declined_card_fails(self, db, fifty_dollar_order, payment_service):
        payment = payment_service.create_payment(db, fifty_dollar_order.id, PaymentMethod.CARD)

        result = payment_service.process_payment(
            db, payment.payment_reference, PaymentProcessRequest(card_number="5500000000000004")
        )

        assert result.status == PaymentStatus.FAILED
        assert result.failure_reason == "Invalid card number"
        assert OrderService.get_order(db, fifty_dollar_order.id).payment_status == PaymentStatus.FAILED

    def test_gateway_exception_becomes_failed(self, db, fifty_dollar_order):
        registry = default_registry()
        registry.register(ExplodingGateway())
        service = PaymentService(registry)
        payment = service.create_payment(db, fifty_dollar_order.id, PaymentMethod.CARD)

        result = service.process_payment(db, payment.payment_reference, VISA)

        assert result.status == PaymentStatus.FAILED
        assert "gateway timeout" in result.failure_reason
        assert OrderService.get_order(db, fifty_dollar_order.id).payment_status == PaymentStatus.FAILED

    def test_only_pending_payments_are_processed(self, db, completed_payment, payment_service):
        with pytest.raises(InvalidStateTransition):
            payment_service.process_payment(db, completed_payment.payment_reference, VISA)

    def test_order_status_is_not_changed_by_payment(self, db, completed_payment, fifty_dollar_order):
        order = OrderService.get_order(db, fifty_dollar_order.id)
        assert order.status.value == "PENDING"


class TestCancelPayment:
    def test_cancel_pending_payment(self, db, fifty_dollar_order, payment_service):
        payment = payment_service.create_payment(db, fifty_dollar_order.id, PaymentMethod.WALLET)

        cancelled = payment_service.cancel_payment(db, payment.payment_reference, "customer request")

        assert cancelled.status == PaymentStatus.CANCELLED
        assert cancelled.failure_reason == "customer request"
        assert OrderService.get_order(db, fifty_dollar_order.id).payment_status == PaymentStatus.CANCELLED

    def test_completed_payment_cannot_be_cancelled(self, db, completed_payment, payment_service):
        with pytest.raises(InvalidStateTransition):
            payment_service.cancel_payment(db, completed_payment.payment_reference, "too late")


class TestRefund:
    def test_full_refund_then_nothing_left(self, db, completed_payment, payment_service, fifty_dollar_order):
        refunded = payment_service.refund_payment(db, completed_payment.payment_reference, Decimal("50.00"), "damaged")

        assert refunded.status == PaymentStatus.REFUNDED
        assert refunded.refunded_amount == Decimal("50.00")
        assert refunded.notes == "Refund: damaged"
        assert OrderService.get_order(db, fifty_dollar_order.id).payment_status == PaymentStatus.REFUNDED

        with pytest.raises(InvalidStateTransition):
            payment_service.refund_payment(db, completed_payment.payment_reference, Decimal("0.01"), "again")

    def test_refund_above_amount_rejected(self, db, completed_payment, payment_service):
        with pytest.raises(ValidationFailed):
            payment_service.refund_payment(db, completed_payment.payment_reference, Decimal("60.00"), "too much")

        payment = payment_service.get_payment_by_reference(db, completed_payment.payment_reference)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.refunded_amount == Decimal("0.00")

    def test_partial_refund_closes_the_payment(self, db, completed_payment, payment_service, fifty_dollar_order):
        reference = completed_payment.payment_reference

        first = payment_service.refund_payment(db, reference, Decimal("20.00"), "one item")
        assert first.status == PaymentStatus.PARTIALLY_REFUNDED
        assert first.refunded_amount == Decimal("20.00")
        assert OrderService.get_order(db, fifty_dollar_order.id).payment_status == PaymentStatus.COMPLETED

        with pytest.raises(InvalidStateTransition):
            payment_service.refund_payment(db, reference, Decimal("10.00"), "rest")

        payment = payment_service.get_payment_by_reference(db, reference)
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
        assert payment.refunded_amount == Decimal("20.00")
        assert payment.notes == "Refund: one item"

    def test_refund_exactly_the_balance_in_one_go(self, db, completed_payment, payment_service):
        with pytest.raises(ValidationFailed):
            payment_service.refund_payment(db, completed_payment.payment_reference, Decimal("50.01"), "over")

        refunded = payment_service.refund_payment(db, completed_payment.payment_reference, Decimal("50.00"), "all")
        assert refunded.status == PaymentStatus.REFUNDED

    def test_non_positive_refund_rejected(self, db, completed_payment, payment_service):
        with pytest.raises(ValidationFailed):
            payment_service.refund_payment(db, completed_payment.payment_reference, Decimal("0"), "zero")

    def test_pending_payment_cannot_be_refunded(self, db, fifty_dollar_order, payment_service):
        payment = payment_service.create_payment(db, fifty_dollar_order.id, PaymentMethod.COD)

        with pytest.raises(InvalidStateTransition):
            payment_service.refund_payment(db, payment.payment_reference, Decimal("10.00"), "early")

    def test_gateway_refusal_changes_nothing(self, db, fifty_dollar_order):
        registry = default_registry()
        registry.register(RefusingRefundGateway())
        service = PaymentService(registry)
        payment = service.create_payment(db, fifty_dollar_order.id, PaymentMethod.CARD)
        service.process_payment(db, payment.payment_reference, VISA)

        with pytest.raises(GatewayError):
            service.refund_payment(db, payment.payment_reference, Decimal("10.00"), "declined")

        payment = service.get_payment_by_reference(db, payment.payment_reference)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.refunded_amount == Decimal("0.00")
        assert payment.notes is None


class TestPaymentStats:
    def test_statistics(self, db, completed_payment, payment_service):
        payment_service.refund_payment(db, completed_payment.payment_reference, Decimal("5.00"), "partial")

        stats = payment_service.get_statistics(db)

        assert stats["total_payments"] == 1
        assert stats["by_status"]["PARTIALLY_REFUNDED"] == 1
        assert stats["by_method"]["CARD"] == 1
        assert stats["total_refunded"] == Decimal("5.00")


class ConcurrentRefundGateway(CardGateway):
    """Card gateway that lets another session refund the same payment first."""

    def __init__(self, amount):
        self.amount = amount

    def refund(self, payment, amount, reason):
        other = database.SessionLocal()
        try:
            PaymentService(default_registry()).refund_payment(
                other, payment.payment_reference, self.amount, "concurrent"
            )
        finally:
            other.close()
        return super().refund(payment, amount, reason)


class TestConcurrency:
    def test_interleaved_refunds_cannot_exceed_balance(self, db, completed_payment):
        registry = default_registry()
        registry.register(ConcurrentRefundGateway(Decimal("30.00")))
        service = PaymentService(registry)

        with pytest.raises(Conflict):
            service.refund_payment(db, completed_payment.payment_reference, Decimal("30.00"), "mine")

        payment = service.get_payment_by_reference(db, completed_payment.payment_reference)
        assert payment.refunded_amount == Decimal("30.00")
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
        assert payment.notes == "Refund: concurrent"

    def test_failed_finalize_rolls_back_session(self, db, fifty_dollar_order, payment_service, monkeypatch):
        payment = payment_service.create_payment(db, fifty_dollar_order.id, PaymentMethod.CARD)
        reference = payment.payment_reference

        def lost_race(*args, **kwargs):
            raise Conflict(f"Order {fifty_dollar_order.id} was modified concurrently, please retry")

        monkeypatch.setattr(OrderService, "update_payment_status", staticmethod(lost_race))
        with pytest.raises(Conflict):
            payment_service.process_payment(db, reference, VISA)
        monkeypatch.undo()

        stored = payment_service.get_payment_by_reference(db, reference)
        assert stored.status == PaymentStatus.PROCESSING
        assert stored.gateway_transaction_id is None


class TestPaymentTransitions:
    def test_only_completed_payments_are_refundable(self):
        refundable = {status for status in PaymentStatus if status.is_refundable()}
        assert refundable == {PaymentStatus.COMPLETED}

    def test_partial_refund_is_final(self):
        assert PAYMENT_TRANSITIONS[PaymentStatus.COMPLETED] == {
            PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED
        }
        assert not PAYMENT_TRANSITIONS[PaymentStatus.PARTIALLY_REFUNDED]
