"""Tests for checkout and the order lifecycle."""

from datetime import datetime
from decimal import Decimal

import pytest

from storefront.db import database
from storefront.errors import Conflict, InvalidStateTransition, NotFound, ValidationFailed
from storefront.models.enums import ORDER_TRANSITIONS, OrderStatus, PaymentMethod, PaymentStatus
from storefront.models.schemas import AddressCreate, OrderCreate
from storefront.services.cart_service import CartService
from storefront.services.inventory import InventoryLedger
from storefront.services.user_service import UserService


@pytest.fixture
def two_line_order(db, user, make_product, order_service, checkout_request):
    """Order with 3 x product A and 1 x product B."""
    a = make_product(price="10.00", stock=10)
    b = make_product(price="30.00", stock=10)
    CartService.add_line(db, user.id, a.id, 3)
    CartService.add_line(db, user.id, b.id, 1)
    order = order_service.create_order(db, user.id, checkout_request())
    return order, a, b


class TestTransitionTable:
    def test_table_matches_lifecycle(self):
        assert ORDER_TRANSITIONS[OrderStatus.PENDING] == {OrderStatus.CONFIRMED, OrderStatus.CANCELLED}
        assert ORDER_TRANSITIONS[OrderStatus.CONFIRMED] == {OrderStatus.PROCESSING, OrderStatus.CANCELLED}
        assert ORDER_TRANSITIONS[OrderStatus.PROCESSING] == {OrderStatus.SHIPPED, OrderStatus.CANCELLED}
        assert ORDER_TRANSITIONS[OrderStatus.SHIPPED] == {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED}
        assert ORDER_TRANSITIONS[OrderStatus.OUT_FOR_DELIVERY] == {OrderStatus.DELIVERED}
        assert ORDER_TRANSITIONS[OrderStatus.DELIVERED] == {OrderStatus.REFUNDED}
        assert OrderStatus.CANCELLED.is_terminal()
        assert OrderStatus.REFUNDED.is_terminal()

    def test_only_pending_and_confirmed_are_cancellable(self):
        cancellable = {status for status in OrderStatus if status.is_cancellable()}
        assert cancellable == {OrderStatus.PENDING, OrderStatus.CONFIRMED}


class TestCreateOrder:
    def test_order_lines_match_cart(self, db, user, make_product, order_service, checkout_request):
        a = make_product(price="10.00", stock=10)
        b = make_product(price="4.50", stock=10)
        CartService.add_line(db, user.id, a.id, 2, {"size": "L"})
        CartService.add_line(db, user.id, b.id, 3)
        expected = {(line.product_id, line.quantity, line.price) for line in CartService.get_lines(db, user.id)}

        order = order_service.create_order(db, user.id, checkout_request())

        assert len(order.items) == 2
        assert {(i.product_id, i.quantity, i.unit_price) for i in order.items} == expected
        assert CartService.get_lines(db, user.id) == []

    def test_order_snapshots_products_and_totals(self, db, user, make_product, order_service, checkout_request):
        product = make_product(price="50.00", stock=5, name="Lamp", main_image="lamp.png")
        CartService.add_line(db, user.id, product.id, 2)

        order = order_service.create_order(db, user.id, checkout_request(coupon_code="SAVE10"))

        item = order.items[0]
        assert item.product_name == "Lamp"
        assert item.product_sku == product.sku
        assert item.product_image == "lamp.png"
        assert item.total_price == Decimal("100.00")
        assert order.subtotal == Decimal("100.00")
        assert order.tax == Decimal("10.00")
        assert order.shipping == Decimal("0.00")
        assert order.discount == Decimal("10.00")
        assert order.total == Decimal("100.00")
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.order_number.startswith("ORD-")

    def test_order_reserves_stock(self, two_line_order, db):
        _, a, b = two_line_order
        db.refresh(a)
        db.refresh(b)

        assert (a.stock_quantity, a.sales_count) == (7, 3)
        assert (b.stock_quantity, b.sales_count) == (9, 1)

    def test_billing_defaults_to_shipping(self, two_line_order):
        order, _, _ = two_line_order
        assert order.billing_address == order.shipping_address
        assert order.shipping_address["city"] == "Springfield"

    def test_saved_address_is_copied_by_value(self, db, user, make_product, order_service, address):
        saved = UserService.add_address(db, user.id, AddressCreate(**address.model_dump()))
        product = make_product()
        CartService.add_line(db, user.id, product.id, 1)

        order = order_service.create_order(
            db, user.id, OrderCreate(payment_method=PaymentMethod.UPI, shipping_address_id=saved.id)
        )
        UserService.delete_address(db, user.id, saved.id)
        db.refresh(order)

        assert order.shipping_address["street"] == "1 Main St"

    def test_someone_elses_saved_address_is_not_found(
        self, db, user, other_user, make_product, order_service, address
    ):
        saved = UserService.add_address(db, other_user.id, AddressCreate(**address.model_dump()))
        product = make_product()
        CartService.add_line(db, user.id, product.id, 1)

        with pytest.raises(NotFound):
            order_service.create_order(
                db, user.id, OrderCreate(payment_method=PaymentMethod.UPI, shipping_address_id=saved.id)
            )
        assert len(CartService.get_lines(db, user.id)) == 1

    def test_empty_cart_rejected(self, db, user, order_service, checkout_request):
        with pytest.raises(ValidationFailed):
            order_service.create_order(db, user.id, checkout_request())

    def test_cart_emptied_by_validation_rejected(self, db, user, make_product, order_service, checkout_request):
        product = make_product(stock=5)
        CartService.add_line(db, user.id, product.id, 2)
        product.is_active = False
        db.commit()

        with pytest.raises(ValidationFailed):
            order_service.create_order(db, user.id, checkout_request())

    def test_checkout_uses_validated_quantities(self, db, user, make_product, order_service, checkout_request):
        product = make_product(price="10.00", stock=10)
        CartService.add_line(db, user.id, product.id, 5)
        product.stock_quantity = 2
        db.commit()

        order = order_service.create_order(db, user.id, checkout_request())

        assert order.items[0].quantity == 2
        db.refresh(product)
        assert product.stock_quantity == 0

    def test_confirmation_notification_sent(self, two_line_order, notifier, user):
        order, _, _ = two_line_order
        recipient, template, variables = notifier.messages[-1]

        assert recipient == user.email
        assert template == "order-confirmation"
        assert variables["orderNumber"] == order.order_number


class TestUpdateStatus:
    def test_pending_to_shipped_rejected(self, db, two_line_order, order_service):
        order, _, _ = two_line_order

        with pytest.raises(InvalidStateTransition):
            order_service.update_order_status(db, order.id, OrderStatus.SHIPPED)

        assert order_service.get_order(db, order.id).status == OrderStatus.PENDING

    def test_confirm_then_cancel_restores_stock(self, db, two_line_order, order_service):
        order, a, b = two_line_order

        order_service.update_order_status(db, order.id, OrderStatus.CONFIRMED)
        cancelled = order_service.update_order_status(db, order.id, OrderStatus.CANCELLED)

        assert cancelled.status == OrderStatus.CANCELLED
        db.refresh(a)
        db.refresh(b)
        assert a.stock_quantity == 10
        assert b.stock_quantity == 10

    def test_cancel_restores_exact_quantities_and_keeps_sales(self, db, two_line_order, order_service):
        order, a, b = two_line_order

        order_service.cancel_order(db, order.id, "changed my mind")

        db.refresh(a)
        db.refresh(b)
        assert a.stock_quantity == 10
        assert b.stock_quantity == 10
        assert a.sales_count == 3
        assert b.sales_count == 1

    def test_cancel_leaves_lines_untouched(self, db, two_line_order, order_service):
        order, _, _ = two_line_order
        before = [(i.product_id, i.quantity, i.unit_price) for i in order.items]

        cancelled = order_service.cancel_order(db, order.id, "duplicate")

        assert [(i.product_id, i.quantity, i.unit_price) for i in cancelled.items] == before

    def test_cancel_appends_reason_to_notes(self, db, user, make_product, order_service, address):
        product = make_product()
        CartService.add_line(db, user.id, product.id, 1)
        order = order_service.create_order(
            db, user.id, OrderCreate(payment_method=PaymentMethod.COD, shipping_address=address, notes="Ring twice")
        )

        cancelled = order_service.cancel_order(db, order.id, "too slow")

        assert cancelled.notes == "Ring twice\nCancellation reason: too slow"

    def test_cannot_cancel_after_processing(self, db, two_line_order, order_service):
        order, a, _ = two_line_order
        order_service.update_order_status(db, order.id, OrderStatus.CONFIRMED)
        order_service.update_order_status(db, order.id, OrderStatus.PROCESSING)

        with pytest.raises(InvalidStateTransition):
            order_service.cancel_order(db, order.id, "late")

        db.refresh(a)
        assert a.stock_quantity == 7

    def test_cancelled_is_terminal(self, db, two_line_order, order_service):
        order, _, _ = two_line_order
        order_service.cancel_order(db, order.id, "x")

        with pytest.raises(InvalidStateTransition):
            order_service.update_order_status(db, order.id, OrderStatus.CONFIRMED)

    def test_full_happy_path_notifies(self, db, two_line_order, order_service, notifier):
        order, _, _ = two_line_order
        for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED,
                       OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED):
            order_service.update_order_status(db, order.id, status)

        assert notifier.templates() == [
            "order-confirmation",
            "order-status-update",
            "order-status-update",
            "order-shipped",
            "order-status-update",
            "order-delivered",
        ]


class TestTrackingAndPaymentStatus:
    def test_tracking_ships_confirmed_order(self, db, two_line_order, order_service, notifier):
        order, _, _ = two_line_order
        order_service.update_order_status(db, order.id, OrderStatus.CONFIRMED)

        updated = order_service.update_tracking_number(db, order.id, "1Z999")

        assert updated.tracking_number == "1Z999"
        assert updated.status == OrderStatus.SHIPPED
        assert notifier.messages[-1][2]["trackingNumber"] == "1Z999"

    def test_tracking_on_pending_order_keeps_status(self, db, two_line_order, order_service):
        order, _, _ = two_line_order

        updated = order_service.update_tracking_number(db, order.id, "1Z999")

        assert updated.status == OrderStatus.PENDING

    def test_payment_status_does_not_touch_order_status(self, db, two_line_order, order_service):
        order, _, _ = two_line_order

        updated = order_service.update_payment_status(db, order.id, PaymentStatus.COMPLETED)

        assert updated.payment_status == PaymentStatus.COMPLETED
        assert updated.status == OrderStatus.PENDING

    def test_estimated_delivery(self, db, two_line_order, order_service):
        order, _, _ = two_line_order
        when = datetime(2030, 5, 1, 12, 0)

        updated = order_service.update_estimated_delivery(db, order.id, when)

        assert updated.estimated_delivery.replace(tzinfo=None) == when


class TestQueriesAndStats:
    def test_lookup_by_number(self, db, two_line_order, order_service):
        order, _, _ = two_line_order
        assert order_service.get_order_by_number(db, order.order_number).id == order.id

    def test_unknown_order(self, db, order_service):
        with pytest.raises(NotFound):
            order_service.get_order(db, 999)

    def test_revenue_counts_only_delivered(self, db, two_line_order, order_service):
        order, _, _ = two_line_order
        assert order_service.get_total_revenue(db) == Decimal("0.00")

        for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            order_service.update_order_status(db, order.id, status)

        stats = order_service.get_statistics(db)
        assert stats["total_orders"] == 1
        assert stats["by_status"]["DELIVERED"] == 1
        assert stats["total_revenue"] == order.total

    def test_revenue_between_filters_by_creation_time(self, db, two_line_order, order_service):
        order, _, _ = two_line_order
        for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            order_service.update_order_status(db, order.id, status)

        assert order_service.get_revenue_between(db, datetime(2000, 1, 1), datetime(2100, 1, 1)) == order.total
        assert order_service.get_revenue_between(db, datetime(2000, 1, 1), datetime(2001, 1, 1)) == Decimal("0.00")

    def test_user_order_count(self, db, two_line_order, order_service, user, other_user):
        assert order_service.get_user_order_count(db, user.id) == 1
        assert order_service.get_user_order_count(db, other_user.id) == 0


class TestConcurrentStatusChanges:
    def test_cancel_racing_a_confirmation_conflicts(self, db, two_line_order, order_service, monkeypatch):
        order, a, b = two_line_order
        restore = InventoryLedger.restore
        raced = []

        def confirm_first(session, product_id, quantity):
            if not raced:
                raced.append(True)
                other = database.SessionLocal()
                try:
                    order_service.update_order_status(other, order.id, OrderStatus.CONFIRMED)
                finally:
                    other.close()
            restore(session, product_id, quantity)

        monkeypatch.setattr(InventoryLedger, "restore", staticmethod(confirm_first))

        with pytest.raises(Conflict):
            order_service.cancel_order(db, order.id, "too slow")

        stored = order_service.get_order(db, order.id)
        assert stored.status == OrderStatus.CONFIRMED
        assert stored.notes is None
        db.refresh(a)
        db.refresh(b)
        assert (a.stock_quantity, b.stock_quantity) == (7, 9)
