"""Tests for the notification dispatcher."""

import json
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from storefront.models.enums import OrderStatus
from storefront.services.notifications import (
    ORDER_DELIVERED,
    ORDER_SHIPPED,
    ORDER_STATUS_UPDATE,
    NotificationDispatcher,
    template_for_status,
)

WEBHOOK = "http://notify.test/hooks/email"


def _dispatcher(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return NotificationDispatcher(webhook_url=WEBHOOK, client=client, frontend_url="http://shop.test/")


def _order(status=OrderStatus.SHIPPED):
    return SimpleNamespace(
        order_number="ORD-1-ABC", status=status, total=Decimal("76.00"), tracking_number="1Z999"
    )


class TestDelivery:
    def test_posts_template_payload(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(202)

        dispatcher = _dispatcher(handler)
        future = dispatcher.send("alice@example.com", "order-confirmation", {"orderNumber": "ORD-1"})

        assert future.result(timeout=5) is True
        dispatcher.close()
        assert dispatcher.sent == 1
        payload = received[0]
        assert payload["recipient"] == "alice@example.com"
        assert payload["template"] == "order-confirmation"
        assert payload["variables"]["orderNumber"] == "ORD-1"
        assert payload["variables"]["appName"] == "Storefront"
        assert datetime.fromisoformat(payload["sent_at"]).utcoffset().total_seconds() == 0

    def test_server_error_is_counted_not_raised(self):
        dispatcher = _dispatcher(lambda request: httpx.Response(500))

        future = dispatcher.send("alice@example.com", "order-confirmation", {})

        assert future.result(timeout=5) is False
        dispatcher.close()
        assert dispatcher.failed == 1
        assert dispatcher.sent == 0

    def test_connection_error_is_counted_not_raised(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        dispatcher = _dispatcher(handler)

        assert dispatcher.send("alice@example.com", "order-confirmation", {}).result(timeout=5) is False
        dispatcher.close()
        assert dispatcher.failed == 1

    def test_disabled_without_webhook(self):
        dispatcher = NotificationDispatcher(webhook_url=None)

        assert not dispatcher.enabled
        assert dispatcher.send("alice@example.com", "order-confirmation", {}) is None
        dispatcher.close()


class TestOrderEvents:
    @pytest.mark.parametrize("status,template", [
        (OrderStatus.CONFIRMED, ORDER_STATUS_UPDATE),
        (OrderStatus.SHIPPED, ORDER_SHIPPED),
        (OrderStatus.DELIVERED, ORDER_DELIVERED),
        (OrderStatus.CANCELLED, ORDER_STATUS_UPDATE),
    ])
    def test_template_for_status(self, status, template):
        assert template_for_status(status) == template

    def test_shipped_event_carries_tracking(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(200)

        dispatcher = _dispatcher(handler)
        dispatcher.order_event(ORDER_SHIPPED, "alice@example.com", "Alice", _order()).result(timeout=5)
        dispatcher.close()

        variables = received[0]["variables"]
        assert variables["userName"] == "Alice"
        assert variables["status"] == "SHIPPED"
        assert variables["statusMessage"] == "Order has been shipped"
        assert variables["trackingNumber"] == "1Z999"
        assert variables["orderUrl"] == "http://shop.test/orders/ORD-1-ABC"
        assert Decimal(str(variables["total"])) == Decimal("76.00")

    def test_delivered_event_links_review(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(200)

        dispatcher = _dispatcher(handler)
        order = _order(OrderStatus.DELIVERED)
        dispatcher.order_event(ORDER_DELIVERED, "alice@example.com", "Alice", order).result(timeout=5)
        dispatcher.close()

        variables = received[0]["variables"]
        assert variables["reviewUrl"] == "http://shop.test/orders/ORD-1-ABC/review"
        assert "trackingNumber" not in variables
