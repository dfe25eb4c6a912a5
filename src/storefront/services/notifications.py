"""
Fire-and-forget notification dispatcher

Template sends are posted as JSON to a webhook on a background worker so
they never hold up, or fail, the request that triggered them.
"""
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

import httpx
from fastapi.encoders import jsonable_encoder
from opentelemetry import trace

from storefront.models.enums import OrderStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ORDER_CONFIRMATION = "order-confirmation"
ORDER_STATUS_UPDATE = "order-status-update"
ORDER_SHIPPED = "order-shipped"
ORDER_DELIVERED = "order-delivered"


def template_for_status(status: OrderStatus) -> str:
    """Pick the template announcing an order's new status"""
    if status == OrderStatus.SHIPPED:
        return ORDER_SHIPPED
    if status == OrderStatus.DELIVERED:
        return ORDER_DELIVERED
    return ORDER_STATUS_UPDATE


class NotificationDispatcher:
    """Posts template notifications to a webhook on a worker thread"""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 5.0,
        app_name: str = "Storefront",
        frontend_url: str = "http://localhost:3000",
        client: Optional[httpx.Client] = None,
        max_workers: int = 2
    ):
        self.webhook_url = webhook_url
        self.app_name = app_name
        self.frontend_url = frontend_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notifier")
        self.sent = 0
        self.failed = 0

        if not webhook_url:
            logger.info("Notification webhook not configured, notifications will only be logged")

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def send(self, recipient: str, template_key: str, variables: Dict[str, Any]) -> Optional[Future]:
        """
        Queue a template notification

        Never raises: a failure to queue or deliver is logged and counted.
        Returns the delivery future, or None when nothing was queued.
        """
        payload = {
            "recipient": recipient,
            "template": template_key,
            "variables": {"appName": self.app_name, **variables},
            "sent_at": datetime.now(timezone.utc),
        }

        if not self.enabled:
            logger.info(f"Notification {template_key} for {recipient} (delivery disabled)")
            return None

        try:
            return self._executor.submit(self._deliver, jsonable_encoder(payload))
        except Exception as e:
            self.failed += 1
            logger.error(f"Failed to queue notification {template_key} for {recipient}: {e}")
            return None

    def _deliver(self, payload: Dict[str, Any]) -> bool:
        with tracer.start_as_current_span("notifications.deliver") as span:
            span.set_attribute("notification.template", payload["template"])

            try:
                response = self.client.post(self.webhook_url, json=payload)
                span.set_attribute("http.status_code", response.status_code)
                response.raise_for_status()
            except httpx.HTTPError as e:
                self.failed += 1
                span.record_exception(e)
                logger.error(f"Notification {payload['template']} to {payload['recipient']} failed: {e}")
                return False

            self.sent += 1
            logger.info(f"Notification {payload['template']} delivered to {payload['recipient']}")
            return True

    def order_event(self, template_key: str, recipient: str, user_name: str, order) -> Optional[Future]:
        """Send one of the order templates with the usual order variables"""
        order_url = f"{self.frontend_url}/orders/{order.order_number}"
        variables = {
            "userName": user_name,
            "orderNumber": order.order_number,
            "status": order.status.value,
            "statusMessage": order.status.description,
            "total": order.total,
            "orderUrl": order_url,
        }
        if template_key == ORDER_SHIPPED:
            variables["trackingNumber"] = order.tracking_number
        if template_key == ORDER_DELIVERED:
            variables["reviewUrl"] = f"{order_url}/review"

        return self.send(recipient, template_key, variables)

    def close(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
        self.client.close()
        logger.info(f"Notification dispatcher closed (sent={self.sent}, failed={self.failed})")
