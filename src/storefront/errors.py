"""Typed failures raised by the storefront core.

Each error carries the HTTP status the API boundary renders it with, so
services raise at the point of detection and never deal with transport.
"""
from decimal import Decimal
from typing import Any, Optional


class StorefrontError(Exception):
    """Base exception for all storefront business-rule failures."""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(StorefrontError):
    """An id or reference does not resolve to an entity."""

    status_code = 404
    error_code = "not_found"

    def __init__(self, entity: str, key: Any, field: str = "id"):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found with {field}: {key}")


class Conflict(StorefrontError):
    """Uniqueness violation or a concurrent modification."""

    status_code = 409
    error_code = "conflict"


class InvalidStateTransition(StorefrontError):
    """A status change not allowed by the transition table."""

    status_code = 409
    error_code = "invalid_state_transition"

    def __init__(self, entity: str, from_status: Any, to_status: Any, reason: Optional[str] = None):
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status
        msg = f"Invalid {entity} status transition from {_name(from_status)} to {_name(to_status)}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class InsufficientStock(StorefrontError):
    """Requested quantity exceeds the product's current stock."""

    status_code = 409
    error_code = "insufficient_stock"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}"
        )


class ValidationFailed(StorefrontError):
    """Malformed input such as a non-positive quantity or price."""

    status_code = 400
    error_code = "validation_failed"


class Unauthorized(StorefrontError):
    """Missing, invalid or expired credentials."""

    status_code = 401
    error_code = "unauthorized"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class Forbidden(StorefrontError):
    """The caller's role does not allow the operation."""

    status_code = 403
    error_code = "forbidden"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class GatewayError(StorefrontError):
    """A payment gateway rejected an operation that must not degrade silently."""

    status_code = 502
    error_code = "gateway_error"


def _name(status: Any) -> str:
    return getattr(status, "name", str(status))


def money(value: Decimal) -> str:
    """Render an amount for error messages."""
    return f"{value:.2f}"
