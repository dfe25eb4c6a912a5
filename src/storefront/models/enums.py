"""
Status and type enums shared by the storefront models
"""
import enum


class OrderStatus(str, enum.Enum):
    """Order lifecycle status"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

    @property
    def description(self) -> str:
        return _ORDER_DESCRIPTIONS[self]

    def can_transition_to(self, target: "OrderStatus") -> bool:
        return target in ORDER_TRANSITIONS[self]

    def is_terminal(self) -> bool:
        return not ORDER_TRANSITIONS[self]

    def is_cancellable(self) -> bool:
        return self in (OrderStatus.PENDING, OrderStatus.CONFIRMED)


ORDER_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

_ORDER_DESCRIPTIONS = {
    OrderStatus.PENDING: "Order placed, awaiting confirmation",
    OrderStatus.CONFIRMED: "Order confirmed, preparing for processing",
    OrderStatus.PROCESSING: "Order is being processed",
    OrderStatus.SHIPPED: "Order has been shipped",
    OrderStatus.OUT_FOR_DELIVERY: "Order is out for delivery",
    OrderStatus.DELIVERED: "Order has been delivered",
    OrderStatus.CANCELLED: "Order has been cancelled",
    OrderStatus.REFUNDED: "Order has been refunded",
}


class PaymentStatus(str, enum.Enum):
    """Payment status, tracked independently of the order status"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        return target in PAYMENT_TRANSITIONS[self]

    def is_refundable(self) -> bool:
        return self is PaymentStatus.COMPLETED


PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PROCESSING, PaymentStatus.CANCELLED}),
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED
    }),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED}),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


class PaymentMethod(str, enum.Enum):
    """Supported payment methods"""
    CARD = "CARD"
    UPI = "UPI"
    WALLET = "WALLET"
    BANK_TRANSFER = "BANK_TRANSFER"
    COD = "COD"
    NET_BANKING = "NET_BANKING"


class Role(str, enum.Enum):
    """Caller role"""
    USER = "USER"
    ADMIN = "ADMIN"
