from storefront.models.cart import CartLine
from storefront.models.enums import OrderStatus, PaymentMethod, PaymentStatus, Role
from storefront.models.order import Order, OrderItem
from storefront.models.payment import Payment
from storefront.models.product import Product
from storefront.models.user import Address, User

__all__ = [
    "Address",
    "CartLine",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "Product",
    "Role",
    "User",
]
