"""
Order pricing

subtotal = sum(price * quantity)
tax      = subtotal * tax_rate
shipping = flat fee, waived once subtotal reaches the free-shipping threshold
discount = subtotal * coupon_rate, only for the configured coupon code
total    = max(0, subtotal + tax + shipping - discount)
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Tuple

from storefront.config import Settings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal


class PricingCalculator:
    """Deterministic price breakdown over (unit price, quantity) pairs"""

    def __init__(
        self,
        tax_rate: Decimal = Decimal("0.10"),
        free_shipping_threshold: Decimal = Decimal("100.00"),
        flat_shipping_fee: Decimal = Decimal("10.00"),
        coupon_code: str = "SAVE10",
        coupon_discount_rate: Decimal = Decimal("0.10")
    ):
        self.tax_rate = Decimal(tax_rate)
        self.free_shipping_threshold = Decimal(free_shipping_threshold)
        self.flat_shipping_fee = Decimal(flat_shipping_fee)
        self.coupon_code = coupon_code
        self.coupon_discount_rate = Decimal(coupon_discount_rate)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PricingCalculator":
        return cls(
            tax_rate=settings.tax_rate,
            free_shipping_threshold=settings.free_shipping_threshold,
            flat_shipping_fee=settings.flat_shipping_fee,
            coupon_code=settings.coupon_code,
            coupon_discount_rate=settings.coupon_discount_rate,
        )

    def subtotal(self, lines: Iterable[Tuple[Decimal, int]]) -> Decimal:
        return quantize(sum((Decimal(price) * quantity for price, quantity in lines), ZERO))

    def tax(self, subtotal: Decimal) -> Decimal:
        return quantize(subtotal * self.tax_rate)

    def shipping(self, subtotal: Decimal) -> Decimal:
        if subtotal >= self.free_shipping_threshold:
            return ZERO
        return quantize(self.flat_shipping_fee)

    def discount(self, subtotal: Decimal, coupon_code: Optional[str]) -> Decimal:
        if coupon_code and coupon_code == self.coupon_code:
            return quantize(subtotal * self.coupon_discount_rate)
        return ZERO

    def calculate(self, lines: Iterable[Tuple[Decimal, int]], coupon_code: Optional[str] = None) -> PriceBreakdown:
        subtotal = self.subtotal(lines)
        tax = self.tax(subtotal)
        shipping = self.shipping(subtotal)
        discount = self.discount(subtotal, coupon_code)
        total = max(subtotal + tax + shipping - discount, ZERO)
        return PriceBreakdown(
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            discount=discount,
            total=quantize(total),
        )
