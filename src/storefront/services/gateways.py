"""
Payment gateways, one per payment method

These are simulated gateways. A real integration replaces a class and
registers it for its method; the payment service only sees the interface.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional
import logging
import time

from storefront.errors import GatewayError
from storefront.models.enums import PaymentMethod

logger = logging.getLogger(__name__)


def _transaction_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}"


@dataclass(frozen=True)
class GatewayResult:
    success: bool
    transaction_id: Optional[str] = None
    response: Optional[str] = None
    failure_reason: Optional[str] = None


class PaymentGateway:
    """Base gateway: charges always succeed, refunds always succeed"""

    method: PaymentMethod = None
    prefix = "TXN"
    success_message = "Payment successful"

    def process(self, payment, credentials) -> GatewayResult:
        logger.info(f"Processing {self.method.value} payment for amount: {payment.amount}")
        return GatewayResult(True, _transaction_id(self.prefix), self.success_message)

    def refund(self, payment, amount: Decimal, reason: str) -> GatewayResult:
        logger.info(f"Processing refund for payment method: {payment.payment_method.value} - Amount: {amount}")
        return GatewayResult(True, _transaction_id("REF"), "Refund processed successfully")


class CardGateway(PaymentGateway):
    method = PaymentMethod.CARD
    prefix = "TXN"

    def process(self, payment, credentials) -> GatewayResult:
        logger.info(f"Processing card payment for amount: {payment.amount}")
        card_number = getattr(credentials, "card_number", None)
        if card_number and card_number.startswith("4"):
            return GatewayResult(True, _transaction_id(self.prefix), "Payment successful")
        return GatewayResult(False, None, "Payment failed", "Invalid card number")


class UpiGateway(PaymentGateway):
    method = PaymentMethod.UPI
    prefix = "UPI"

    def process(self, payment, credentials) -> GatewayResult:
        logger.info(f"Processing UPI payment for amount: {payment.amount}")
        upi_id = getattr(credentials, "upi_id", None)
        if upi_id and "@" in upi_id:
            return GatewayResult(True, _transaction_id(self.prefix), "UPI payment successful")
        return GatewayResult(False, None, "UPI payment failed", "Invalid UPI ID")


class WalletGateway(PaymentGateway):
    method = PaymentMethod.WALLET
    prefix = "WALLET"
    success_message = "Wallet payment successful"


class BankTransferGateway(PaymentGateway):
    method = PaymentMethod.BANK_TRANSFER
    prefix = "BANK"
    success_message = "Bank transfer successful"


class CodGateway(PaymentGateway):
    method = PaymentMethod.COD
    prefix = "COD"
    success_message = "COD payment confirmed"


class NetBankingGateway(PaymentGateway):
    method = PaymentMethod.NET_BANKING
    prefix = "NB"
    success_message = "Net banking payment successful"


class GatewayRegistry:
    """Gateways keyed by payment method"""

    def __init__(self, gateways: Optional[Dict[PaymentMethod, PaymentGateway]] = None):
        self._gateways: Dict[PaymentMethod, PaymentGateway] = dict(gateways or {})

    def register(self, gateway: PaymentGateway, method: Optional[PaymentMethod] = None):
        self._gateways[method or gateway.method] = gateway

    def get(self, method: PaymentMethod) -> PaymentGateway:
        gateway = self._gateways.get(method)
        if gateway is None:
            raise GatewayError(f"No payment gateway registered for {method.value}")
        return gateway

    def __contains__(self, method: PaymentMethod) -> bool:
        return method in self._gateways


def default_registry() -> GatewayRegistry:
    registry = GatewayRegistry()
    for gateway in (
        CardGateway(), UpiGateway(), WalletGateway(),
        BankTransferGateway(), CodGateway(), NetBankingGateway(),
    ):
        registry.register(gateway)
    return registry
