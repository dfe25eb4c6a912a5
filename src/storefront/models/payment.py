"""
Payment database model
"""
from datetime import datetime, timezone
from decimal import Decimal
import time
import uuid

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from storefront.db.database import Base
from storefront.models.enums import PaymentMethod, PaymentStatus


def generate_payment_reference() -> str:
    return f"PAY-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8].upper()}"


class Payment(Base):
    """Payment for exactly one order"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    payment_reference = Column(
        String(64), unique=True, nullable=False, index=True, default=generate_payment_reference
    )
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False)

    amount = Column(Numeric(10, 2), nullable=False)
    fee = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    net_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    payment_method = Column(SQLEnum(PaymentMethod), nullable=False)
    status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)

    gateway_transaction_id = Column(String(100), nullable=True, index=True)
    gateway_response = Column(String(500), nullable=True)
    failure_reason = Column(String(500), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    refunded_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    def update_net_amount(self):
        self.net_amount = Decimal(self.amount) - Decimal(self.fee or 0)

    @property
    def refundable_amount(self) -> Decimal:
        return Decimal(self.amount) - Decimal(self.refunded_amount or 0)

    def can_be_refunded(self) -> bool:
        return self.status.is_refundable() and self.refundable_amount > 0

    def mark_as_processing(self):
        self.status = PaymentStatus.PROCESSING

    def mark_as_completed(self, transaction_id: str, response: str = None):
        self.status = PaymentStatus.COMPLETED
        self.gateway_transaction_id = transaction_id
        self.gateway_response = response
        self.processed_at = datetime.now(timezone.utc)

    def mark_as_failed(self, reason: str, response: str = None):
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason
        self.gateway_response = response

    def mark_as_cancelled(self, reason: str = None):
        self.status = PaymentStatus.CANCELLED
        self.failure_reason = reason

    def apply_refund(self, amount: Decimal):
        self.refunded_amount = Decimal(self.refunded_amount or 0) + amount
        self.refunded_at = datetime.now(timezone.utc)
        if self.refunded_amount == Decimal(self.amount):
            self.status = PaymentStatus.REFUNDED
        else:
            self.status = PaymentStatus.PARTIALLY_REFUNDED

    def append_note(self, note: str):
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def __repr__(self):
        return f"<Payment(id={self.id}, ref={self.payment_reference}, status={self.status}, amount={self.amount})>"
