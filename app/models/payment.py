"""Domain 5: Payments & Refunds"""

from decimal import Decimal

from sqlalchemy import Column, String, Text, DateTime, Numeric, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, ENUM, JSONB
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.models.enums import PaymentMethod, PaymentStatus, RefundStatus, SETTLED_PAYMENT_STATUSES


class Payment(BaseModel):
    """
    A payment attempt recorded against an invoice. FAILED rows are kept for
    audit and never count towards the paid amount.
    """
    __tablename__ = "payments"

    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    payment_method = Column(
        ENUM(PaymentMethod, name="payment_method", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    status = Column(
        ENUM(PaymentStatus, name="payment_status", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    payment_reference = Column(String(255), nullable=True)
    external_id = Column(String(255), nullable=True, index=True)  # gateway payment id
    transaction_id = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)
    payment_metadata = Column("metadata", JSONB, nullable=False, default=dict)
    refunded_amount = Column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    processed_at = Column(DateTime, nullable=True)

    # Relationships
    invoice = relationship("Invoice", back_populates="payments")
    refunds = relationship("Refund", back_populates="payment", lazy="selectin")

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_PAYMENT_STATUSES

    @property
    def net_amount(self) -> Decimal:
        """What the client has actually paid with this payment, after refunds"""
        if not self.is_settled:
            return Decimal("0")
        return Decimal(self.amount) - Decimal(self.refunded_amount or 0)

    def __repr__(self) -> str:
        return f"<Payment {self.amount} {self.currency} {self.payment_method} - {self.status}>"


class Refund(BaseModel):
    """
    Money returned on a payment. ``idempotency_key`` makes identical refund
    requests resolve to the same row.
    """
    __tablename__ = "refunds"

    payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(
        ENUM(RefundStatus, name="refund_status", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    idempotency_key = Column(String(128), unique=True, nullable=False)
    external_id = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)

    payment = relationship("Payment", back_populates="refunds")

    def __repr__(self) -> str:
        return f"<Refund {self.amount} {self.currency} - {self.status}>"
