"""Domain 6: Collections - late fees and payment reminders"""

from sqlalchemy import Column, String, Text, Date, DateTime, Numeric, Integer, Boolean, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, ENUM
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.models.enums import ReminderType


class LateFee(BaseModel):
    """
    Penalty added to an overdue invoice's total. At most one unwaived fee
    exists per invoice; waiving it takes the amount back off the total.
    """
    __tablename__ = "late_fees"

    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    percentage = Column(Numeric(5, 2), nullable=True)
    flat_amount = Column(Numeric(12, 2), nullable=True)
    days_past_due = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    applied_at = Column(DateTime, nullable=False)

    waived = Column(Boolean, default=False, nullable=False, index=True)
    waived_at = Column(DateTime, nullable=True)
    waived_by = Column(String(255), nullable=True)
    waive_reason = Column(Text, nullable=True)

    invoice = relationship("Invoice", back_populates="late_fees")

    def __repr__(self) -> str:
        state = "waived" if self.waived else "active"
        return f"<LateFee {self.amount} - {state}>"


class PaymentReminder(BaseModel):
    """
    A reminder delivered (or attempted) for an invoice. Only DELIVERED rows
    stop the same reminder type from being sent again.
    """
    __tablename__ = "payment_reminders"

    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    reminder_type = Column(
        ENUM(ReminderType, name="reminder_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    recipient = Column(String(255), nullable=True)
    subject = Column(String(255), nullable=False)
    due_date = Column(Date, nullable=False)
    delivered = Column(Boolean, default=False, nullable=False, index=True)
    error = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<PaymentReminder {self.reminder_type} delivered={self.delivered}>"
