"""Domain 4: Billing Contracts & Invoices"""

from decimal import Decimal

from sqlalchemy import Column, String, Text, Date, DateTime, Numeric, Integer, Boolean, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, ENUM, JSONB
from sqlalchemy.orm import relationship

from app.config import settings
from app.database import Base
from app.models.base import BaseModel, ClientScopedMixin, ProjectScopedMixin, StatusMixin
from app.models.enums import (
    BillingType,
    BillingCycle,
    InvoiceStatus,
    LineItemType,
    TERMINAL_INVOICE_STATUSES,
)


class BillingContract(BaseModel, ProjectScopedMixin, StatusMixin):
    """
    Commercial terms for a project: the billing model (stored as a tagged
    JSON document) plus cycle, payment terms, tax and discount.
    One active contract per project.
    """
    __tablename__ = "billing_contracts"

    billing_type = Column(
        ENUM(BillingType, name="billing_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    billing_model = Column(JSONB, nullable=False)

    auto_invoice = Column(Boolean, default=False, nullable=False)
    billing_cycle = Column(
        ENUM(BillingCycle, name="billing_cycle", values_callable=lambda x: [e.value for e in x]),
        default=BillingCycle.MONTHLY,
        nullable=False,
    )
    payment_terms_days = Column(Integer, default=lambda: settings.DEFAULT_PAYMENT_TERMS_DAYS, nullable=False)
    tax_rate = Column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    discount_rate = Column(Numeric(5, 2), nullable=True)
    currency = Column(String(3), default=lambda: settings.DEFAULT_CURRENCY, nullable=False)

    # Late fee terms; no percentage and no flat amount means no late fees
    late_fee_percentage = Column(Numeric(5, 2), nullable=True)
    late_fee_flat_amount = Column(Numeric(12, 2), nullable=True)
    late_fee_max_amount = Column(Numeric(12, 2), nullable=True)
    late_fee_grace_days = Column(Integer, default=0, nullable=False)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)

    project = relationship("Project", back_populates="contracts")

    @property
    def model(self):
        """Parsed billing model variant"""
        from app.schemas.billing_model import parse_billing_model
        return parse_billing_model(self.billing_model)

    @property
    def configuration(self):
        """Contract terms independent of the model type"""
        from app.schemas.billing_model import BillingConfiguration
        return BillingConfiguration(
            auto_invoice=self.auto_invoice,
            billing_cycle=self.billing_cycle,
            payment_terms=self.payment_terms_days,
            tax_rate=self.tax_rate,
            discount_rate=self.discount_rate,
            currency=self.currency,
        )

    def __repr__(self) -> str:
        return f"<BillingContract {self.billing_type} - project {self.project_id}>"


class Invoice(BaseModel, ClientScopedMixin, ProjectScopedMixin):
    """
    Invoice issued to a client for a project.
    Lifecycle: DRAFT -> SENT -> PAID | OVERDUE | CANCELLED; OVERDUE -> PAID.
    ``version`` guards concurrent updates (optimistic locking).
    """
    __tablename__ = "invoices"

    invoice_number = Column(String(50), unique=True, nullable=False, index=True)
    status = Column(
        ENUM(InvoiceStatus, name="invoice_status", values_callable=lambda x: [e.value for e in x]),
        default=InvoiceStatus.DRAFT,
        nullable=False,
        index=True,
    )
    billing_type = Column(
        ENUM(BillingType, name="billing_type", values_callable=lambda x: [e.value for e in x], create_type=False),
        nullable=False,
    )
    currency = Column(String(3), nullable=False)

    subtotal = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    tax_amount = Column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    late_fee_amount = Column(Numeric(12, 2), default=Decimal("0"), nullable=False)  # included in total

    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    period_start = Column(Date, nullable=True)
    period_end = Column(Date, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    # Relationships
    client = relationship("Client", back_populates="invoices")
    project = relationship("Project", back_populates="invoices")
    line_items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position",
        lazy="selectin",
    )
    payments = relationship("Payment", back_populates="invoice", lazy="selectin")
    late_fees = relationship("LateFee", back_populates="invoice", lazy="selectin", order_by="LateFee.applied_at")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INVOICE_STATUSES

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number} {self.total} - {self.status}>"


class InvoiceLineItem(BaseModel):
    """
    One priced row of an invoice, traceable to its source record via reference_id.
    """
    __tablename__ = "invoice_line_items"

    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    type = Column(
        ENUM(LineItemType, name="line_item_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    reference_id = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=False)
    quantity = Column(Numeric(10, 2), nullable=False)
    rate = Column(Numeric(12, 2), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)

    invoice = relationship("Invoice", back_populates="line_items")

    def __repr__(self) -> str:
        return f"<InvoiceLineItem {self.type} {self.reference_id} {self.amount}>"


class InvoiceNumberSequence(Base):
    """
    Per-month invoice number counter. Incremented with an upsert so concurrent
    drafts in the same month never read the same value.
    """
    __tablename__ = "invoice_number_sequences"

    period = Column(String(6), primary_key=True)  # YYYYMM
    last_value = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<InvoiceNumberSequence {self.period} {self.last_value}>"
