"""Invoice Pydantic Schemas"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.enums import BillingType, InvoiceStatus, LineItemType
from app.utils.money import percent_of, quantize

TIME_BASED_ITEM_TYPES = frozenset({LineItemType.TIME_ENTRY})


class LineItem(BaseModel):
    """
    One billable unit. Time-based items satisfy ``amount == quantity * rate``;
    for every other type ``amount`` is authoritative with ``quantity=1, rate=amount``.
    """
    type: LineItemType
    reference_id: str
    description: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @model_validator(mode="after")
    def _check_amount(self) -> "LineItem":
        if self.type in TIME_BASED_ITEM_TYPES:
            expected = quantize(self.quantity * self.rate)
            if quantize(self.amount) != expected:
                raise ValueError(
                    f"{self.type.value} {self.reference_id}: amount {self.amount} != {self.quantity} x {self.rate}"
                )
        elif self.quantity != 1 or quantize(self.rate) != quantize(self.amount):
            raise ValueError(
                f"{self.type.value} {self.reference_id}: flat items need quantity=1 and rate=amount"
            )
        return self

    @classmethod
    def timed(cls, reference_id: str, description: str, hours: Decimal, rate: Decimal) -> "LineItem":
        quantity, rate = quantize(hours), quantize(rate)
        return cls(
            type=LineItemType.TIME_ENTRY,
            reference_id=reference_id,
            description=description,
            quantity=quantity,
            rate=rate,
            amount=quantize(quantity * rate),
        )

    @classmethod
    def flat(cls, item_type: LineItemType, reference_id: str, description: str, amount: Decimal) -> "LineItem":
        amount = quantize(amount)
        return cls(
            type=item_type,
            reference_id=reference_id,
            description=description,
            quantity=Decimal("1"),
            rate=amount,
            amount=amount,
        )


class CustomLineItem(BaseModel):
    """Ad-hoc charge supplied by the caller; always appended after generated items"""
    description: str = Field(..., min_length=1)
    quantity: Decimal = Field(Decimal("1"), gt=0)
    rate: Optional[Decimal] = Field(None, ge=0)
    amount: Optional[Decimal] = Field(None, ge=0)
    reference_id: Optional[str] = None

    @model_validator(mode="after")
    def _rate_or_amount(self) -> "CustomLineItem":
        if self.rate is None and self.amount is None:
            raise ValueError("custom line item needs a rate or an amount")
        if self.rate is not None and self.amount is not None:
            if quantize(self.quantity * self.rate) != quantize(self.amount):
                raise ValueError("custom line item amount does not match quantity x rate")
        return self

    @property
    def total(self) -> Decimal:
        if self.amount is not None:
            return quantize(self.amount)
        return quantize(self.quantity * self.rate)


class InvoiceTotals(BaseModel):
    """
    Subtotal, discount, tax and total. Discount is applied first and tax is
    charged on the discounted amount; each step is rounded to cents.
    """
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total: Decimal

    @classmethod
    def compute(cls, subtotal: Decimal, tax_rate: Decimal, discount_rate: Optional[Decimal] = None) -> "InvoiceTotals":
        subtotal = quantize(subtotal)
        discount = percent_of(subtotal, discount_rate) if discount_rate else Decimal("0.00")
        taxable = subtotal - discount
        tax = percent_of(taxable, tax_rate) if tax_rate else Decimal("0.00")
        return cls(
            subtotal=subtotal,
            discount_amount=discount,
            tax_amount=tax,
            total=quantize(taxable + tax),
        )


class InvoiceDraft(BaseModel):
    """Builder output: everything needed to persist a DRAFT invoice"""
    project_id: UUID
    client_id: UUID
    billing_type: BillingType
    currency: str
    line_items: List[LineItem]
    totals: InvoiceTotals
    payment_terms_days: int = 30
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    notes: Optional[str] = None


class GenerateInvoiceRequest(BaseModel):
    billing_type: BillingType
    include_expenses: bool = False
    custom_line_items: List[CustomLineItem] = Field(default_factory=list)
    force: bool = Field(False, description="Re-emit one-off charges (fixed fee) already on an invoice")


class LineItemResponse(BaseModel):
    type: LineItemType
    reference_id: str
    description: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class InvoiceResponse(BaseModel):
    id: UUID
    invoice_number: str
    project_id: UUID
    client_id: UUID
    status: InvoiceStatus
    billing_type: BillingType
    currency: str
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    late_fee_amount: Decimal = Decimal("0.00")
    total: Decimal
    issue_date: date
    due_date: date
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    line_items: List[LineItemResponse] = []
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
