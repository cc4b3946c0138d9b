"""Payment Pydantic Schemas"""

import hashlib
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.exceptions import GatewayError
from app.models.enums import (
    PaymentMethod,
    PaymentStatus,
    PaymentSummaryStatus,
    ReconciliationResult,
    WebhookEventKind,
)
from app.utils.money import quantize


class PaymentAttempt(BaseModel):
    """A single request to move money for an invoice"""
    amount: Decimal
    currency: str = Field(..., min_length=3, max_length=3)
    payment_method: PaymentMethod
    payment_reference: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("amount")
    @classmethod
    def _cents(cls, v: Decimal) -> Decimal:
        return quantize(v)

    def idempotency_key(self, *scope: Any) -> str:
        """
        Key the gateway uses to collapse retries of this attempt.

        A caller-supplied ``metadata["idempotency_key"]`` wins. Otherwise the
        key is derived from the attempt and ``scope``, so retrying the same
        charge reuses it; callers start a distinct attempt by sending a new
        ``metadata["attempt_nonce"]``.
        """
        supplied = self.metadata.get("idempotency_key")
        if supplied:
            return str(supplied)
        parts = [
            self.payment_method.value,
            f"{self.amount:.2f}",
            self.currency,
            str(self.metadata.get("payment_method_id") or self.metadata.get("order_id") or self.payment_reference or ""),
            str(self.metadata.get("attempt_nonce") or ""),
            *(str(part) for part in scope),
        ]
        return hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()


class PaymentResult(BaseModel):
    """Outcome of a gateway call. Failures are values, not exceptions."""
    success: bool
    payment_id: Optional[str] = None
    transaction_id: Optional[str] = None
    amount: Decimal
    currency: str
    error: Optional[str] = None
    payment_reference: Optional[str] = None

    @classmethod
    def failed(cls, amount: Decimal, currency: str, error: str) -> "PaymentResult":
        return cls(success=False, amount=amount, currency=currency, error=error)

    def raise_for_failure(self, gateway: str = "payment", **context: Any) -> "PaymentResult":
        """Turn a failed result into a GatewayError for callers that prefer exceptions"""
        if not self.success:
            raise GatewayError(gateway, self.error or "Payment failed", amount=self.amount, **context)
        return self


class RefundRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, description="Omit for a full refund")
    reason: Optional[str] = Field(None, max_length=500)


class PaymentResponse(BaseModel):
    id: UUID
    invoice_id: UUID
    amount: Decimal
    currency: str
    payment_method: PaymentMethod
    status: PaymentStatus
    payment_reference: Optional[str] = None
    transaction_id: Optional[str] = None
    refunded_amount: Decimal
    error: Optional[str] = None
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentSummary(BaseModel):
    invoice_id: UUID
    total_amount: Decimal
    paid_amount: Decimal
    remaining_balance: Decimal
    payment_count: int
    last_payment_date: Optional[datetime] = None
    status: PaymentSummaryStatus


class WebhookEvent(BaseModel):
    """Provider notification normalized for reconciliation"""
    provider: str
    event_id: str
    event_type: str
    kind: WebhookEventKind
    external_id: Optional[str] = Field(None, description="Provider payment id (intent or capture)")
    order_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    error: Optional[str] = None


class WebhookOutcome(BaseModel):
    event_id: str
    event_type: str
    result: ReconciliationResult
    payment_id: Optional[UUID] = None


class MethodBreakdown(BaseModel):
    payment_method: PaymentMethod
    amount: Decimal
    count: int


class ClientBreakdown(BaseModel):
    client_id: UUID
    client_name: str
    amount: Decimal
    count: int


class PaymentAnalytics(BaseModel):
    """Collected money over a date range, net of refunds"""
    start_date: date
    end_date: date
    currency: str
    total_revenue: Decimal
    payment_count: int
    average_payment: Decimal
    by_method: List[MethodBreakdown] = Field(default_factory=list)
    by_month: Dict[str, Decimal] = Field(default_factory=dict)
    by_client: List[ClientBreakdown] = Field(default_factory=list)
