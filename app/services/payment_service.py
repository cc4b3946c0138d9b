"""Payment Service - payment summaries, listings, analytics and refunds"""

import hashlib
import uuid
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import BillingError, NotFoundError, RefundError
from app.core.logging import bind_billing_context, get_logger
from app.models.billing import Invoice
from app.models.client import Client
from app.models.enums import (
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    PaymentSummaryStatus,
    RefundStatus,
    SETTLED_PAYMENT_STATUSES,
)
from app.models.payment import Payment, Refund
from app.schemas.payment import (
    ClientBreakdown,
    MethodBreakdown,
    PaymentAnalytics,
    PaymentResult,
    PaymentSummary,
)
from app.services.gateways.base import GatewayRegistry
from app.services.invoice_lifecycle import InvoiceLifecycleManager, paid_amount
from app.utils.money import money_sum, quantize
from app.utils.time import as_date, resolve_now

logger = get_logger(__name__)


def refund_idempotency_key(payment_id: UUID, amount: Optional[Decimal], reason: Optional[str]) -> str:
    """Identical refund requests for a payment hash to the same key"""
    requested = "full" if amount is None else f"{quantize(amount):.2f}"
    raw = f"{payment_id}:{requested}:{(reason or '').strip()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class PaymentService:
    def __init__(self, gateways: GatewayRegistry):
        self.gateways = gateways

    @staticmethod
    def summarize(invoice: Invoice, now: Optional[datetime] = None) -> PaymentSummary:
        """Collection status derived from the invoice's settled payments"""
        total = quantize(invoice.total)
        paid = paid_amount(invoice)
        remaining = max(quantize(total - paid), Decimal("0.00"))
        settled = [p for p in invoice.payments or [] if p.is_settled]

        if invoice.status == InvoiceStatus.CANCELLED:
            status = PaymentSummaryStatus.CANCELLED
        elif invoice.status == InvoiceStatus.PAID or (total > 0 and remaining == 0):
            status = PaymentSummaryStatus.PAID
        elif invoice.status == InvoiceStatus.OVERDUE or (
            invoice.status == InvoiceStatus.SENT and as_date(resolve_now(now)) > invoice.due_date
        ):
            status = PaymentSummaryStatus.OVERDUE
        elif paid > 0:
            status = PaymentSummaryStatus.PARTIAL
        else:
            status = PaymentSummaryStatus.PENDING

        return PaymentSummary(
            invoice_id=invoice.id,
            total_amount=total,
            paid_amount=paid,
            remaining_balance=remaining,
            payment_count=len(settled),
            last_payment_date=max((p.processed_at for p in settled if p.processed_at), default=None),
            status=status,
        )

    async def get_payment_summary(
        self,
        db: AsyncSession,
        invoice_id: UUID,
        now: Optional[datetime] = None,
    ) -> PaymentSummary:
        invoice = await InvoiceLifecycleManager.get_invoice(db, invoice_id)
        return self.summarize(invoice, now)

    @staticmethod
    async def list_invoice_payments(db: AsyncSession, invoice_id: UUID) -> List[Payment]:
        """Every recorded attempt on the invoice, newest first, failed ones included"""
        await InvoiceLifecycleManager.get_invoice(db, invoice_id)
        result = await db.execute(
            select(Payment)
            .where(Payment.invoice_id == invoice_id)
            .order_by(Payment.created_at.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    def build_analytics(
        rows: Iterable[Tuple[Payment, UUID, str]],
        start_date: date,
        end_date: date,
        currency: str,
    ) -> PaymentAnalytics:
        """Aggregate ``(payment, client_id, client_name)`` rows, net of refunds"""
        by_method: Dict[PaymentMethod, List[Decimal]] = defaultdict(list)
        by_month: Dict[str, List[Decimal]] = defaultdict(list)
        by_client: Dict[UUID, List[Decimal]] = defaultdict(list)
        client_names: Dict[UUID, str] = {}
        amounts: List[Decimal] = []

        for payment, client_id, client_name in rows:
            amount = quantize(payment.net_amount)
            amounts.append(amount)
            by_method[PaymentMethod(payment.payment_method)].append(amount)
            by_month[f"{payment.processed_at:%Y-%m}"].append(amount)
            by_client[client_id].append(amount)
            client_names[client_id] = client_name

        total = money_sum(amounts)
        return PaymentAnalytics(
            start_date=start_date,
            end_date=end_date,
            currency=currency,
            total_revenue=total,
            payment_count=len(amounts),
            average_payment=quantize(total / len(amounts)) if amounts else Decimal("0.00"),
            by_method=[
                MethodBreakdown(payment_method=method, amount=money_sum(values), count=len(values))
                for method, values in sorted(by_method.items(), key=lambda kv: kv[0].value)
            ],
            by_month={month: money_sum(values) for month, values in sorted(by_month.items())},
            by_client=sorted(
                (
                    ClientBreakdown(
                        client_id=client_id,
                        client_name=client_names[client_id],
                        amount=money_sum(values),
                        count=len(values),
                    )
                    for client_id, values in by_client.items()
                ),
                key=lambda b: (-b.amount, b.client_name),
            ),
        )

    async def get_payment_analytics(
        self,
        db: AsyncSession,
        start_date: date,
        end_date: date,
        currency: Optional[str] = None,
    ) -> PaymentAnalytics:
        """Settled payments processed between the two dates (inclusive) in one currency"""
        if end_date < start_date:
            raise BillingError(
                "Analytics end date precedes start date", start_date=start_date, end_date=end_date
            )
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        result = await db.execute(
            select(Payment, Client.id, Client.name)
            .join(Invoice, Invoice.id == Payment.invoice_id)
            .join(Client, Client.id == Invoice.client_id)
            .where(
                Payment.status.in_(SETTLED_PAYMENT_STATUSES),
                Payment.currency == currency,
                Payment.processed_at >= datetime.combine(start_date, time.min),
                Payment.processed_at < datetime.combine(end_date + timedelta(days=1), time.min),
            )
            .order_by(Payment.processed_at)
        )
        return self.build_analytics(result.all(), start_date, end_date, currency)

    @staticmethod
    async def get_payment(db: AsyncSession, payment_id: UUID, for_update: bool = False) -> Payment:
        stmt = select(Payment).where(Payment.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        payment = result.scalar_one_or_none()
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found", payment_id=payment_id)
        return payment

    @staticmethod
    async def get_refund_by_key(db: AsyncSession, idempotency_key: str) -> Optional[Refund]:
        result = await db.execute(select(Refund).where(Refund.idempotency_key == idempotency_key))
        return result.scalar_one_or_none()

    async def refund_payment(
        self,
        db: AsyncSession,
        payment_id: UUID,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
    ) -> PaymentResult:
        """
        Refund a completed payment in full (``amount=None``) or in part.

        Repeating an identical request returns the refund already made
        instead of returning money twice. The invoice keeps its status.
        """
        payment = await self.get_payment(db, payment_id, for_update=True)
        log = bind_billing_context(logger, payment_id=str(payment.id), invoice_id=str(payment.invoice_id))
        key = refund_idempotency_key(payment.id, amount, reason)

        existing = await self.get_refund_by_key(db, key)
        if existing is not None and existing.status == RefundStatus.COMPLETED:
            log.info("Refund already processed", extra={"refund_id": str(existing.id)})
            return PaymentResult(
                success=True,
                payment_id=str(existing.id),
                transaction_id=existing.external_id,
                amount=existing.amount,
                currency=existing.currency,
            )

        if payment.status == PaymentStatus.FAILED:
            raise RefundError("Failed payments cannot be refunded", payment_id=payment.id)

        refundable = quantize(Decimal(payment.amount) - Decimal(payment.refunded_amount or 0))
        refund_amount = refundable if amount is None else quantize(amount)
        if refund_amount <= 0:
            raise RefundError(
                "Payment has already been fully refunded" if amount is None else "Refund amount must be positive",
                payment_id=payment.id,
            )
        if refund_amount > refundable:
            raise RefundError(
                f"Refund amount {refund_amount} exceeds refundable balance {refundable}",
                payment_id=payment.id,
                amount=refund_amount,
                refundable=refundable,
            )

        result = await self.gateways.refund(
            payment.payment_method,
            payment.external_id or str(payment.id),
            refund_amount,
            payment.currency,
            reason=reason,
            idempotency_key=key,
        )

        refund = existing or Refund(
            id=uuid.uuid4(),
            payment_id=payment.id,
            idempotency_key=key,
        )
        refund.amount = refund_amount
        refund.currency = payment.currency
        refund.reason = reason
        refund.status = RefundStatus.COMPLETED if result.success else RefundStatus.FAILED
        refund.external_id = result.payment_id
        refund.error = result.error
        if existing is None:
            db.add(refund)

        if result.success:
            payment.refunded_amount = quantize(Decimal(payment.refunded_amount or 0) + refund_amount)
            payment.status = (
                PaymentStatus.REFUNDED if payment.refunded_amount >= quantize(payment.amount)
                else PaymentStatus.PARTIALLY_REFUNDED
            )
            log.info("Refund processed", extra={"amount": str(refund_amount), "payment_status": payment.status.value})
        else:
            log.warning("Refund failed", extra={"amount": str(refund_amount), "error": result.error})

        await db.commit()
        return result.model_copy(update={"payment_id": str(refund.id), "transaction_id": refund.external_id})
