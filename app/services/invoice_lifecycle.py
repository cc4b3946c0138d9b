"""Invoice Lifecycle Manager - drafts, sending, payments, overdue and cancellation"""

import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    InvalidPaymentError,
    InvalidStateError,
    NotFoundError,
    OverpaymentError,
)
from app.core.logging import bind_billing_context, get_logger
from app.models.billing import Invoice, InvoiceLineItem, InvoiceNumberSequence
from app.models.enums import InvoiceStatus, LineItemType, PaymentStatus
from app.models.payment import Payment
from app.models.work import Expense, Milestone, TimeEntry
from app.schemas.invoice import InvoiceDraft
from app.schemas.payment import PaymentAttempt, PaymentResult
from app.services.gateways.base import GatewayRegistry
from app.utils.money import money_sum, quantize
from app.utils.time import as_date, resolve_now

logger = get_logger(__name__)

_BILLED_SOURCES = {
    LineItemType.TIME_ENTRY: TimeEntry,
    LineItemType.EXPENSE: Expense,
    LineItemType.MILESTONE: Milestone,
}


def paid_amount(invoice: Invoice) -> Decimal:
    """Net amount collected: settled payments minus what was refunded on them"""
    return money_sum(payment.net_amount for payment in invoice.payments or [])


class InvoiceLifecycleManager:
    """
    Owns every invoice state transition.

    Mutations lock the invoice row (SELECT ... FOR UPDATE) so concurrent
    payments on one invoice are serialized; the mapper's version column
    catches any writer that bypasses the lock.
    """

    def __init__(self, gateways: GatewayRegistry):
        self.gateways = gateways

    @staticmethod
    async def get_invoice(db: AsyncSession, invoice_id: UUID, for_update: bool = False) -> Invoice:
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)
        return invoice

    @staticmethod
    async def next_invoice_number(db: AsyncSession, now: Optional[datetime] = None) -> str:
        """
        ``{PREFIX}-{YYYYMM}-{seq:04d}``, sequence restarting every month.

        The per-month counter row is incremented atomically, so two drafts
        created concurrently never share a number. Past 9999 the sequence
        simply grows wider.
        """
        period = f"{resolve_now(now):%Y%m}"
        stmt = (
            pg_insert(InvoiceNumberSequence)
            .values(period=period, last_value=1)
            .on_conflict_do_update(
                index_elements=[InvoiceNumberSequence.period],
                set_={"last_value": InvoiceNumberSequence.last_value + 1},
            )
            .returning(InvoiceNumberSequence.last_value)
        )
        sequence = (await db.execute(stmt)).scalar_one()
        return f"{settings.INVOICE_NUMBER_PREFIX}-{period}-{sequence:04d}"

    async def create_draft(
        self,
        db: AsyncSession,
        draft: InvoiceDraft,
        now: Optional[datetime] = None,
        auto_commit: bool = True,
    ) -> Invoice:
        now = resolve_now(now)
        issue_date = as_date(now)
        invoice = Invoice(
            id=uuid.uuid4(),
            invoice_number=await self.next_invoice_number(db, now),
            client_id=draft.client_id,
            project_id=draft.project_id,
            status=InvoiceStatus.DRAFT,
            billing_type=draft.billing_type,
            currency=draft.currency,
            subtotal=draft.totals.subtotal,
            discount_amount=draft.totals.discount_amount,
            tax_amount=draft.totals.tax_amount,
            late_fee_amount=Decimal("0.00"),
            total=draft.totals.total,
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=draft.payment_terms_days),
            period_start=draft.period_start,
            period_end=draft.period_end,
            notes=draft.notes,
            line_items=[
                InvoiceLineItem(position=position, **item.model_dump())
                for position, item in enumerate(draft.line_items)
            ],
        )
        db.add(invoice)
        if auto_commit:
            await db.commit()
        else:
            await db.flush()

        bind_billing_context(logger, invoice_id=str(invoice.id), project_id=str(draft.project_id)).info(
            "Invoice drafted",
            extra={
                "invoice_number": invoice.invoice_number,
                "total": str(invoice.total),
                "line_item_count": len(draft.line_items),
            },
        )
        return invoice

    async def send(self, db: AsyncSession, invoice_id: UUID, now: Optional[datetime] = None) -> Invoice:
        invoice = await self.get_invoice(db, invoice_id, for_update=True)
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_number} cannot be sent from {invoice.status.value}",
                invoice_id=invoice.id,
                status=invoice.status.value,
            )
        if not invoice.line_items:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_number} has no line items", invoice_id=invoice.id
            )
        invoice.status = InvoiceStatus.SENT
        invoice.sent_at = resolve_now(now)
        await db.commit()
        bind_billing_context(logger, invoice_id=str(invoice.id)).info("Invoice sent")
        return invoice

    async def record_payment(
        self,
        db: AsyncSession,
        invoice_id: UUID,
        attempt: PaymentAttempt,
        now: Optional[datetime] = None,
    ) -> PaymentResult:
        """
        Validate, charge through the gateway and record the attempt.

        Validation failures raise before the gateway is called. A gateway
        failure is recorded as a FAILED payment and returned as
        ``success=False``; the invoice status is left untouched.
        """
        now = resolve_now(now)
        invoice = await self.get_invoice(db, invoice_id, for_update=True)
        log = bind_billing_context(logger, invoice_id=str(invoice.id), project_id=str(invoice.project_id))

        if invoice.is_terminal:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value} and accepts no payments",
                invoice_id=invoice.id,
                status=invoice.status.value,
                amount=attempt.amount,
            )
        if invoice.status == InvoiceStatus.DRAFT:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_number} must be sent before it can be paid",
                invoice_id=invoice.id,
                status=invoice.status.value,
            )
        if attempt.amount <= 0:
            raise InvalidPaymentError(
                "Payment amount must be positive", invoice_id=invoice.id, amount=attempt.amount
            )
        if attempt.currency != invoice.currency:
            raise InvalidPaymentError(
                f"Payment currency {attempt.currency} does not match invoice currency {invoice.currency}",
                invoice_id=invoice.id,
            )

        already_paid = paid_amount(invoice)
        remaining = quantize(Decimal(invoice.total) - already_paid)
        if attempt.amount > remaining:
            raise OverpaymentError(invoice.id, attempt.amount, remaining)

        # Same attempt against the same balance -> same key, so a retried
        # request can never charge the client twice.
        charge = attempt.model_copy(
            update={
                "metadata": {
                    **attempt.metadata,
                    "idempotency_key": attempt.idempotency_key(invoice.id, already_paid),
                    "invoice_id": str(invoice.id),
                }
            }
        )
        result = await self.gateways.process_payment(charge)
        if result.success and (quantize(result.amount) != attempt.amount or result.currency.upper() != attempt.currency):
            log.error(
                "Gateway captured a different amount than requested",
                extra={
                    "requested": str(attempt.amount),
                    "captured": str(result.amount),
                    "captured_currency": result.currency,
                    "external_id": result.payment_id,
                },
            )
            result = result.model_copy(
                update={
                    "success": False,
                    "error": (
                        f"{attempt.payment_method.value} captured {quantize(result.amount)} {result.currency.upper()}, "
                        f"expected {attempt.amount} {attempt.currency}; refund required"
                    ),
                }
            )

        payment = Payment(
            id=uuid.uuid4(),
            invoice_id=invoice.id,
            amount=attempt.amount,
            currency=attempt.currency,
            payment_method=attempt.payment_method,
            status=PaymentStatus.COMPLETED if result.success else PaymentStatus.FAILED,
            payment_reference=result.payment_reference or attempt.payment_reference,
            external_id=result.payment_id,
            transaction_id=result.transaction_id,
            error=result.error,
            payment_metadata=dict(charge.metadata),
            refunded_amount=Decimal("0.00"),
            processed_at=now,
        )
        db.add(payment)
        invoice.payments.append(payment)

        if result.success:
            await self.settle_if_paid(db, invoice, now)
            log.info(
                "Payment recorded",
                extra={
                    "amount": str(payment.amount),
                    "payment_method": attempt.payment_method.value,
                    "invoice_status": invoice.status.value,
                },
            )
        else:
            log.warning(
                "Payment failed",
                extra={"amount": str(attempt.amount), "payment_method": attempt.payment_method.value,
                       "error": result.error},
            )

        await db.commit()
        return result.model_copy(
            update={
                "payment_id": str(payment.id),
                "transaction_id": result.transaction_id or result.payment_id,
                "payment_reference": payment.payment_reference,
            }
        )

    async def mark_overdue(self, db: AsyncSession, invoice_id: UUID, now: Optional[datetime] = None) -> Invoice:
        """SENT -> OVERDUE once the due date has passed; before that it is a no-op"""
        invoice = await self.get_invoice(db, invoice_id, for_update=True)
        if invoice.status != InvoiceStatus.SENT:
            raise InvalidStateError(
                f"Only sent invoices can become overdue; {invoice.invoice_number} is {invoice.status.value}",
                invoice_id=invoice.id,
                status=invoice.status.value,
            )
        if as_date(resolve_now(now)) <= invoice.due_date:
            return invoice
        invoice.status = InvoiceStatus.OVERDUE
        await db.commit()
        bind_billing_context(logger, invoice_id=str(invoice.id)).info("Invoice overdue")
        return invoice

    async def mark_overdue_invoices(self, db: AsyncSession, now: Optional[datetime] = None) -> List[Invoice]:
        """Sweep: every SENT invoice past its due date becomes OVERDUE"""
        today = as_date(resolve_now(now))
        result = await db.execute(
            select(Invoice)
            .where(Invoice.status == InvoiceStatus.SENT, Invoice.due_date < today)
            .order_by(Invoice.due_date)
            .with_for_update(skip_locked=True)
        )
        invoices = list(result.scalars().all())
        for invoice in invoices:
            invoice.status = InvoiceStatus.OVERDUE
        if invoices:
            await db.commit()
        logger.info("Overdue sweep finished", extra={"overdue_count": len(invoices)})
        return invoices

    async def cancel(
        self,
        db: AsyncSession,
        invoice_id: UUID,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Invoice:
        invoice = await self.get_invoice(db, invoice_id, for_update=True)
        if invoice.is_terminal:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_number} is already {invoice.status.value}",
                invoice_id=invoice.id,
                status=invoice.status.value,
            )
        invoice.status = InvoiceStatus.CANCELLED
        invoice.cancelled_at = resolve_now(now)
        if reason:
            invoice.notes = f"{invoice.notes}\n{reason}" if invoice.notes else reason
        await db.commit()
        bind_billing_context(logger, invoice_id=str(invoice.id)).info("Invoice cancelled")
        return invoice

    async def settle_if_paid(self, db: AsyncSession, invoice: Invoice, now: datetime) -> bool:
        """Move a fully paid invoice to PAID and stamp its sources billed"""
        if invoice.is_terminal or quantize(paid_amount(invoice)) < quantize(invoice.total):
            return False
        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = now
        await self._mark_sources_billed(db, invoice, now)
        return True

    @staticmethod
    async def _mark_sources_billed(db: AsyncSession, invoice: Invoice, now: datetime) -> None:
        """Stamp the time entries, expenses and milestones this invoice settled"""
        references: Dict[LineItemType, List[UUID]] = defaultdict(list)
        for item in invoice.line_items:
            if item.type in _BILLED_SOURCES:
                references[item.type].append(UUID(item.reference_id))
        for item_type, ids in references.items():
            model = _BILLED_SOURCES[item_type]
            await db.execute(
                update(model)
                .where(model.id.in_(ids))
                .values(invoice_id=invoice.id, billed_at=now)
            )
