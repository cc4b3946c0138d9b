"""Late Fee Service - penalties on overdue invoices and their waivers"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BillingError, InvalidStateError, NotFoundError
from app.core.logging import bind_billing_context, get_logger
from app.models.billing import Invoice
from app.models.collections import LateFee
from app.models.enums import InvoiceStatus
from app.services.billing_service import BillingService
from app.services.invoice_lifecycle import InvoiceLifecycleManager, paid_amount
from app.utils.money import Number, percent_of, quantize
from app.utils.time import as_date, resolve_now

logger = get_logger(__name__)

ZERO = Decimal("0.00")


def calculate_late_fee(
    remaining: Number,
    due_date: date,
    today: date,
    percentage: Optional[Number] = None,
    flat_amount: Optional[Number] = None,
    grace_days: int = 0,
    max_amount: Optional[Number] = None,
) -> Decimal:
    """
    Fee owed on ``remaining`` once the grace period after ``due_date`` is over.

    A percentage of the outstanding balance takes precedence over a flat
    amount; ``max_amount`` caps either.
    """
    if quantize(remaining) <= 0 or (today - due_date).days <= (grace_days or 0):
        return ZERO
    if percentage:
        fee = percent_of(remaining, percentage)
    elif flat_amount:
        fee = quantize(flat_amount)
    else:
        return ZERO
    if max_amount is not None:
        fee = min(fee, quantize(max_amount))
    return fee


def active_late_fee(invoice: Invoice) -> Optional[LateFee]:
    return next((fee for fee in invoice.late_fees or [] if not fee.waived), None)


class LateFeeService:
    """
    Applies at most one late fee per invoice. The fee is added to
    the invoice total, so payments settle it like any other amount owed.
    """

    def __init__(self, lifecycle: InvoiceLifecycleManager):
        self.lifecycle = lifecycle

    async def apply_late_fee(
        self,
        db: AsyncSession,
        invoice_id: UUID,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[LateFee]:
        """
        Charge the contract's late fee on an unpaid invoice past its grace period.

        Returns the existing fee when one was already applied (None once it
        was waived), and None when the contract charges none or the grace
        period has not ended.
        """
        now = resolve_now(now)
        invoice = await self.lifecycle.get_invoice(db, invoice_id, for_update=True)
        if invoice.status not in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE):
            raise InvalidStateError(
                f"Late fees apply to unpaid invoices; {invoice.invoice_number} is {invoice.status.value}",
                invoice_id=invoice.id,
                status=invoice.status.value,
            )

        if invoice.late_fees:
            # One fee per invoice; a waived fee stays waived
            return active_late_fee(invoice)

        contract = await BillingService.get_active_contract(db, invoice.project_id)
        today = as_date(now)
        remaining = quantize(Decimal(invoice.total) - paid_amount(invoice))
        amount = calculate_late_fee(
            remaining,
            invoice.due_date,
            today,
            percentage=contract.late_fee_percentage,
            flat_amount=contract.late_fee_flat_amount,
            grace_days=contract.late_fee_grace_days,
            max_amount=contract.late_fee_max_amount,
        )
        if amount <= 0:
            return None

        fee = LateFee(
            id=uuid.uuid4(),
            invoice_id=invoice.id,
            amount=amount,
            percentage=contract.late_fee_percentage,
            flat_amount=None if contract.late_fee_percentage else contract.late_fee_flat_amount,
            days_past_due=(today - invoice.due_date).days,
            reason=reason,
            applied_at=now,
            waived=False,
        )
        db.add(fee)
        invoice.late_fees.append(fee)
        invoice.late_fee_amount = quantize(Decimal(invoice.late_fee_amount or 0) + amount)
        invoice.total = quantize(Decimal(invoice.total) + amount)
        if invoice.status == InvoiceStatus.SENT:
            invoice.status = InvoiceStatus.OVERDUE
        await db.commit()

        bind_billing_context(logger, invoice_id=str(invoice.id), project_id=str(invoice.project_id)).info(
            "Late fee applied",
            extra={"amount": str(amount), "days_past_due": fee.days_past_due, "total": str(invoice.total)},
        )
        return fee

    async def waive_late_fee(
        self,
        db: AsyncSession,
        invoice_id: UUID,
        fee_id: UUID,
        waived_by: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LateFee:
        """Take a late fee back off the invoice; waiving twice is a no-op"""
        now = resolve_now(now)
        invoice = await self.lifecycle.get_invoice(db, invoice_id, for_update=True)
        fee = next((f for f in invoice.late_fees or [] if f.id == fee_id), None)
        if fee is None:
            raise NotFoundError(f"Late fee {fee_id} not found on invoice {invoice_id}", invoice_id=invoice_id)
        if fee.waived:
            return fee
        if invoice.is_terminal:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value}; its late fee can no longer be waived",
                invoice_id=invoice.id,
                status=invoice.status.value,
            )

        new_total = quantize(Decimal(invoice.total) - Decimal(fee.amount))
        if paid_amount(invoice) > new_total:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_number} has been paid beyond {new_total}; refund before waiving",
                invoice_id=invoice.id,
            )

        fee.waived = True
        fee.waived_at = now
        fee.waived_by = waived_by
        fee.waive_reason = reason
        invoice.total = new_total
        invoice.late_fee_amount = quantize(Decimal(invoice.late_fee_amount or 0) - Decimal(fee.amount))
        settled = await self.lifecycle.settle_if_paid(db, invoice, now)
        await db.commit()

        bind_billing_context(logger, invoice_id=str(invoice.id)).info(
            "Late fee waived",
            extra={"amount": str(fee.amount), "waived_by": waived_by, "invoice_status": invoice.status.value,
                   "settled": settled},
        )
        return fee

    async def apply_late_fees(self, db: AsyncSession, now: Optional[datetime] = None) -> List[LateFee]:
        """Sweep: charge late fees on overdue invoices that never had one"""
        result = await db.execute(
            select(Invoice.id)
            .where(
                Invoice.status == InvoiceStatus.OVERDUE,
                ~exists().where(LateFee.invoice_id == Invoice.id),
            )
            .order_by(Invoice.due_date)
        )
        applied: List[LateFee] = []
        for invoice_id in result.scalars().all():
            try:
                fee = await self.apply_late_fee(db, invoice_id, reason="Payment overdue", now=now)
            except BillingError as e:
                await db.rollback()
                bind_billing_context(logger, invoice_id=str(invoice_id)).warning(
                    "Late fee skipped", extra=e.to_log_extra()
                )
                continue
            if fee is not None:
                applied.append(fee)
        logger.info("Late fee sweep finished", extra={"late_fees_applied": len(applied)})
        return applied
