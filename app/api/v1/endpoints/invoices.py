"""Invoice endpoints - lifecycle transitions, payments and collections"""

from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.auth import Principal
from app.schemas.invoice import InvoiceCancelRequest, InvoiceResponse
from app.schemas.collections import LateFeeResponse, LateFeeWaiveRequest, ReminderRequest, ReminderResponse
from app.schemas.payment import PaymentAttempt, PaymentResponse
from app.schemas.responses import SuccessResponse
from app.services.invoice_lifecycle import InvoiceLifecycleManager
from app.services.late_fee_service import LateFeeService
from app.services.payment_service import PaymentService
from app.services.reminder_service import ReminderService

router = APIRouter()


@router.get("/{invoice_id}", response_model=SuccessResponse)
async def get_invoice(
    invoice_id: UUID,
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    invoice = await InvoiceLifecycleManager.get_invoice(db, invoice_id)
    return SuccessResponse(data=InvoiceResponse.model_validate(invoice))


@router.post("/{invoice_id}/send", response_model=SuccessResponse)
async def send_invoice(
    invoice_id: UUID,
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
    lifecycle: InvoiceLifecycleManager = Depends(deps.get_lifecycle_manager),
) -> Any:
    """DRAFT -> SENT"""
    invoice = await lifecycle.send(db, invoice_id)
    return SuccessResponse(data=InvoiceResponse.model_validate(invoice), message="Invoice sent")


@router.post("/{invoice_id}/cancel", response_model=SuccessResponse)
async def cancel_invoice(
    invoice_id: UUID,
    body: InvoiceCancelRequest = InvoiceCancelRequest(),
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
    lifecycle: InvoiceLifecycleManager = Depends(deps.get_lifecycle_manager),
) -> Any:
    invoice = await lifecycle.cancel(db, invoice_id, reason=body.reason)
    return SuccessResponse(data=InvoiceResponse.model_validate(invoice), message="Invoice cancelled")


@router.post("/{invoice_id}/mark-overdue", response_model=SuccessResponse)
async def mark_invoice_overdue(
    invoice_id: UUID,
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
    lifecycle: InvoiceLifecycleManager = Depends(deps.get_lifecycle_manager),
) -> Any:
    """SENT -> OVERDUE when past due; returns the invoice unchanged otherwise"""
    invoice = await lifecycle.mark_overdue(db, invoice_id)
    return SuccessResponse(
        data=InvoiceResponse.model_validate(invoice),
        message=f"Invoice is {invoice.status.value}",
    )


@router.post("/{invoice_id}/payments", response_model=SuccessResponse)
async def record_payment(
    invoice_id: UUID,
    attempt: PaymentAttempt,
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
    lifecycle: InvoiceLifecycleManager = Depends(deps.get_lifecycle_manager),
) -> Any:
    """
    Charge a payment against the invoice. Declines are recorded and answered
    with a gateway error; validation problems are rejected before any charge.
    """
    result = await lifecycle.record_payment(db, invoice_id, attempt)
    result.raise_for_failure(attempt.payment_method.value, invoice_id=invoice_id, payment_id=result.payment_id)
    return SuccessResponse(data=result, message="Payment recorded")


@router.get("/{invoice_id}/payments/summary", response_model=SuccessResponse)
async def get_payment_summary(
    invoice_id: UUID,
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
    payments: PaymentService = Depends(deps.get_payment_service),
) -> Any:
    summary = await payments.get_payment_summary(db, invoice_id)
    return SuccessResponse(data=summary)


@router.get("/{invoice_id}/payments", response_model=SuccessResponse[List[PaymentResponse]])
async def list_invoice_payments(
    invoice_id: UUID,
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Every payment attempt on the invoice, newest first"""
    payments = await PaymentService.list_invoice_payments(db, invoice_id)
    return SuccessResponse(data=[PaymentResponse.model_validate(p) for p in payments])


@router.post("/{invoice_id}/late-fee", response_model=SuccessResponse)
async def apply_late_fee(
    invoice_id: UUID,
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
    late_fees: LateFeeService = Depends(deps.get_late_fee_service),
) -> Any:
    """Charge the contract's late fee once the grace period is over"""
    fee = await late_fees.apply_late_fee(db, invoice_id, reason=f"Applied by {current_user.subject}")
    if fee is None:
        return SuccessResponse(data=None, message="No late fee is due")
    return SuccessResponse(data=LateFeeResponse.model_validate(fee), message="Late fee applied")


@router.post("/{invoice_id}/late-fees/{fee_id}/waive", response_model=SuccessResponse)
async def waive_late_fee(
    invoice_id: UUID,
    fee_id: UUID,
    body: LateFeeWaiveRequest = LateFeeWaiveRequest(),
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
    late_fees: LateFeeService = Depends(deps.get_late_fee_service),
) -> Any:
    fee = await late_fees.waive_late_fee(db, invoice_id, fee_id, waived_by=current_user.subject, reason=body.reason)
    return SuccessResponse(data=LateFeeResponse.model_validate(fee), message="Late fee waived")


@router.post("/{invoice_id}/reminders", response_model=SuccessResponse)
async def send_reminder(
    invoice_id: UUID,
    body: ReminderRequest = ReminderRequest(),
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
    reminders: ReminderService = Depends(deps.get_reminder_service),
) -> Any:
    reminder = await reminders.send_reminder(db, invoice_id, reminder_type=body.reminder_type)
    return SuccessResponse(data=ReminderResponse.model_validate(reminder), message="Reminder sent")
