"""Payment endpoints - refunds and analytics"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.auth import Principal
from app.schemas.payment import PaymentAnalytics, RefundRequest
from app.schemas.responses import SuccessResponse
from app.services.payment_service import PaymentService

router = APIRouter()


@router.post("/{payment_id}/refund", response_model=SuccessResponse)
async def refund_payment(
    payment_id: UUID,
    body: RefundRequest = RefundRequest(),
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
    payments: PaymentService = Depends(deps.get_payment_service),
) -> Any:
    """Full refund when no amount is given; repeating the same request is safe."""
    result = await payments.refund_payment(db, payment_id, amount=body.amount, reason=body.reason)
    result.raise_for_failure("refund", payment_id=payment_id)
    return SuccessResponse(data=result, message="Refund processed")


@router.get("/analytics", response_model=SuccessResponse[PaymentAnalytics])
async def get_payment_analytics(
    start_date: date = Query(...),
    end_date: date = Query(...),
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
    payments: PaymentService = Depends(deps.get_payment_service),
) -> Any:
    """Collected revenue between two dates, by method, month and client"""
    analytics = await payments.get_payment_analytics(db, start_date, end_date, currency)
    return SuccessResponse(data=analytics)
