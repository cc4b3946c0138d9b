"""Manual Payment Gateway - bank transfer, check, wire and cash, recorded by staff"""

import secrets
import uuid
from decimal import Decimal
from typing import Optional

from app.models.enums import MANUAL_PAYMENT_METHODS, PaymentMethod
from app.schemas.payment import PaymentAttempt, PaymentResult
from app.services.gateways.base import PaymentGateway
from app.utils.time import get_utc_now


def generate_payment_reference(method: PaymentMethod, now=None) -> str:
    """e.g. ``BANK_TRANSFER-20261019-9F2C4A1B``"""
    stamp = (now or get_utc_now()).strftime("%Y%m%d")
    return f"{PaymentMethod(method).value}-{stamp}-{secrets.token_hex(4).upper()}"


class ManualGateway(PaymentGateway):
    """Always succeeds: the money has already moved outside the system"""

    name = "manual"
    methods = MANUAL_PAYMENT_METHODS

    async def process_payment(self, attempt: PaymentAttempt) -> PaymentResult:
        reference = attempt.payment_reference or generate_payment_reference(attempt.payment_method)
        return PaymentResult(
            success=True,
            payment_id=f"manual_{uuid.uuid4().hex}",
            transaction_id=reference,
            amount=attempt.amount,
            currency=attempt.currency,
            payment_reference=reference,
        )

    async def refund(
        self,
        payment_id: str,
        amount: Optional[Decimal],
        currency: str,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentResult:
        return PaymentResult(
            success=True,
            payment_id=f"manual_refund_{uuid.uuid4().hex}",
            transaction_id=payment_id,
            amount=amount if amount is not None else Decimal("0.00"),
            currency=currency,
        )
