"""Webhook Service - reconciles provider notifications with recorded payments

A charge can succeed at the provider while the local attempt was recorded
as FAILED (timeout, dropped connection). The provider's webhook is the
authority on what happened to the money.
"""

from datetime import datetime
from decimal import Decimal
from typing import Mapping, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import bind_billing_context, get_logger
from app.models.enums import PaymentStatus, ReconciliationResult, WebhookEventKind
from app.models.payment import Payment
from app.schemas.payment import WebhookEvent, WebhookOutcome
from app.services.gateways.base import GatewayRegistry
from app.services.invoice_lifecycle import InvoiceLifecycleManager, paid_amount
from app.utils.money import quantize
from app.utils.time import resolve_now

logger = get_logger(__name__)


class WebhookService:
    def __init__(self, gateways: GatewayRegistry, lifecycle: InvoiceLifecycleManager):
        self.gateways = gateways
        self.lifecycle = lifecycle

    async def handle(
        self,
        db: AsyncSession,
        provider: str,
        payload: bytes,
        headers: Mapping[str, str],
        now: Optional[datetime] = None,
    ) -> WebhookOutcome:
        """Verify a raw delivery with its provider, then reconcile it"""
        gateway = self.gateways.provider(provider)
        event = await gateway.parse_webhook(payload, headers)
        return await self.reconcile(db, event, now)

    async def find_payment(self, db: AsyncSession, event: WebhookEvent) -> Optional[Payment]:
        """
        Local payment an event refers to: by idempotency key, then provider
        payment id, then order id.
        """
        methods = self.gateways.provider(event.provider).methods
        candidates = []
        if event.idempotency_key:
            candidates.append(Payment.payment_metadata["idempotency_key"].astext == event.idempotency_key)
        if event.external_id:
            candidates.append(Payment.external_id == event.external_id)
        if event.order_id:
            candidates.append(
                or_(
                    Payment.payment_metadata["order_id"].astext == event.order_id,
                    Payment.transaction_id == event.order_id,
                    Payment.payment_reference == event.order_id,
                )
            )
        for condition in candidates:
            result = await db.execute(
                select(Payment)
                .where(condition, Payment.payment_method.in_(methods))
                .order_by(Payment.created_at.desc())
                .limit(1)
            )
            payment = result.scalar_one_or_none()
            if payment is not None:
                return payment
        return None

    async def reconcile(
        self,
        db: AsyncSession,
        event: WebhookEvent,
        now: Optional[datetime] = None,
    ) -> WebhookOutcome:
        """
        Apply a verified event. Safe to repeat: providers redeliver, and a
        second delivery finds the payment already in its final state.
        """
        now = resolve_now(now)
        if event.kind == WebhookEventKind.IGNORED:
            return self._outcome(event, ReconciliationResult.IGNORED)

        found = await self.find_payment(db, event)
        if found is None:
            logger.warning(
                "Webhook matched no payment",
                extra={"provider": event.provider, "event_id": event.event_id, "external_id": event.external_id},
            )
            return self._outcome(event, ReconciliationResult.UNMATCHED)

        invoice = await self.lifecycle.get_invoice(db, found.invoice_id, for_update=True)
        payment = next((p for p in invoice.payments if p.id == found.id), found)
        log = bind_billing_context(logger, invoice_id=str(invoice.id), payment_id=str(payment.id))

        if event.kind == WebhookEventKind.PAYMENT_FAILED:
            if payment.status == PaymentStatus.FAILED:
                return self._outcome(event, ReconciliationResult.ALREADY_RECORDED, payment)
            log.error(
                "Provider reports failure for a settled payment",
                extra={"event_id": event.event_id, "payment_status": payment.status.value},
            )
            return self._outcome(event, ReconciliationResult.CONFLICT, payment)

        if payment.is_settled:
            return self._outcome(event, ReconciliationResult.ALREADY_RECORDED, payment)

        problem = self._refund_reason(invoice, payment, event)
        if problem is not None:
            payment.error = f"{problem}; refund required (event {event.event_id})"
            if event.external_id and not payment.external_id:
                payment.external_id = event.external_id
            await db.commit()
            log.error("Captured payment cannot be applied", extra={"event_id": event.event_id, "reason": problem})
            return self._outcome(event, ReconciliationResult.NEEDS_REFUND, payment)

        payment.status = PaymentStatus.COMPLETED
        payment.external_id = event.external_id or payment.external_id
        payment.error = None
        payment.payment_metadata = {**(payment.payment_metadata or {}), "reconciled_by_event": event.event_id}
        await self.lifecycle.settle_if_paid(db, invoice, now)
        await db.commit()
        log.info(
            "Payment completed from webhook",
            extra={"event_id": event.event_id, "amount": str(payment.amount), "invoice_status": invoice.status.value},
        )
        return self._outcome(event, ReconciliationResult.COMPLETED, payment)

    @staticmethod
    def _refund_reason(invoice, payment: Payment, event: WebhookEvent) -> Optional[str]:
        """Why money the provider captured cannot count towards the invoice, if it cannot"""
        if event.amount is not None and quantize(event.amount) != quantize(payment.amount):
            return f"provider captured {quantize(event.amount)}, attempt was for {quantize(payment.amount)}"
        if event.currency and event.currency.upper() != payment.currency:
            return f"provider captured {event.currency.upper()}, attempt was in {payment.currency}"
        if invoice.is_terminal:
            return f"invoice is {invoice.status.value}"
        remaining = quantize(Decimal(invoice.total) - paid_amount(invoice))
        if quantize(payment.amount) > remaining:
            return f"only {remaining} remains due"
        return None

    @staticmethod
    def _outcome(
        event: WebhookEvent,
        result: ReconciliationResult,
        payment: Optional[Payment] = None,
    ) -> WebhookOutcome:
        return WebhookOutcome(
            event_id=event.event_id,
            event_type=event.event_type,
            result=result,
            payment_id=payment.id if payment is not None else None,
        )
